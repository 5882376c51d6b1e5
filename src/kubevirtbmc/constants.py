"""
Constants used throughout the KubeVirt BMC controller and agent.

This module defines all constant values shared by both processes including:
- Custom resource identity (group, version, kind)
- Resource labels and annotations
- Agent container, port and naming conventions
- Condition types and status values
- HTTP authentication header names
"""

# Custom resource identity
CRD_GROUP = "virtualmachine.kubevirt.io"
CRD_VERSION = "v1alpha1"
CRD_API_VERSION = f"{CRD_GROUP}/{CRD_VERSION}"
CRD_KIND = "VirtualMachineBMC"
CRD_PLURAL = "virtualmachinebmcs"

# Label constants for ownership and selection
VIRTUAL_MACHINE_BMC_NAME_LABEL = "kubevirt.io/virtualmachinebmc-name"
VM_NAME_LABEL = "kubevirt.io/vm-name"

# Pod annotation recording the last observed secret resourceVersion
LAST_KNOWN_SECRET_VERSION_ANNOTATION = "lastKnownSecretVersion"

# Agent workload defaults
DEFAULT_BMC_NAMESPACE = "kubevirtbmc-system"
DEFAULT_AGENT_IMAGE_NAME = "anish60/virtbmc"
DEFAULT_AGENT_IMAGE_TAG = "latest"
DEFAULT_AGENT_SERVICE_ACCOUNT = "kubevirtbmc-virtbmc"
VIRTBMC_CONTAINER_NAME = "virtbmc"
VIRTBMC_SUFFIX = "-virtbmc"

# Agent ports (container side)
IPMI_PORT = 10623
REDFISH_PORT = 10080
# Service ports (cluster side)
IPMI_SVC_PORT = 623
REDFISH_SVC_PORT = 80
IPMI_PORT_NAME = "ipmi"
REDFISH_PORT_NAME = "redfish"
DEFAULT_LISTEN_ADDRESS = "0.0.0.0"

# Agent launch flags
SECRET_REF_FLAG = "--secret-ref"

# Condition type constants
CONDITION_SECRET_READY = "SecretReady"

# Condition status constants
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

# Pod refresh reasons
REFRESH_REASON_SECRET_REF_CHANGED = "Secret reference changed"
REFRESH_REASON_SECRET_DATA_CHANGED = "Secret data changed"

# Secret keys holding the BMC credentials
SECRET_USERNAME_KEY = "username"
SECRET_PASSWORD_KEY = "password"

# HTTP authentication headers
AUTH_TOKEN_HEADER = "X-Auth-Token"
AUTHORIZATION_HEADER = "Authorization"

# Hard-coded fallback credential pair accepted by basic authentication.
# Always authenticates regardless of the synced secret; disable it with
# AGENT_ALLOW_FALLBACK_CREDENTIALS=false outside of development clusters.
FALLBACK_USERNAME = "admin"
FALLBACK_PASSWORD = "password"

# Timeout constants (in seconds)
DEFAULT_CACHE_SYNC_TIMEOUT = 30.0
# Server-side timeout of each secret watch request; bounds how long stop() waits
DEFAULT_WATCH_TIMEOUT = 30

# Retry configuration
DEFAULT_REQUEUE_BASE_DELAY = 0.5
DEFAULT_REQUEUE_MAX_DELAY = 300.0
DEFAULT_WATCH_BACKOFF_MAX = 30.0
