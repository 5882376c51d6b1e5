"""
Entry point of the virtbmc agent.

Usage:
    virtbmc [--kubeconfig PATH] [--address IP] [--ipmi-port PORT]
            [--redfish-port PORT] [--secret-ref NAMESPACE/NAME]
            VM_NAMESPACE VM_NAME
"""

import argparse
import asyncio
import logging
import signal
import sys

from kubevirtbmc.constants import DEFAULT_LISTEN_ADDRESS, IPMI_PORT, REDFISH_PORT
from kubevirtbmc.errors import OperatorError
from kubevirtbmc.observability.logging import setup_structured_logging
from kubevirtbmc.settings import agent_settings

from .virtbmc import Options, VirtBMC

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> Options:
    """Parse command line arguments into agent options."""
    parser = argparse.ArgumentParser(
        prog="virtbmc",
        description="Emulated BMC for a KubeVirt virtual machine",
    )
    parser.add_argument("--kubeconfig", default=None, help="Path to a kubeconfig file")
    parser.add_argument(
        "--address", default=DEFAULT_LISTEN_ADDRESS, help="Address to listen on"
    )
    parser.add_argument("--ipmi-port", type=int, default=IPMI_PORT, help="IPMI UDP port")
    parser.add_argument(
        "--redfish-port", type=int, default=REDFISH_PORT, help="Redfish HTTP port"
    )
    parser.add_argument(
        "--secret-ref",
        default="",
        help="Credentials secret as namespace/name (empty disables authentication sync)",
    )
    parser.add_argument("vm_namespace", help="Namespace of the virtual machine")
    parser.add_argument("vm_name", help="Name of the virtual machine")
    args = parser.parse_args(argv)

    return Options(
        vm_namespace=args.vm_namespace,
        vm_name=args.vm_name,
        kubeconfig=args.kubeconfig,
        address=args.address,
        ipmi_port=args.ipmi_port,
        redfish_port=args.redfish_port,
        secret_ref=args.secret_ref,
    )


async def serve(bmc: VirtBMC) -> None:
    """Run the agent until SIGINT or SIGTERM."""
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating graceful shutdown...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    await bmc.run(stop_event)


def main(argv: list[str] | None = None) -> int:
    """Main entry point; returns the process exit code."""
    options = parse_args(argv)

    setup_structured_logging(
        log_level=agent_settings.log_level.upper(),
        enable_json_formatting=agent_settings.json_logs,
    )

    try:
        bmc = VirtBMC(options, config=agent_settings)
        asyncio.run(serve(bmc))
    except OperatorError as e:
        logger.error(f"virtbmc agent failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    return 0


if __name__ == "__main__":
    sys.exit(main())
