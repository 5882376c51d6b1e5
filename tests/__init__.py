"""
Tests package - Unit test suite for the KubeVirt BMC controller and agent.

Contains:
- unit/: Unit tests for individual components, grouped by layer
"""
