"""Core infrastructure components for GCE Provisioner."""

from gce_provisioner.core.provider import GCPProvider
from gce_provisioner.core.state import ResourceState, StateFile

__all__ = ["GCPProvider", "ResourceState", "StateFile"]
