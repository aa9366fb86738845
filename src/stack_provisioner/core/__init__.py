"""Core records shared by the engine and the configuration layer."""

from stack_provisioner.core.environment import Environment
from stack_provisioner.core.state import ResourceInstance, State

__all__ = ["Environment", "ResourceInstance", "State"]
