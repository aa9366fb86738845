"""Resource handlers shipped with the provisioner."""

from stack_provisioner.handlers.simulated import SimulatedHandler

__all__ = ["SimulatedHandler"]
