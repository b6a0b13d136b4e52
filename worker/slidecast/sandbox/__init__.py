"""
Slidecast Sandboxes

Isolated execution environments for the render engine.
"""

from .base import Command, CommandResult, CommandTimeout, Sandbox, SandboxFactory
from .local import LocalSandbox, LocalSandboxFactory

__all__ = [
    "Command",
    "CommandResult",
    "CommandTimeout",
    "Sandbox",
    "SandboxFactory",
    "LocalSandbox",
    "LocalSandboxFactory",
]
