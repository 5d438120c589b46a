"""
Shoal - Runner Package

Subprocess execution for check and metric plugins.
"""

from .command import CommandResult, CommandRunner, CommandSpawnError, CommandStatus

__all__ = [
    "CommandResult",
    "CommandRunner",
    "CommandSpawnError",
    "CommandStatus",
]
