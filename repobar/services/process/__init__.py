"""
Process Module

Runs external commands asynchronously, capturing or streaming their output.
"""

from repobar.services.process.runner import CommandResult, CommandRunner

__all__ = ["CommandResult", "CommandRunner"]
