"""Errors raised by the JDWP connection layer."""

from .types import ERROR_NAMES, Command


class ConnectError(RuntimeError):
    """Raised when no usable session could be established."""


class ProtocolError(RuntimeError):
    """Raised when the wire conversation breaks; the connection is unusable afterwards."""


class CommandError(RuntimeError):
    """Raised when the remote VM answers a command with a JDWP error code."""

    def __init__(self, command: Command, code: int) -> None:
        self.command = command
        self.code = code
        self.name = ERROR_NAMES.get(code, "UNKNOWN")
        super().__init__(f"{command.name} failed with error {code} ({self.name})")
