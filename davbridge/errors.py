"""
Exception hierarchy for davbridge.

Parse problems never surface here: the transformers log and skip. These
errors are raised by the services and the remote client.
"""

from typing import Optional


class DAVBridgeError(RuntimeError):
    """Base class for all davbridge errors."""


class ConflictError(DAVBridgeError):
    """
    The server answered 412 Precondition Failed.

    The resource changed (or already exists) since the caller last read it.
    Never retried: the precondition would be just as stale the second time.
    """

    def __init__(self, resource_type: str, detail: Optional[str] = None):
        self.resource_type = resource_type
        self.detail = detail
        lines = [
            f"The {resource_type} was modified by another client since you last read it.",
            "",
            "Fix: Please fetch the latest version and try your changes again.",
        ]
        if detail:
            lines.append(detail)
        super().__init__("\n".join(lines))


class RemoteRequestError(DAVBridgeError):
    """The server answered with an unexpected status."""

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"DAV request failed ({status}): {message}")

    @property
    def transient(self) -> bool:
        return self.status >= 500 or self.status == 429


class ConfigError(DAVBridgeError):
    """The configuration is incomplete or a password cannot be retrieved."""


class CollectionNotFoundError(DAVBridgeError):
    """No calendar or address book matches the requested name."""


class ObjectNotFoundError(DAVBridgeError):
    """The object to update or delete could not be read from the server."""
