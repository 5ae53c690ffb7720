"""Error types raised while serving a file."""

from __future__ import annotations


class GatewayError(Exception):
    """Base error carrying the HTTP status and the text sent to the client."""

    status_code = 500

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidObjectKey(GatewayError):
    status_code = 400


class ObjectNotFound(GatewayError):
    status_code = 404


class RangeNotSatisfiable(GatewayError):
    status_code = 416

    def __init__(self, header: str, total_size: int | None = None):
        super().__init__("Range Not Satisfiable")
        self.header = header
        self.total_size = total_size


class BackendFatal(GatewayError):
    """A backend failure the gateway will not retry."""


class ChannelUnavailable(BackendFatal):
    pass


class InvalidChannel(BackendFatal):
    pass


class ChunkIntegrityError(BackendFatal):
    pass


class ChunkFetchError(BackendFatal):
    pass


class MetadataStoreError(BackendFatal):
    pass


class BackendTransient(Exception):
    """A single failed backend attempt, eligible for retry."""
