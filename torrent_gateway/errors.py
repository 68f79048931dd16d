"""
Error taxonomy shared by the gateway, the adapters and the HTTP layer.

Every error carries a short machine-readable code and the HTTP status the
routing layer answers with. Adapters translate transport and daemon errors
into these types; nothing below the routing layer raises HTTPException.
"""

from typing import Any, Dict


class GatewayError(Exception):
    """Base exception for all torrent gateway errors."""
    code = "EINTERNAL"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(GatewayError):
    """Raised when a request is malformed."""
    code = "EINVAL"
    status_code = 400


class AccessDenied(GatewayError):
    """Raised when a path falls outside the allow-list boundary."""
    code = "EACCES"
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFound(GatewayError):
    """Raised when a hash, content index or file does not exist."""
    code = "ENOENT"
    status_code = 404


class BackendUnreachable(GatewayError):
    """Raised when the daemon cannot be reached or does not answer in time."""
    code = "ECONNREFUSED"
    status_code = 502


class BackendRejected(GatewayError):
    """Raised when the daemon answers with a protocol-level error."""
    code = "EREJECTED"
    status_code = 502


class HelperTimeout(GatewayError):
    """Raised when an external helper process exceeds its time bound."""
    code = "ETIMEDOUT"
    status_code = 504


class InternalError(GatewayError):
    """Raised for unexpected failures such as staging write errors."""
    code = "EINTERNAL"
    status_code = 500
