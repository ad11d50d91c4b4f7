"""
core/errors.py -- Typed failures raised by the stores, the session authority,
the authorization policy and the factory client.

The core never touches HTTP. Each error carries the status_code and the
machine-readable code the API layer renders into the ErrorResponse envelope
(see api/main.py). The message is always human-readable; callers decide the
error kind from the class, never from the text.

Layer rule: core/ is the kernel. No imports from api/, auth/, or pizza/.
"""

from __future__ import annotations

from typing import Optional


class PizzaError(Exception):
    """Base class for every failure the API layer knows how to render."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class Unauthorized(PizzaError):
    """No credential, a bad credential, or a revoked one."""

    status_code = 401
    code = "unauthorized"


class InvalidSignature(Unauthorized):
    code = "invalid_signature"


class Revoked(Unauthorized):
    code = "revoked"


class Forbidden(PizzaError):
    """Valid credential, insufficient privilege."""

    status_code = 403
    code = "forbidden"


class NotFound(PizzaError):
    status_code = 404
    code = "not_found"


class Conflict(PizzaError):
    status_code = 409
    code = "conflict"


class ValidationFailed(PizzaError):
    status_code = 400
    code = "validation_error"


class UpstreamFailure(PizzaError):
    """The pizza factory did not report success.

    report_url is the factory's diagnostic link, passed through to the diner
    when the factory supplied one.
    """

    status_code = 500
    code = "upstream_failure"

    def __init__(self, message: str, report_url: Optional[str] = None) -> None:
        super().__init__(message, detail=report_url)
        self.report_url = report_url


class Internal(PizzaError):
    pass
