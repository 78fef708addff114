# testme/errors.py
"""
Service-level error taxonomy.

Raised by the domain/scan services and rendered to JSON by the error
handler registered in create_app(). Probe errors (network, DNS, TLS) never
reach this layer; checks convert them to info findings.

    InputError          400  malformed domain, missing consent, bad method
    AuthorizationError  403  domain not verified, resource owned by someone else
    NotFoundError       404
    ConflictError       409  active scan exists, deleting a non-terminal scan
"""

from __future__ import annotations


class ServiceError(Exception):
    status_code = 500
    kind = "Internal server error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class InputError(ServiceError):
    status_code = 400
    kind = "Bad request"


class AuthorizationError(ServiceError):
    status_code = 403
    kind = "Forbidden"


class NotFoundError(ServiceError):
    status_code = 404
    kind = "Not found"


class ConflictError(ServiceError):
    status_code = 409
    kind = "Conflict"
