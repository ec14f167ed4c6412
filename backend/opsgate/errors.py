"""Domain error taxonomy.

Workflow and validation errors subclass werkzeug's HTTPException so the unified
JSON error handler in create_app renders them unchanged, while service code and
tests can catch them by type.

AuthResolutionFailure is never surfaced to callers: the identity resolver
catches it and falls back. PermissionDenied is raised by route guards only; the
evaluator itself answers False.
"""
from __future__ import annotations
from typing import Optional

from werkzeug.exceptions import HTTPException


class OpsGateError(HTTPException):
    code = 400
    name = 'Bad Request'

    def __init__(self, description: Optional[str] = None, **context):
        super().__init__(description=description)
        self.context = context


class ValidationError(OpsGateError):
    code = 400
    name = 'Validation Error'


class PermissionDenied(OpsGateError):
    code = 403
    name = 'Forbidden'


class NotFound(OpsGateError):
    code = 404
    name = 'Not Found'


class InvalidTransition(OpsGateError):
    """Wrong actor role or wrong source state for the requested action."""
    code = 409
    name = 'Invalid Transition'


class AlreadyTerminal(OpsGateError):
    """Action attempted on a request that is already approved or rejected."""
    code = 409
    name = 'Already Terminal'


class ConcurrentUpdate(OpsGateError):
    """Optimistic write kept losing to concurrent writers."""
    code = 409
    name = 'Conflict'


class AuthResolutionFailure(Exception):
    """Identity directory lookup unavailable. Absorbed by the fallback path."""

    def __init__(self, principal_id, cause: Optional[BaseException] = None):
        super().__init__(f'role lookup failed for principal {principal_id}: {cause}')
        self.principal_id = principal_id
        self.cause = cause


__all__ = [
    'OpsGateError', 'ValidationError', 'PermissionDenied', 'NotFound',
    'InvalidTransition', 'AlreadyTerminal', 'ConcurrentUpdate', 'AuthResolutionFailure',
]
