from functools import wraps
from flask_jwt_extended import verify_jwt_in_request
from opsgate.constants.roles import Role
from opsgate.errors import PermissionDenied
from opsgate.services.policy import current_context, current_evaluator


def require_page(*paths: str):
    """Allow the view when the session may use any of the given pages."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            evaluator = current_evaluator()
            if not any(evaluator.has_page_permission(p) for p in paths):
                raise PermissionDenied('Missing page permission', pages=list(paths))
            return fn(*args, **kwargs)
        return wrapper
    return outer


def require_role(*roles: Role):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            if current_context().role not in roles:
                raise PermissionDenied('Role not allowed')
            return fn(*args, **kwargs)
        return wrapper
    return outer
