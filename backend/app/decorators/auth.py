from functools import wraps
from flask import abort, current_app, request
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from app.services.policy import current_permissions


def require_permissions(*codes: str):
    """Reject the request with 403 unless the token grants every code."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            missing = sorted(set(codes) - current_permissions())
            if missing:
                current_app.logger.warning(
                    'permission denied user=%s path=%s missing=%s',
                    get_jwt_identity(), request.path, ','.join(missing),
                )
                abort(403, description=f"Missing permission: {', '.join(missing)}")
            return fn(*args, **kwargs)
        return wrapper
    return outer
