from functools import wraps
from flask import jsonify
from flask_jwt_extended import get_jwt, get_jwt_identity


def current_user_id():
    """JWT identity of the caller, or None outside an authenticated request."""
    try:
        return get_jwt_identity()
    except RuntimeError:
        return None


def require_role(*roles):
    """
    Decorator to require specific roles
    Usage: @require_role('dentist', 'assistant')
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            """
            Require that the current JWT carries one of the given roles in its 'role' claim.
            Must be used together with @jwt_required() on the route.
            """
            role = get_jwt().get('role')
            if not role:
                return jsonify({
                    'success': False,
                    'error': 'Authentication required'
                }), 401

            if role not in roles:
                return jsonify({
                    'success': False,
                    'error': f'Permission denied. Required roles: {", ".join(roles)}'
                }), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator
