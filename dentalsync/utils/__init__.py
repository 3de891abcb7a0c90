from .decorators import require_role, current_user_id

from .audit import log_audit

__all__ = [
    # Decorators
    "require_role",
    "current_user_id",
    # Audit
    "log_audit",
]
