from functools import wraps

from flask import jsonify
from flask_login import current_user


def require_admin_json(view):
    """Admin-only JSON endpoints: 401 when logged out, 403 for non-admins."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not current_user or not current_user.is_authenticated:
            return jsonify({"error": "Authentication required"}), 401
        if not getattr(current_user, "is_admin", False):
            return jsonify({"error": "Administrator access required"}), 403
        return view(*args, **kwargs)
    return wrapped
