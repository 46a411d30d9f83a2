# Overview: Request context and permission decorators for API routes.

from functools import wraps
from flask import current_app, g, jsonify, request

from .models import Tenant
from .extensions import db
from .permissions import ROLES, has_permission


def _parse_int_header(name: str):
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def require_tenant(f):
    """
    Establish tenant/user context from the upstream gateway headers.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.tenant_id: from X-Tenant-ID (REQUIRED, must be an active tenant)
    - g.user_id: from X-User-ID (optional)
    - g.role: from X-User-Role (optional; no role means no permissions)
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_id = _parse_int_header("X-Tenant-ID")
        if tenant_id is None:
            return jsonify({"error": "Tenant context required"}), 401

        tenant = db.session.query(Tenant).filter_by(id=tenant_id).first()
        if tenant is None or not tenant.is_active:
            current_app.logger.warning("Rejected request for unknown/inactive tenant_id=%s path=%s", tenant_id, request.path)
            return jsonify({"error": "Unknown or inactive tenant"}), 401

        role = (request.headers.get("X-User-Role") or "").strip().lower() or None
        if role is not None and role not in ROLES:
            return jsonify({"error": "Unknown role", "role": role}), 401

        g.tenant_id = tenant_id
        g.user_id = _parse_int_header("X-User-ID")
        g.role = role
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a permission from the static role table."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "tenant_id"):
                return jsonify({"error": "Tenant context required"}), 401

            if not has_permission(g.role, permission_code):
                current_app.logger.warning(
                    "Permission denied: tenant_id=%s user_id=%s role=%s permission=%s path=%s",
                    g.tenant_id, g.user_id, g.role, permission_code, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
