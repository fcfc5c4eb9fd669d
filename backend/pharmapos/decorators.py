# Overview: Request-context decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services.tenant_service import (
    TenantAccessError,
    require_branch_in_tenant,
    validate_tenant_active,
)


TENANT_HEADER = "X-Tenant-Id"
USER_HEADER = "X-User-Id"
BRANCH_HEADER = "X-Branch-Id"


def _header_int(name: str) -> int | None:
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        return None
    return value if value > 0 else None


def _is_authenticated() -> bool:
    return getattr(g, 'tenant_id', None) is not None and getattr(g, 'user_id', None) is not None


def require_auth(f):
    """
    Require caller context and establish the tenant scope.

    Identity is verified upstream; the gateway forwards the result as headers.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.tenant_id: from X-Tenant-Id - REQUIRED
    - g.user_id: from X-User-Id - REQUIRED
    - g.branch_id: from X-Branch-Id when present and valid, else None

    SECURITY: Returns 401 if tenant or user context is missing or malformed.
    Returns 403 if the tenant is unknown/inactive or the branch belongs to
    someone else.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_id = _header_int(TENANT_HEADER)
        user_id = _header_int(USER_HEADER)

        if tenant_id is None or user_id is None:
            return jsonify({"error": "Authentication required"}), 401

        try:
            validate_tenant_active(tenant_id)
        except TenantAccessError as e:
            return jsonify({"error": str(e)}), 403

        g.tenant_id = tenant_id
        g.user_id = user_id
        g.branch_id = None

        if request.headers.get(BRANCH_HEADER) is not None:
            branch_id = _header_int(BRANCH_HEADER)
            if branch_id is None:
                return jsonify({"error": "Invalid branch context"}), 401
            try:
                require_branch_in_tenant(branch_id, tenant_id)
            except TenantAccessError as e:
                return jsonify({"error": str(e)}), 403
            g.branch_id = branch_id

        return f(*args, **kwargs)

    return decorated_function


def require_branch(f):
    """
    Require a validated branch context (branch-scoped writes).

    Must be applied after @require_auth.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401
        if getattr(g, 'branch_id', None) is None:
            return jsonify({"error": "Branch context required"}), 401
        return f(*args, **kwargs)

    return decorated_function
