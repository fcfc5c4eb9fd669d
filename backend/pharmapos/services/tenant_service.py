"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

WHY: Every request is scoped to a tenant (pharmacy business) and, for
writes, to one of its branches. Cross-tenant access must be explicitly denied.

SECURITY INVARIANTS:
1. Every request past @require_auth has g.tenant_id and g.user_id set
2. Branch IDs from client input are validated against g.tenant_id
3. Queries touching branch-owned data filter by the validated tenant
4. Cross-tenant attempts are logged as warnings

USAGE:
    from pharmapos.services.tenant_service import require_branch_in_tenant

    branch = require_branch_in_tenant(branch_id, g.tenant_id)
"""

from flask import current_app, g, has_request_context, request

from ..extensions import db
from ..models import Branch, Tenant


class TenantAccessError(Exception):
    """Raised when cross-tenant access is attempted."""
    pass


def validate_tenant_active(tenant_id: int) -> Tenant:
    """
    Validate that a tenant exists and is active.

    Raises:
        TenantAccessError if tenant doesn't exist or is inactive
    """
    tenant = db.session.get(Tenant, tenant_id)

    if not tenant:
        raise TenantAccessError("Tenant not found")

    if not tenant.is_active:
        raise TenantAccessError("Tenant is not active")

    return tenant


def require_branch_in_tenant(branch_id: int, tenant_id: int) -> Branch:
    """
    Validate that a branch belongs to the tenant and is active.

    SECURITY: Core tenant isolation check. Call this before any operation
    that uses a branch_id from client input.

    Raises:
        TenantAccessError if branch doesn't exist, is inactive or belongs
        to a different tenant
    """
    branch = db.session.get(Branch, branch_id)

    if not branch:
        _log_cross_tenant_attempt(f"Branch {branch_id} not found", tenant_id=tenant_id)
        raise TenantAccessError("Branch not found")

    if branch.tenant_id != tenant_id:
        # CRITICAL: Cross-tenant access attempt
        _log_cross_tenant_attempt(
            f"Branch {branch_id} belongs to tenant {branch.tenant_id}, not {tenant_id}",
            tenant_id=tenant_id,
        )
        raise TenantAccessError("Branch not found")  # Don't reveal it exists in another tenant

    if not branch.is_active:
        raise TenantAccessError("Branch is not active")

    return branch


def _log_cross_tenant_attempt(reason: str, *, tenant_id: int | None) -> None:
    where = f"{request.method} {request.path}" if has_request_context() else "-"
    current_app.logger.warning(
        "Cross-tenant access denied: %s (tenant=%s user=%s at %s)",
        reason,
        tenant_id,
        getattr(g, 'user_id', None),
        where,
    )
