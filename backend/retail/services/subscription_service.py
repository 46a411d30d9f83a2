"""
Subscription Usage Gate

WHY: Plans cap how many users, products, monthly sales and monthly API calls
a tenant may have. Mutations that consume capacity call require_capacity()
BEFORE opening their stock/sale transaction, so a denied gate never touches
the ledger.

RULES:
- A limit of -1 is unlimited (0 %), a limit of 0 is always full (100 %).
- Usage at or above USAGE_WARNING_PERCENT (default 80) produces warnings.
- Usage at or above the limit denies the operation.
- Only trial and active subscriptions may consume capacity.

USAGE:
    from retail.services.subscription_service import require_capacity
    require_capacity(tenant_id, "sales")   # raises UsageLimitError
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import InternalError, NotFoundError, RetailError, UsageLimitError, ValidationError
from ..extensions import db
from ..models import (
    PLAN_CONFIGURATIONS,
    PLAN_RANK,
    UNLIMITED,
    PlanType,
    SubscriptionStatus,
    Tenant,
    TenantSubscription,
)
from ..repositories import ProductRepository, SaleRepository
from ..time_utils import add_one_month, start_of_month, utcnow
from . import audit_service
from .concurrency import run_with_retry

RESOURCES = ("users", "products", "sales", "api_calls")

RESOURCE_LABELS = {
    "users": "User limit",
    "products": "Product limit",
    "sales": "Monthly sales limit",
    "api_calls": "Monthly API calls limit",
}


@dataclass(frozen=True)
class UsageSnapshot:
    users: int
    products: int
    sales_this_month: int
    api_calls_this_month: int

    def for_resource(self, resource: str) -> int:
        return {
            "users": self.users,
            "products": self.products,
            "sales": self.sales_this_month,
            "api_calls": self.api_calls_this_month,
        }[resource]

    def to_dict(self) -> dict:
        return {
            "users": self.users,
            "products": self.products,
            "sales_this_month": self.sales_this_month,
            "api_calls_this_month": self.api_calls_this_month,
        }


def _validate_resource(resource: str) -> None:
    if resource not in RESOURCES:
        raise ValidationError("Unknown usage resource", details={"resource": resource, "allowed": list(RESOURCES)})


def _validate_plan(plan_type: str) -> str:
    plan_type = getattr(plan_type, "value", plan_type)
    if plan_type not in PLAN_CONFIGURATIONS:
        raise ValidationError(
            "Invalid subscription plan type",
            details={"plan_type": plan_type, "allowed": sorted(PLAN_CONFIGURATIONS)},
        )
    return plan_type


def _warning_threshold() -> float:
    return float(current_app.config.get("USAGE_WARNING_PERCENT", 80))


def get_subscription(tenant_id: int) -> TenantSubscription:
    sub = db.session.query(TenantSubscription).filter_by(tenant_id=tenant_id).first()
    if sub is None:
        raise NotFoundError("subscription", details={"tenant_id": tenant_id})
    return sub


def create_subscription(
    tenant_id: int,
    plan_type: str = PlanType.STARTER.value,
    status: str = SubscriptionStatus.TRIAL.value,
) -> TenantSubscription:
    """Attach a subscription to a tenant (one per tenant)."""
    plan_type = _validate_plan(plan_type)
    status = getattr(status, "value", status)
    if status not in {s.value for s in SubscriptionStatus}:
        raise ValidationError("Invalid subscription status", details={"status": status})
    if db.session.query(Tenant).filter_by(id=tenant_id).first() is None:
        raise NotFoundError("tenant", details={"tenant_id": tenant_id})

    def _op():
        existing = db.session.query(TenantSubscription).filter_by(tenant_id=tenant_id).first()
        if existing is not None:
            return existing
        sub = TenantSubscription(tenant_id=tenant_id, status=status, users_count=0, api_calls_this_month=0)
        sub.apply_plan(plan_type)
        db.session.add(sub)
        db.session.commit()
        return sub

    return run_with_retry(_op)


# =============================================================================
# Usage
# =============================================================================

def collect_usage(tenant_id: int, sub: TenantSubscription | None = None) -> UsageSnapshot:
    """
    Current usage. Products and this month's sales are counted from the store;
    users and API calls come from the counters recorded on the subscription.
    """
    sub = sub or get_subscription(tenant_id)
    products = ProductRepository(db.session, tenant_id).count_listed()
    sales = SaleRepository(db.session, tenant_id).count_billable_since(start_of_month())
    return UsageSnapshot(
        users=sub.users_count or 0,
        products=products,
        sales_this_month=sales,
        api_calls_this_month=sub.api_calls_this_month or 0,
    )


def usage_percentage(limit: int, used: int) -> float:
    if limit == UNLIMITED:
        return 0.0
    if limit == 0:
        return 100.0
    return used / limit * 100


def has_capacity(sub: TenantSubscription, resource: str, usage: UsageSnapshot) -> bool:
    _validate_resource(resource)
    if not sub.is_operating():
        return False
    limit = sub.limit_for(resource)
    if limit == UNLIMITED:
        return True
    return usage.for_resource(resource) < limit


def usage_warnings(sub: TenantSubscription, usage: UsageSnapshot) -> list[str]:
    threshold = _warning_threshold()
    warnings = []
    for resource in RESOURCES:
        if usage_percentage(sub.limit_for(resource), usage.for_resource(resource)) >= threshold:
            warnings.append(f"{RESOURCE_LABELS[resource]} approaching. Consider upgrading your plan.")
    return warnings


def _can(tenant_id: int, resource: str) -> bool:
    sub = db.session.query(TenantSubscription).filter_by(tenant_id=tenant_id).first()
    if sub is None:
        return False
    return has_capacity(sub, resource, collect_usage(tenant_id, sub))


def can_add_user(tenant_id: int) -> bool:
    return _can(tenant_id, "users")


def can_add_product(tenant_id: int) -> bool:
    return _can(tenant_id, "products")


def can_process_sale(tenant_id: int) -> bool:
    return _can(tenant_id, "sales")


def can_make_api_call(tenant_id: int) -> bool:
    return _can(tenant_id, "api_calls")


def get_usage_analysis(tenant_id: int) -> dict:
    sub = get_subscription(tenant_id)
    usage = collect_usage(tenant_id, sub)
    warnings = usage_warnings(sub, usage)
    if warnings:
        current_app.logger.warning("Subscription usage warnings for tenant_id=%s: %s", tenant_id, warnings)

    return {
        "tenant_id": tenant_id,
        "plan_type": sub.plan_type,
        "status": sub.status,
        "current_usage": usage.to_dict(),
        "usage_limits": {resource: sub.limit_for(resource) for resource in RESOURCES},
        "usage_percentages": {
            resource: round(usage_percentage(sub.limit_for(resource), usage.for_resource(resource)), 2)
            for resource in RESOURCES
        },
        "can_add_user": has_capacity(sub, "users", usage),
        "can_add_product": has_capacity(sub, "products", usage),
        "can_process_sale": has_capacity(sub, "sales", usage),
        "can_make_api_call": has_capacity(sub, "api_calls", usage),
        "warnings": warnings,
    }


def require_capacity(tenant_id: int, resource: str) -> None:
    """
    Hard gate. Raises UsageLimitError when the tenant has no operating
    subscription or the resource is at/over its plan limit.
    """
    _validate_resource(resource)
    sub = db.session.query(TenantSubscription).filter_by(tenant_id=tenant_id).first()
    if sub is None:
        raise UsageLimitError("No subscription for tenant", details={"tenant_id": tenant_id, "resource": resource})
    if not sub.is_operating():
        raise UsageLimitError(
            f"Subscription is {sub.status}",
            details={"tenant_id": tenant_id, "resource": resource, "status": sub.status},
        )

    usage = collect_usage(tenant_id, sub)
    limit = sub.limit_for(resource)
    used = usage.for_resource(resource)
    if not has_capacity(sub, resource, usage):
        current_app.logger.warning(
            "Usage limit reached: tenant_id=%s resource=%s used=%s limit=%s", tenant_id, resource, used, limit
        )
        raise UsageLimitError(
            f"{RESOURCE_LABELS[resource]} reached",
            details={"tenant_id": tenant_id, "resource": resource, "used": used, "limit": limit, "plan_type": sub.plan_type},
        )

    if usage_percentage(limit, used) >= _warning_threshold():
        current_app.logger.warning(
            "Usage approaching limit: tenant_id=%s resource=%s used=%s limit=%s", tenant_id, resource, used, limit
        )


# =============================================================================
# Plan and status changes
# =============================================================================

def _limit_violations(plan_type: str, usage: UsageSnapshot) -> dict:
    limits = PLAN_CONFIGURATIONS[plan_type]["limits"]
    violations = {}
    for resource in RESOURCES:
        limit = limits[resource]
        if limit != UNLIMITED and usage.for_resource(resource) > limit:
            violations[resource] = {"used": usage.for_resource(resource), "limit": limit}
    return violations


def _open_billing_window(sub: TenantSubscription) -> None:
    now = utcnow()
    sub.billing_start = now
    sub.billing_end = add_one_month(now)


def _mutate_subscription(tenant_id: int, mutate, *, action: str, user_id: int | None = None) -> TenantSubscription:
    """Load, mutate and commit a subscription, then audit the change."""
    old_value = {}

    def _op():
        sub = get_subscription(tenant_id)
        old_value.clear()
        old_value.update({"plan_type": sub.plan_type, "status": sub.status})
        mutate(sub)
        db.session.commit()
        return sub

    try:
        sub = run_with_retry(_op)
    except RetailError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Subscription %s failed for tenant_id=%s", action, tenant_id)
        raise InternalError(f"Failed to {action.replace('_', ' ')} subscription", cause=exc) from exc

    new_value = {"plan_type": sub.plan_type, "status": sub.status}
    current_app.logger.info(
        "Subscription %s: tenant_id=%s user_id=%s %s -> %s", action, tenant_id, user_id, old_value, new_value
    )
    audit_service.log_event(
        tenant_id=tenant_id,
        user_id=user_id,
        action=f"subscription.{action}",
        resource="subscription",
        resource_id=sub.id,
        old_value=dict(old_value),
        new_value=new_value,
    )
    return sub


def change_plan(tenant_id: int, plan_type: str, *, user_id: int | None = None) -> TenantSubscription:
    """
    Upgrade: applies the plan, activates, and opens a one-month billing window.
    Downgrade: rejected when current usage exceeds the new plan's limits.
    """
    plan_type = _validate_plan(plan_type)

    def _mutate(sub: TenantSubscription) -> None:
        if plan_type == sub.plan_type:
            return
        if PLAN_RANK[plan_type] > PLAN_RANK[sub.plan_type]:
            sub.apply_plan(plan_type)
            sub.status = SubscriptionStatus.ACTIVE.value
            _open_billing_window(sub)
            return
        violations = _limit_violations(plan_type, collect_usage(tenant_id, sub))
        if violations:
            raise ValidationError("usage exceeds plan limit", details={"plan_type": plan_type, "violations": violations})
        sub.apply_plan(plan_type)

    return _mutate_subscription(tenant_id, _mutate, action="change_plan", user_id=user_id)


def activate_subscription(tenant_id: int, *, user_id: int | None = None) -> TenantSubscription:
    def _mutate(sub: TenantSubscription) -> None:
        sub.status = SubscriptionStatus.ACTIVE.value
        _open_billing_window(sub)

    return _mutate_subscription(tenant_id, _mutate, action="activate", user_id=user_id)


def suspend_subscription(tenant_id: int, *, user_id: int | None = None) -> TenantSubscription:
    def _mutate(sub: TenantSubscription) -> None:
        sub.status = SubscriptionStatus.SUSPENDED.value

    return _mutate_subscription(tenant_id, _mutate, action="suspend", user_id=user_id)


def cancel_subscription(tenant_id: int, *, user_id: int | None = None) -> TenantSubscription:
    def _mutate(sub: TenantSubscription) -> None:
        sub.status = SubscriptionStatus.CANCELLED.value

    return _mutate_subscription(tenant_id, _mutate, action="cancel", user_id=user_id)


def record_usage(tenant_id: int, *, users: int | None = None, api_calls: int | None = None) -> TenantSubscription:
    """Store the externally counted users / API calls for this month."""
    for field_name, value in (("users", users), ("api_calls", api_calls)):
        if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
            raise ValidationError(f"Invalid {field_name} count", details={field_name: value})

    def _op():
        sub = get_subscription(tenant_id)
        if users is not None:
            sub.users_count = users
        if api_calls is not None:
            sub.api_calls_this_month = api_calls
        sub.usage_updated_at = utcnow()
        db.session.commit()
        return sub

    return run_with_retry(_op)


def suspend_expired_subscriptions(now=None) -> list[int]:
    """
    Suspend every operating subscription whose billing window has ended.

    Each subscription is committed on its own; a failure is logged and the
    sweep continues with the next one. Returns the suspended tenant ids.
    """
    now = now or utcnow()
    candidates = (
        db.session.query(TenantSubscription)
        .filter(
            TenantSubscription.billing_end.isnot(None),
            TenantSubscription.status.in_([SubscriptionStatus.TRIAL.value, SubscriptionStatus.ACTIVE.value]),
        )
        .order_by(TenantSubscription.id.asc())
        .all()
    )
    tenant_ids = [sub.tenant_id for sub in candidates if sub.is_expired(now)]

    suspended = []
    for tenant_id in tenant_ids:
        try:
            suspend_subscription(tenant_id)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to suspend expired subscription for tenant_id=%s", tenant_id)
            continue
        current_app.logger.info("Expired subscription suspended: tenant_id=%s", tenant_id)
        suspended.append(tenant_id)
    return suspended
