from __future__ import annotations

from enum import Enum
from types import MappingProxyType

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Tenant(db.Model):
    """
    Multi-tenant root: every customer organization is a Tenant.

    DESIGN:
    - All products, stock, movements and sales carry tenant_id
    - Repositories take tenant_id as a mandatory argument (never ambient state)
    - No data may cross tenant boundaries
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PlanType(str, Enum):
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


# Statuses under which the tenant may keep operating
OPERATING_STATUSES = frozenset({SubscriptionStatus.TRIAL.value, SubscriptionStatus.ACTIVE.value})

UNLIMITED = -1

PLAN_RANK = MappingProxyType({
    PlanType.STARTER.value: 1,
    PlanType.PROFESSIONAL.value: 2,
    PlanType.ENTERPRISE.value: 3,
})

# Read-only plan table: fee in cents, feature flags, and usage limits (-1 = unlimited)
PLAN_CONFIGURATIONS = MappingProxyType({
    PlanType.STARTER.value: MappingProxyType({
        "monthly_fee_cents": 0,
        "features": MappingProxyType({
            "pos": True,
            "inventory": True,
            "reporting": True,
            "advanced_reporting": False,
            "multi_location": False,
            "api_access": False,
            "custom_integration": False,
        }),
        "limits": MappingProxyType({"users": 2, "products": UNLIMITED, "sales": UNLIMITED, "api_calls": 0}),
    }),
    PlanType.PROFESSIONAL.value: MappingProxyType({
        "monthly_fee_cents": 30_000_000,
        "features": MappingProxyType({
            "pos": True,
            "inventory": True,
            "reporting": True,
            "advanced_reporting": True,
            "multi_location": True,
            "api_access": False,
            "custom_integration": False,
        }),
        "limits": MappingProxyType({"users": 10, "products": UNLIMITED, "sales": UNLIMITED, "api_calls": 0}),
    }),
    PlanType.ENTERPRISE.value: MappingProxyType({
        "monthly_fee_cents": 150_000_000,
        "features": MappingProxyType({
            "pos": True,
            "inventory": True,
            "reporting": True,
            "advanced_reporting": True,
            "multi_location": True,
            "api_access": True,
            "custom_integration": True,
        }),
        "limits": MappingProxyType({"users": UNLIMITED, "products": UNLIMITED, "sales": UNLIMITED, "api_calls": 10_000}),
    }),
})


class TenantSubscription(db.Model):
    """
    A tenant's plan, status and stored usage counters.

    Product and monthly-sale counts are derived from the store at check time;
    users and API calls are counted by collaborators outside this service and
    recorded here.
    """
    __tablename__ = "tenant_subscriptions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, unique=True, index=True)

    plan_type = db.Column(db.String(32), nullable=False, default=PlanType.STARTER.value)
    status = db.Column(db.String(16), nullable=False, default=SubscriptionStatus.TRIAL.value, index=True)

    billing_start = db.Column(db.DateTime(timezone=True), nullable=True)
    billing_end = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    monthly_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    features = db.Column(db.JSON, nullable=False, default=dict)

    user_limit = db.Column(db.Integer, nullable=False, default=0)
    product_limit = db.Column(db.Integer, nullable=False, default=UNLIMITED)
    sales_limit = db.Column(db.Integer, nullable=False, default=UNLIMITED)
    api_call_limit = db.Column(db.Integer, nullable=False, default=0)

    users_count = db.Column(db.Integer, nullable=False, default=0)
    api_calls_this_month = db.Column(db.Integer, nullable=False, default=0)
    usage_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tenant = db.relationship("Tenant", backref=db.backref("subscription", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def apply_plan(self, plan_type: str) -> None:
        config = PLAN_CONFIGURATIONS[plan_type]
        limits = config["limits"]
        self.plan_type = plan_type
        self.monthly_fee_cents = config["monthly_fee_cents"]
        self.features = dict(config["features"])
        self.user_limit = limits["users"]
        self.product_limit = limits["products"]
        self.sales_limit = limits["sales"]
        self.api_call_limit = limits["api_calls"]

    def limit_for(self, resource: str) -> int:
        return {
            "users": self.user_limit,
            "products": self.product_limit,
            "sales": self.sales_limit,
            "api_calls": self.api_call_limit,
        }[resource]

    def has_feature(self, feature: str) -> bool:
        return bool((self.features or {}).get(feature, False))

    def is_operating(self) -> bool:
        return self.status in OPERATING_STATUSES

    def is_expired(self, now=None) -> bool:
        now = now or utcnow()
        return self.billing_end is not None and self.billing_end < now

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "plan_type": self.plan_type,
            "status": self.status,
            "billing_start": to_utc_z(self.billing_start),
            "billing_end": to_utc_z(self.billing_end),
            "monthly_fee_cents": self.monthly_fee_cents,
            "features": dict(self.features or {}),
            "usage_limits": {
                "users": self.user_limit,
                "products": self.product_limit,
                "sales_per_month": self.sales_limit,
                "api_calls_per_month": self.api_call_limit,
            },
            "users_count": self.users_count,
            "api_calls_this_month": self.api_calls_this_month,
            "usage_updated_at": to_utc_z(self.usage_updated_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
