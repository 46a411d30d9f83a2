from .tenancy import (
    Tenant, TenantSubscription, PlanType, SubscriptionStatus,
    PLAN_CONFIGURATIONS, PLAN_RANK, OPERATING_STATUSES, UNLIMITED,
)
from .inventory import (
    Product, ProductStatus, PRODUCT_STATUS_TRANSITIONS,
    Stock, StockMovement, MovementType, MovementReason, MOVEMENT_TYPES, MOVEMENT_REASONS,
)
from .sales import Sale, SaleItem, SaleStatus, PaymentMethod, PAYMENT_METHODS
from .documents import DocumentSequence, AuditEvent
from .invoices import (
    Invoice, InvoiceItem, InvoiceStatus, INVOICE_STATUSES, INVOICE_STATUS_TRANSITIONS, OPEN_INVOICE_STATUSES,
)

__all__ = [
    'Tenant', 'TenantSubscription', 'PlanType', 'SubscriptionStatus',
    'PLAN_CONFIGURATIONS', 'PLAN_RANK', 'OPERATING_STATUSES', 'UNLIMITED',
    'Product', 'ProductStatus', 'PRODUCT_STATUS_TRANSITIONS',
    'Stock', 'StockMovement', 'MovementType', 'MovementReason', 'MOVEMENT_TYPES', 'MOVEMENT_REASONS',
    'Sale', 'SaleItem', 'SaleStatus', 'PaymentMethod', 'PAYMENT_METHODS',
    'DocumentSequence', 'AuditEvent',
    'Invoice', 'InvoiceItem', 'InvoiceStatus', 'INVOICE_STATUSES', 'INVOICE_STATUS_TRANSITIONS',
    'OPEN_INVOICE_STATUSES',
]
