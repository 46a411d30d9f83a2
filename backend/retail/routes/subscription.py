# Overview: Flask API routes for the tenant subscription, usage gate and audit trail.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_permission, require_tenant
from ..services import audit_service, subscription_service
from ..validation import json_payload, optional_int, pagination_args, require_str

subscription_bp = Blueprint("subscription", __name__, url_prefix="/api/subscription")


@subscription_bp.get("")
@require_tenant
@require_permission("VIEW_SUBSCRIPTION")
def get_subscription_route():
    sub = subscription_service.get_subscription(g.tenant_id)
    return jsonify({"subscription": sub.to_dict()}), 200


@subscription_bp.get("/usage")
@require_tenant
@require_permission("VIEW_SUBSCRIPTION")
def usage_analysis_route():
    return jsonify(subscription_service.get_usage_analysis(g.tenant_id)), 200


@subscription_bp.post("/plan")
@require_tenant
@require_permission("MANAGE_SUBSCRIPTION")
def change_plan_route():
    data = json_payload()
    sub = subscription_service.change_plan(g.tenant_id, require_str(data, "plan_type"), user_id=g.user_id)
    return jsonify({"subscription": sub.to_dict()}), 200


_STATUS_ACTIONS = {
    "activate": subscription_service.activate_subscription,
    "suspend": subscription_service.suspend_subscription,
    "cancel": subscription_service.cancel_subscription,
}


@subscription_bp.post("/<action>")
@require_tenant
@require_permission("MANAGE_SUBSCRIPTION")
def change_status_route(action: str):
    operation = _STATUS_ACTIONS.get(action)
    if operation is None:
        return jsonify({"error": "Unknown subscription action", "allowed": sorted(_STATUS_ACTIONS)}), 404
    sub = operation(g.tenant_id, user_id=g.user_id)
    return jsonify({"subscription": sub.to_dict()}), 200


@subscription_bp.put("/usage")
@require_tenant
@require_permission("MANAGE_SUBSCRIPTION")
def record_usage_route():
    data = json_payload()
    sub = subscription_service.record_usage(
        g.tenant_id,
        users=optional_int(data, "users"),
        api_calls=optional_int(data, "api_calls"),
    )
    return jsonify({"subscription": sub.to_dict()}), 200


@subscription_bp.get("/audit")
@require_tenant
@require_permission("VIEW_AUDIT")
def list_audit_events_route():
    page = audit_service.list_audit_events(
        g.tenant_id,
        resource=request.args.get("resource") or None,
        resource_id=request.args.get("resource_id") or None,
        action=request.args.get("action") or None,
        pagination=pagination_args(),
    )
    return jsonify(page.to_dict()), 200
