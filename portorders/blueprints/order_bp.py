"""
Orders Blueprint.

Endpoints:
  Order:       GET /orders, GET /orders/<id>
  OrderGroup:  GET /order-groups?status=, GET /order-groups/<id>
               POST /order-groups/<id>/accept    {notes?}
               POST /order-groups/<id>/reject    {rejection_reason, notes?}
               POST /order-groups/<id>/start
               POST /order-groups/<id>/complete
  Line item:   POST /order-group-services/<id>/status  {status}

Order status is never written here: every group action re-aggregates it.
"""

import logging

from flask import Blueprint, jsonify, request

from portorders.blueprints import (
    current_actor,
    json_body,
    paginate_items,
    register_error_handlers,
)
from portorders.services import order_service, order_status_service

logger = logging.getLogger(__name__)

order_bp = Blueprint("orders", __name__, url_prefix="/api/v1")
register_error_handlers(order_bp)


# ═════════════════════════════════════════════════════════════════════════════
# Orders
# ═════════════════════════════════════════════════════════════════════════════


@order_bp.route("/orders", methods=["GET"])
def list_orders():
    orders = order_service.list_orders(current_actor(), request.args.get("status"))
    page, total = paginate_items(orders)
    return jsonify({"items": [o.to_dict() for o in page], "total": total})


@order_bp.route("/orders/<int:order_id>", methods=["GET"])
def get_order(order_id):
    order = order_service.get_order(current_actor(), order_id)
    return jsonify(order.to_dict(include_groups=True))


# ═════════════════════════════════════════════════════════════════════════════
# Order groups
# ═════════════════════════════════════════════════════════════════════════════


@order_bp.route("/order-groups", methods=["GET"])
def list_order_groups():
    """Groups addressed to the acting agency, with per-status counts."""
    groups, counts = order_service.list_order_groups(current_actor(), request.args.get("status"))
    page, total = paginate_items(groups)
    return jsonify({
        "items": [g.to_dict() for g in page],
        "total": total,
        "counts": counts,
    })


@order_bp.route("/order-groups/<int:group_id>", methods=["GET"])
def get_order_group(group_id):
    group = order_service.get_order_group(current_actor(), group_id)
    result = group.to_dict(include_items=True)
    result["order"] = group.order.to_dict()
    result["sibling_groups"] = [
        g.to_dict() for g in group.order.groups if g.id != group.id
    ]
    return jsonify(result)


@order_bp.route("/order-groups/<int:group_id>/accept", methods=["POST"])
def accept_group(group_id):
    data = json_body()
    group = order_status_service.accept_group(current_actor(), group_id, notes=data.get("notes"))
    return _transition_response(group)


@order_bp.route("/order-groups/<int:group_id>/reject", methods=["POST"])
def reject_group(group_id):
    data = json_body()
    group = order_status_service.reject_group(
        current_actor(), group_id,
        reason=data.get("rejection_reason"), notes=data.get("notes"),
    )
    return _transition_response(group)


@order_bp.route("/order-groups/<int:group_id>/start", methods=["POST"])
def start_group(group_id):
    group = order_status_service.start_group(current_actor(), group_id)
    return _transition_response(group)


@order_bp.route("/order-groups/<int:group_id>/complete", methods=["POST"])
def complete_group(group_id):
    group = order_status_service.complete_group(current_actor(), group_id)
    return _transition_response(group)


# ═════════════════════════════════════════════════════════════════════════════
# Order group line items
# ═════════════════════════════════════════════════════════════════════════════


@order_bp.route("/order-group-services/<int:item_id>/status", methods=["POST"])
def update_item_status(item_id):
    data = json_body()
    item = order_status_service.update_item_status(current_actor(), item_id, data.get("status"))
    group = item.order_group
    return jsonify({
        "item": item.to_dict(),
        "order_group": group.to_dict(include_items=True),
        "order_status": group.order.status.value,
    })


def _transition_response(group):
    return jsonify({
        "order_group": group.to_dict(include_items=True),
        "order_status": group.order.status.value,
    })
