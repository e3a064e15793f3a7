"""
Order Wizard Blueprint.

Endpoints:
  Sessions:    GET/POST /wizard/sessions, GET/DELETE /wizard/sessions/<id>
  Steps:       PUT  /wizard/sessions/<id>/vessel-port
               PUT  /wizard/sessions/<id>/categories
               PUT  /wizard/sessions/<id>/services
               POST /wizard/sessions/<id>/step
  Completion:  POST /wizard/sessions/<id>/complete   → Order + OrderGroups
"""

import logging

from flask import Blueprint, jsonify

from portorders.blueprints import current_actor, json_body, register_error_handlers
from portorders.services import order_service, wizard_service

logger = logging.getLogger(__name__)

wizard_bp = Blueprint("wizard", __name__, url_prefix="/api/v1/wizard")
register_error_handlers(wizard_bp)


# ═════════════════════════════════════════════════════════════════════════════
# Session lifecycle
# ═════════════════════════════════════════════════════════════════════════════


@wizard_bp.route("/sessions", methods=["POST"])
def start_session():
    """Start a new session; older drafts of the same user/organization are dropped."""
    data = json_body()
    session = wizard_service.start_session(current_actor(), data.get("session_name"))
    return jsonify(session.to_dict()), 201


@wizard_bp.route("/sessions", methods=["GET"])
def list_sessions():
    sessions = wizard_service.list_active_sessions(current_actor())
    return jsonify({
        "items": [s.to_dict(include_selections=False) for s in sessions],
        "total": len(sessions),
    })


@wizard_bp.route("/sessions/<int:session_id>", methods=["GET"])
def get_session(session_id):
    session = wizard_service.get_session(current_actor(), session_id)
    return jsonify(session.to_dict())


@wizard_bp.route("/sessions/<int:session_id>", methods=["DELETE"])
def cancel_session(session_id):
    wizard_service.cancel_session(current_actor(), session_id)
    return "", 204


# ═════════════════════════════════════════════════════════════════════════════
# Steps
# ═════════════════════════════════════════════════════════════════════════════


@wizard_bp.route("/sessions/<int:session_id>/vessel-port", methods=["PUT"])
def set_vessel_and_port(session_id):
    data = json_body()
    session = wizard_service.set_vessel_and_port(
        current_actor(), session_id, data.get("vessel_id"), data.get("port_id"),
    )
    return jsonify(session.to_dict())


@wizard_bp.route("/sessions/<int:session_id>/categories", methods=["PUT"])
def set_categories(session_id):
    data = json_body()
    session = wizard_service.set_categories(current_actor(), session_id, data.get("sub_category_ids"))
    return jsonify(session.to_dict())


@wizard_bp.route("/sessions/<int:session_id>/services", methods=["PUT"])
def set_services(session_id):
    data = json_body()
    session = wizard_service.set_services(current_actor(), session_id, data.get("services"))
    return jsonify(session.to_dict())


@wizard_bp.route("/sessions/<int:session_id>/step", methods=["POST"])
def go_to_step(session_id):
    """Navigate to another step without discarding selections."""
    data = json_body()
    session = wizard_service.go_to_step(current_actor(), session_id, data.get("step"))
    return jsonify(session.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Completion
# ═════════════════════════════════════════════════════════════════════════════


@wizard_bp.route("/sessions/<int:session_id>/complete", methods=["POST"])
def complete_session(session_id):
    """Decompose the session into an Order with one OrderGroup per agency."""
    data = json_body()
    order = order_service.complete_session(current_actor(), session_id, data.get("notes"))
    return jsonify({
        "order": order.to_dict(include_groups=True),
        "order_group_ids": [g.id for g in order.groups],
    }), 201
