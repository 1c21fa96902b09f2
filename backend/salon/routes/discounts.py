from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..services import discount_rules_service
from ..validation import ValidationError, ConflictError

discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/discount-rules")


@discounts_bp.route("", methods=["GET"])
def list_discount_rules():
    include_deleted = request.args.get("include_deleted", "false").lower() == "true"
    rules = discount_rules_service.list_rules(include_deleted=include_deleted)
    return jsonify({"items": [r.to_dict() for r in rules], "count": len(rules)})


@discounts_bp.route("", methods=["POST"])
def create_discount_rule():
    data = request.get_json(silent=True) or {}
    try:
        rule = discount_rules_service.create_rule(data)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    return jsonify({"rule": rule.to_dict()}), 201


@discounts_bp.route("/<int:rule_id>", methods=["PATCH"])
def update_discount_rule(rule_id: int):
    data = request.get_json(silent=True) or {}
    try:
        rule = discount_rules_service.update_rule(rule_id, data)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    if not rule:
        return jsonify({"error": "Not found"}), 404
    return jsonify({"rule": rule.to_dict()})


@discounts_bp.route("/<int:rule_id>", methods=["DELETE"])
def delete_discount_rule(rule_id: int):
    rule = discount_rules_service.soft_delete_rule(rule_id)
    if not rule:
        return jsonify({"error": "Not found"}), 404
    return jsonify({"rule": rule.to_dict()})
