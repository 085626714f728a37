import logging

from flask import Blueprint, request, jsonify

from flowbell.context import get_context

log = logging.getLogger("flowbell.routes.popups")

bp = Blueprint("popups", __name__)


@bp.route("/popups")
def list_popups():
    popups = get_context().popups
    return jsonify({
        "visible": [p.to_dict() for p in popups.visible()],
        "queued": popups.queued(),
    })


@bp.route("/popups/<notif_id>/hover", methods=["POST"])
def hover_popup(notif_id):
    data = request.json or {}
    if "hovered" not in data:
        return jsonify({"error": "hovered is required"}), 400
    if get_context().popups.set_hovered(notif_id, bool(data["hovered"])):
        return jsonify({"ok": True})
    return jsonify({"error": "not found"}), 404


@bp.route("/popups/<notif_id>/close", methods=["POST"])
def close_popup(notif_id):
    return jsonify({"ok": get_context().popups.close(notif_id)})


@bp.route("/popups/<notif_id>/read", methods=["POST"])
def read_popup(notif_id):
    return jsonify({"ok": get_context().popups.mark_as_read(notif_id)})
