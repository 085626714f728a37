import logging

from flask import Blueprint, request, jsonify

from flowbell.context import get_context
from flowbell.dashboard import select_notifications, style_for
from flowbell.models import NOTIFICATION_TYPES

log = logging.getLogger("flowbell.routes.notifications")

bp = Blueprint("notifications", __name__)

LIMIT_MAX = 500


def _serialize(n) -> dict:
    out = n.to_dict()
    out.update(style_for(n.type))
    return out


@bp.route("/notifications")
def list_notifications():
    limit = request.args.get("limit", default=0, type=int)
    limit = max(0, min(LIMIT_MAX, limit))
    unread_only = (request.args.get("unread") or "").lower() in ("1", "true", "yes")
    store = get_context().store
    shown = select_notifications(store.get_notifications(), limit, unread_only)
    return jsonify({
        "notifications": [_serialize(n) for n in shown],
        "unreadCount": store.get_unread_count(),
    })


@bp.route("/notifications/unread-count")
def unread_count():
    return jsonify({"count": get_context().store.get_unread_count()})


@bp.route("/notifications/status")
def status():
    return jsonify(get_context().status())


@bp.route("/notifications", methods=["POST"])
def add_notification():
    data = request.json or {}
    title = str(data.get("title", "")).strip()
    message = str(data.get("message", "")).strip()
    if not title or not message:
        return jsonify({"error": "title and message are required"}), 400
    ntype = data.get("type", "info")
    if ntype not in NOTIFICATION_TYPES:
        return jsonify({"error": f"type must be one of {NOTIFICATION_TYPES}"}), 400
    partial = {"title": title, "message": message, "type": ntype}
    if data.get("senderName"):
        partial["senderName"] = str(data["senderName"])
    record = get_context().store.add_notification(partial)
    log.info("Local notification added: %s", record.title)
    return jsonify(_serialize(record)), 201


@bp.route("/notifications/<notif_id>/read", methods=["POST"])
def mark_read(notif_id):
    if get_context().store.mark_as_read(notif_id):
        return jsonify({"ok": True})
    return jsonify({"error": "not found"}), 404


@bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    flipped = get_context().store.mark_all_as_read()
    return jsonify({"ok": True, "marked": flipped})


@bp.route("/notifications/<notif_id>", methods=["DELETE"])
def delete_notification(notif_id):
    return jsonify({"ok": get_context().store.delete_notification(notif_id)})


@bp.route("/notifications", methods=["DELETE"])
def clear_notifications():
    get_context().store.clear_all()
    return jsonify({"ok": True})
