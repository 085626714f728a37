"""
WebSocket endpoint for the browser UI.

The UI connects to /ws and receives a frame whenever the store or the set of
visible popups changes. It sends pointer and button events back over the
same socket.

Frames (JSON):

  Server push  {"type": "notifications", "payload": {"notifications": [...], "unreadCount": n}}
               {"type": "popups",        "payload": {"visible": [...], "queued": n}}
  Command      {"type": "<command>",     "payload": {...}}
  Reply        {"type": "reply", "ok": true|false, "error": "<str>"}   # error only when ok=false

Commands:
  popup/hover            {"id": str, "hovered": bool}
  popup/close            {"id": str}
  popup/read             {"id": str}
  notification/read      {"id": str}
  notification/read-all  {}
  notification/delete    {"id": str}
"""
import json
import logging
import queue

from flask_sock import Sock
from simple_websocket import ConnectionClosed

from flowbell.context import ClientContext, get_context

log = logging.getLogger("flowbell.routes.ws")

sock = Sock()   # bound to the Flask app in agent.create_app

_POLL_INTERVAL = 0.2   # seconds between outbox flushes while waiting for input


def _notifications_frame(records) -> dict:
    return {
        "type": "notifications",
        "payload": {
            "notifications": [n.to_dict() for n in records],
            "unreadCount": sum(1 for n in records if not n.read),
        },
    }


def _popups_frame(ctx: ClientContext, popups) -> dict:
    return {
        "type": "popups",
        "payload": {"visible": [p.to_dict() for p in popups], "queued": ctx.popups.queued()},
    }


def handle_command(ctx: ClientContext, raw: str) -> dict:
    """Apply one UI command and return the reply frame."""
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError:
        return {"type": "reply", "ok": False, "error": "bad JSON"}
    if not isinstance(msg, dict):
        return {"type": "reply", "ok": False, "error": "expected an object"}

    msg_type = msg.get("type", "")
    payload = msg.get("payload") or {}
    if not isinstance(payload, dict):
        return {"type": "reply", "ok": False, "error": "payload must be an object"}
    notif_id = str(payload.get("id", ""))

    if msg_type == "notification/read-all":
        ctx.store.mark_all_as_read()
        return {"type": "reply", "ok": True}
    if msg_type not in ("popup/hover", "popup/close", "popup/read",
                        "notification/read", "notification/delete"):
        return {"type": "reply", "ok": False, "error": f"unknown type: {msg_type}"}
    if not notif_id:
        return {"type": "reply", "ok": False, "error": "id is required"}

    if msg_type == "popup/hover":
        ok = ctx.popups.set_hovered(notif_id, bool(payload.get("hovered")))
    elif msg_type == "popup/close":
        ok = ctx.popups.close(notif_id)
    elif msg_type == "popup/read":
        ok = ctx.popups.mark_as_read(notif_id)
    elif msg_type == "notification/read":
        ok = ctx.store.mark_as_read(notif_id)
    else:
        ok = ctx.store.delete_notification(notif_id)
    if ok:
        return {"type": "reply", "ok": True}
    return {"type": "reply", "ok": False, "error": "not found"}


@sock.route("/ws")
def notifications_ws(ws):
    """
    Push store/popup changes to one browser tab until it disconnects.

    Listener callbacks run on whichever thread changed the state, so they
    only enqueue frames; all socket I/O stays on this handler thread.
    """
    ctx = get_context()
    outbox: queue.Queue = queue.Queue()
    store_sub = ctx.store.subscribe(lambda records: outbox.put(_notifications_frame(records)))
    popup_sub = ctx.popups.changes.subscribe(lambda popups: outbox.put(_popups_frame(ctx, popups)))
    outbox.put(_popups_frame(ctx, ctx.popups.visible()))
    log.info("UI socket connected")
    try:
        while True:
            while True:
                try:
                    frame = outbox.get_nowait()
                except queue.Empty:
                    break
                ws.send(json.dumps(frame))
            raw = ws.receive(timeout=_POLL_INTERVAL)
            if raw is None:
                continue
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="replace")
            ws.send(json.dumps(handle_command(ctx, raw)))
    except ConnectionClosed as exc:
        log.info("UI socket closed: %s", exc)
    finally:
        store_sub.unsubscribe()
        popup_sub.unsubscribe()
