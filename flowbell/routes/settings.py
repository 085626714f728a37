import logging

from flask import Blueprint, request, jsonify

from flowbell.context import get_context

log = logging.getLogger("flowbell.routes.settings")

bp = Blueprint("settings", __name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _apply_log_level(level_name: str):
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.getLogger().setLevel(level)


@bp.route("/settings")
def get_settings():
    return jsonify(get_context().settings.to_dict())


@bp.route("/settings", methods=["POST"])
def update_settings():
    ctx = get_context()
    settings = ctx.settings
    data = request.json or {}

    if "log_level" in data:
        level = str(data["log_level"]).upper()
        if level not in _LOG_LEVELS:
            return jsonify({"error": "log_level must be DEBUG, INFO, WARNING, or ERROR"}), 400

    seconds_fields = ("popup_interval", "popup_duration", "reconnect_delay")
    parsed: dict[str, float] = {}
    for fld in seconds_fields:
        if fld in data:
            try:
                value = float(data[fld])
            except (ValueError, TypeError):
                return jsonify({"error": f"{fld} must be a number"}), 400
            if value < 0:
                return jsonify({"error": f"{fld} must not be negative"}), 400
            parsed[fld] = value

    if "log_level" in data:
        settings.log_level = str(data["log_level"]).upper()
        _apply_log_level(settings.log_level)
    for fld, value in parsed.items():
        setattr(settings, fld, value)

    # Components read these at use time, so changes apply to the next popup / reconnect
    ctx.popups.interval = settings.popup_interval
    ctx.popups.duration = settings.popup_duration
    ctx.stream.reconnect_delay = settings.reconnect_delay

    log.info("Settings updated: %s", settings.to_dict())
    return jsonify(settings.to_dict())
