"""
flowbell agent entrypoint.

Reads settings from the environment, builds the client context (store,
popup scheduler, push stream, REST client), registers the Flask blueprints
and serves the local UI API. The context is created here, once, and passed
into the app; no component is constructed at import time.
"""
import logging
import os

from flask import Flask

from flowbell.context import EXTENSION_KEY, ClientContext
from flowbell.models import ClientSettings
from flowbell.routes import notifications as notifications_bp
from flowbell.routes import popups as popups_bp
from flowbell.routes import settings as settings_bp
from flowbell.routes.ws import sock

log = logging.getLogger("flowbell.agent")

_LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"


def configure_logging(level_name: str = "INFO"):
    logging.basicConfig(level=logging.INFO, format=_LOG_FORMAT)
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.getLogger().setLevel(level)
    # requests/urllib3 log every reconnect at DEBUG; keep them quieter than ours
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))


def create_app(context: ClientContext) -> Flask:
    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = context

    app.register_blueprint(notifications_bp.bp)
    app.register_blueprint(popups_bp.bp)
    app.register_blueprint(settings_bp.bp)
    sock.init_app(app)
    return app


def main():
    settings = ClientSettings.from_env()
    configure_logging(settings.log_level)
    log.info("Starting flowbell agent (api=%s, storage=%s)",
             settings.api_url, settings.storage_backend)

    context = ClientContext(settings)
    app = create_app(context)
    context.mount()
    try:
        app.run(host=os.environ.get("FLOWBELL_HOST", "127.0.0.1"),
                port=int(os.environ.get("FLOWBELL_PORT", "8000")),
                threaded=True)
    finally:
        context.teardown()


if __name__ == "__main__":
    main()
