"""Flask entrypoint.

Builds the app, registers every blueprint under /api, verifies the
database and arms the completion reconciler so jobs left in_progress by
a previous process are picked up again.
"""

from __future__ import annotations

import re

from flask import Flask
from flask_cors import CORS

from genstudio.config import config


def create_app(runtime=None, start_reconciler: bool = True) -> Flask:
    app = Flask(__name__)

    if config.ALLOW_ALL_ORIGINS:
        origins = [re.compile(r".*")]
    else:
        origins = config.ALLOWED_ORIGINS or ["http://localhost:5173", "http://localhost:3000"]

    CORS(
        app,
        resources={r"/api/*": {"origins": origins}},
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
        expose_headers=["Content-Type"],
        methods=["GET", "POST", "DELETE", "OPTIONS"],
    )

    from genstudio.routes import register_blueprints
    from genstudio.services.runtime import get_runtime, set_runtime
    from genstudio.utils.error_handlers import register_error_handlers

    register_blueprints(app, print_routes=config.IS_DEV)
    register_error_handlers(app)

    if runtime is not None:
        set_runtime(runtime)
    else:
        from genstudio.db import init_db

        init_db()
        for warning in config.validate():
            print(f"[CONFIG] WARNING: {warning}")

    if start_reconciler:
        get_runtime().reconciler.start()

    return app


if __name__ == "__main__":
    config.log_summary()
    create_app().run(host=config.HOST, port=config.PORT)
