"""Process entry point.

``app`` is the ASGI application for external servers
(``uvicorn app.main:app``); it is built on first access. ``main()`` runs the
bundled server with every startup step (settings, logging, app construction)
inside the fatal-error guard and a guaranteed log flush on exit.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI

from app.core.app_factory import create_app
from app.core.config import get_settings
from app.core.logging import configure_logging, shutdown_logging

logger = logging.getLogger("app")


def __getattr__(name: str) -> FastAPI:
    if name == "app":
        application = create_app(get_settings())
        globals()["app"] = application
        return application
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def main() -> int:
    """Load settings, build the app and serve it until shutdown.

    Returns:
        Process exit status: 0 on a clean shutdown, 1 on a fatal error.
    """
    try:
        cfg = get_settings()
        configure_logging(cfg.log)
        application = create_app(cfg)
        uvicorn.run(
            application,
            host=cfg.app.host,
            port=cfg.app.port,
            log_config=None,
            access_log=False,
        )
        return 0
    except SystemExit as exc:
        # uvicorn exits this way when the server cannot start
        if exc.code in (0, None):
            return 0
        logger.critical("host_terminated_unexpectedly", extra={"exit_code": exc.code})
        return 1
    except Exception:
        logger.critical("host_terminated_unexpectedly", exc_info=True)
        return 1
    finally:
        shutdown_logging()


if __name__ == "__main__":
    sys.exit(main())
