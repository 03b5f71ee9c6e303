"""Serve the addon with uvicorn: ``python -m bgstreams.web``."""

import logging
import os

import uvicorn


def main():
    logging.basicConfig(
        level=getattr(logging, str(os.environ.get("LOG_LEVEL", "INFO")).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    from .app import app

    settings = app.state.runtime.settings
    host = str(settings.get("host", "0.0.0.0") or "0.0.0.0")
    port = int(settings.get("port", 7000) or 7000)
    logging.getLogger(__name__).info("Addon accessible at: http://127.0.0.1:%d/manifest.json", port)
    try:
        uvicorn.run(app, host=host, port=port)
    finally:
        app.state.runtime.shutdown()


if __name__ == "__main__":
    main()
