"""
Entry point for the BakuChess web backend.

Development (hot-reload):
    python web_main.py

Reads server.host / server.port from config.yaml (or $BAKUCHESS_CONFIG).
"""

import uvicorn

from bakuchess.web.app import config

if __name__ == "__main__":
    uvicorn.run(
        "bakuchess.web.app:app",
        host=config.server.host,
        port=config.server.port,
        reload=True,
    )
