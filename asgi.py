"""
asgi.py -- Application assembly for the Weight Tracker.

This is the ONLY file that imports from both api/ and web/. It joins the two
independent layers into a single ASGI app without coupling them to each other.
api/main.py knows nothing about web/; web/routes.py knows nothing about api/.

Run with:  uvicorn asgi:app --reload
           weight-tracker            (console script, binds HOST:PORT from settings)
"""

import uvicorn
from fastapi.staticfiles import StaticFiles

from api.main import app
from core.config import get_settings
from web.routes import STATIC_DIR
from web.routes import router as web_router

# Mount the web UI router here, not in api/main.py.
# This keeps api/ and web/ independent -- neither imports from the other.
app.include_router(web_router, tags=["Web UI"], include_in_schema=False)
app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


def main() -> None:
    """Serve the assembled app with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "asgi:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
