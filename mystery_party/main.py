from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from mystery_party.api.deps import get_settings
from mystery_party.api.routes import router

# Local runs pick up MYSTERY_* / REDIS_URL from a repo .env; real env vars win.
load_dotenv(override=False)

settings = get_settings()

# Configure logging
logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="mystery-party", version="0.1.0")
app.include_router(router)


@app.exception_handler(StarletteHTTPException)
async def _error_envelope(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Clients expect {"error": "..."} rather than FastAPI's {"detail": "..."}.
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "mystery-party", "version": "0.1.0", "store": settings.store}


# Serve the browser UI when it is shipped next to the package (no build step).
# The data directory lives outside it and is never served.
_static_dir = Path(__file__).resolve().parent / "static"
if _static_dir.exists():
    app.mount("/", StaticFiles(directory=str(_static_dir), html=True), name="ui")
