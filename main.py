from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates

from pathlib import Path
import logging
import os
import time

from db import Base, ROOT_DIR, engine
from errors import StoreError
from invalidation import hub
from routers import ALL_ROUTERS

import orm  # noqa: F401  (registers tables on Base.metadata)

# -----------------------
# Logging
# -----------------------
logging.basicConfig(
    level=os.getenv("APP_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("app")


def resolve_templates_dir(root_dir: Path) -> Path:
    templates_dir = Path(os.getenv("APP_TEMPLATES_DIR", "templates")).expanduser()
    if not templates_dir.is_absolute():
        templates_dir = root_dir / templates_dir
    return templates_dir


app = FastAPI(title="Studio Field Deployments")
templates = Jinja2Templates(directory=str(resolve_templates_dir(ROOT_DIR)))
app.state.templates = templates

Base.metadata.create_all(bind=engine)

for router in ALL_ROUTERS:
    app.include_router(router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    elapsed_ms = int((time.time() - start) * 1000)
    logger.info(
        "method=%s path=%s status=%s elapsed_ms=%s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("store failure path=%s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=503, content={"detail": exc.message})


def log_invalidation(path: str) -> None:
    logger.info("view invalidated path=%s", path)


hub.subscribe(log_invalidation)


@app.get("/")
def root():
    return {"message": "Studio Field Deployments", "docs": "/docs", "ui": "/ui/deployments"}
