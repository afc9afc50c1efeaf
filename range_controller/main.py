# range_controller/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from range_controller.api import jobs, pods, resources, templates
from range_controller.config import settings
from range_controller.exceptions import PodError
from range_controller.services import build_services

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # tests install their own container before startup
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)
    try:
        yield
    finally:
        app.state.services.close()
        app.state.services = None


app = FastAPI(title="Mini Range Controller API", lifespan=lifespan)

app.include_router(pods.router)
app.include_router(jobs.router)
app.include_router(resources.router)
app.include_router(templates.router)


@app.exception_handler(PodError)
async def pod_error_handler(request: Request, exc: PodError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed (%s): %s", request.method, request.url.path, exc.kind, exc)
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc), "kind": exc.kind})


@app.get("/")
def root():
    return {"status": "controller up"}


@app.get("/health")
def health():
    return {"status": "ok"}
