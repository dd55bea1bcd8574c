from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.material_requests import router as material_requests_router
from app.api.task_messages import router as task_messages_router
from app.config import settings
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.telemetry import setup_otel

configure_logging()

app = FastAPI(title="sitecrew API")
setup_otel(app)
register_error_handlers(app)

app.include_router(material_requests_router, prefix="/api")
app.include_router(task_messages_router, prefix="/api")
app.mount(
    settings.storage_local_url_prefix,
    StaticFiles(directory=settings.storage_local_root, check_dir=False),
    name="static",
)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.head("/health")
def head_health():
    return Response(status_code=200)


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
