from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from unleashed_sync.api.sync import router as sync_router
from unleashed_sync.errors import register_error_handlers
from unleashed_sync.logging import configure_logging

app = FastAPI(title="unleashed_sync API")

configure_logging()
register_error_handlers(app)

app.include_router(sync_router)


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
