from __future__ import annotations

from datetime import UTC, datetime
import os
from dotenv import load_dotenv
import logging
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .errors import install_error_handlers
from .routers.generate import router as generate_router
from .routers.sessions import router as sessions_router
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # Load environment variables from .env if present (GEMINI_API_KEY, MONGO_URL, etc.)

app = FastAPI(title="Component Studio API", version="0.1.0")

logging.basicConfig(level=logging.INFO)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

install_error_handlers(app)

# Routers
app.include_router(sessions_router)
app.include_router(generate_router)

# Same routers under /api for the web client
app.include_router(sessions_router, prefix="/api")
app.include_router(generate_router, prefix="/api")

# CORS (for the Next.js dev server on localhost:3000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Uploaded reference images
app.mount("/uploads", StaticFiles(directory=os.getenv("STUDIO_UPLOAD_DIR", "uploads"), check_dir=False), name="uploads")


def _health() -> dict:
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "session_store": os.getenv("STUDIO_SESSION_STORE_IMPL", "memory").lower(),
        },
    }


@app.get("/")
def root():
    return {"name": "Component Studio API", "version": "0.1.0"}


@app.get("/health")
def health():
    return _health()


@app.get("/api/health")
def api_health():
    return _health()


@app.get("/metrics")
@app.get("/api/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
