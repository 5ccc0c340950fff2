from fastapi import FastAPI, WebSocket, Response, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
import logging
import os
import time
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from . import pubsub
from .auth import get_current_crew_member
from .routes import (
    labs,
    sops,
    knowledge,
    submissions,
    experiments,
    ballots,
    training,
    sync,
)

logging.basicConfig(level=os.getenv("LABS_LOG_LEVEL", "INFO"))

dsn = os.getenv("SENTRY_DSN")
if dsn:
    sentry_sdk.init(dsn=dsn, integrations=[FastApiIntegration()])

REQUEST_COUNT = Counter("request_count", "Total requests", ["method", "endpoint"])
REQUEST_LATENCY = Histogram(
    "request_latency_seconds", "Request latency", ["endpoint"]
)

app = FastAPI(title="Field Labs API")

cors_origins = [
    origin.strip()
    for origin in os.getenv("LABS_CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, lambda r, e: Response("Too Many Requests", status_code=429))
if os.getenv("TESTING") != "1":
    app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    endpoint = request.url.path
    REQUEST_COUNT.labels(request.method, endpoint).inc()
    REQUEST_LATENCY.labels(endpoint).observe(time.time() - start)
    return response

@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

app.include_router(labs.router)
app.include_router(sops.router)
app.include_router(knowledge.router)
app.include_router(submissions.router)
app.include_router(experiments.router)
app.include_router(ballots.router)
app.include_router(training.router)
app.include_router(sync.router)


def _depends_on(dependant, target) -> bool:
    for dep in dependant.dependencies:
        if dep.call is target or _depends_on(dep, target):
            return True
    return False


def audit_routes():
    for route in app.routes:
        if isinstance(route, APIRoute) and route.path.startswith("/api"):
            if not _depends_on(route.dependant, get_current_crew_member):
                raise RuntimeError(f"Route {route.path} missing crew identity")


audit_routes()


@app.websocket("/ws/labs/{topic}")
async def websocket_endpoint(websocket: WebSocket, topic: str):
    await websocket.accept()
    async for data in pubsub.iter_labs_events(topic):
        await websocket.send_text(data)
