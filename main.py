import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import CORS_ORIGINS, GATEWAY_TIMEOUT_SECONDS, NOTIFICATION_MODE, configure_logging
from models import db, client, init_models
from api.api_router import api_router
from api.errors import register_global_exception_handlers
from services.notifications import build_notification_sink
from services.payments import RazorpayGateway

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models(db)

    app.state.http_client = httpx.AsyncClient(timeout=GATEWAY_TIMEOUT_SECONDS)
    app.state.gateway = RazorpayGateway(app.state.http_client)
    app.state.notifier = build_notification_sink(NOTIFICATION_MODE)
    if not app.state.gateway.configured:
        logger.warning("Razorpay credentials missing, online payments will fail")
    logger.info("FixFly backend started (notifications: %s)", NOTIFICATION_MODE)

    yield

    await app.state.http_client.aclose()
    await client.close()

app = FastAPI(
    lifespan=lifespan,
    title="fixfly_backend",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_global_exception_handlers(app)

app.include_router(api_router)

@app.get("/healthcheck", status_code=200)
async def healthcheck():
    return {"status": "ok"}
