import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storefront.api.deps import get_notifier, get_payment_adapters
from storefront.api.health import router as health_router
from storefront.api.routes_coupons import router as coupons_router
from storefront.api.routes_order import router as order_router
from storefront.api.routes_payments import router as payments_router
from storefront.config import settings
from storefront.db import SessionLocal, init_db
from storefront.services.order_service import OrderService
from storefront.utils.log_setup import configure_logging

log = logging.getLogger(__name__)


def expire_job():
    """Cancel gateway orders abandoned before payment and release their stock."""
    db = SessionLocal()
    try:
        svc = OrderService(db, adapters=get_payment_adapters(), notifier=get_notifier())
        ids = svc.expire_abandoned()
        if ids:
            log.info("expired %d abandoned orders: %s", len(ids), ids)
    except Exception:
        log.exception("abandoned-order sweep failed")
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    init_db()

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        expire_job, "interval", seconds=settings.EXPIRY_SWEEP_SECONDS, id="expire_abandoned_orders"
    )
    scheduler.start()

    try:
        yield
    finally:
        scheduler.shutdown(wait=False)


app = FastAPI(title="Storefront Orders", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, prefix="/api", tags=["health"])

app.include_router(order_router, prefix="/api/orders", tags=["orders"])

app.include_router(payments_router, tags=["payments"])

app.include_router(coupons_router, tags=["coupons"])


def run():
    import uvicorn

    uvicorn.run("storefront.main:app", host=settings.APP_HOST, port=settings.APP_PORT)


if __name__ == "__main__":
    run()
