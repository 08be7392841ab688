from fastapi import APIRouter, Depends
from sqlalchemy import text

from storefront.api.deps import get_payment_adapters
from storefront.adapters.payments import METHOD_GATEWAY
from storefront.db import engine

router = APIRouter()


@router.get("/health", tags=["health"])
def health(adapters=Depends(get_payment_adapters)):
    db_ok = False
    gateway_ok = False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            db_ok = True
    except Exception:
        db_ok = False
    try:
        gateway_ok = adapters[METHOD_GATEWAY].client.health_check()
    except Exception:
        gateway_ok = False

    return {
        "status": "ok" if db_ok and gateway_ok else "degraded",
        "db": db_ok,
        "payment_gateway": gateway_ok,
    }
