from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./storefront.db"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    FRONTEND_ORIGINS: List[str] = ["http://localhost:5173"]
    ADMIN_API_KEY: str = "change-this-admin-key"

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # money is kept in minor units (paise)
    CURRENCY: str = "INR"
    SHIPPING_FLAT_CENTS: int = 0
    FREE_SHIPPING_THRESHOLD_CENTS: Optional[int] = None

    RETURN_WINDOW_DAYS: int = 7

    # gateway orders left unpaid longer than this are cancelled by the sweeper
    PAYMENT_PENDING_TTL_SECONDS: int = 86400
    EXPIRY_SWEEP_SECONDS: int = 300

    GATEWAY_BACKEND: str = "mock"  # mock | razorpay
    GATEWAY_KEY_ID: str = "rzp_test_key"
    GATEWAY_KEY_SECRET: str = "change-this-gateway-secret"
    GATEWAY_BASE_URL: str = "https://api.razorpay.com/v1"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    MANUAL_PAYEE_VPA: str = "store@upi"
    MANUAL_PAYEE_NAME: str = "Storefront"

    TRACKING_URL_TEMPLATE: str = "https://shiprocket.co/tracking/{tracking_id}"
    LOCKS_DIR: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()
