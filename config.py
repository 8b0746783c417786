"""
Storefront configuration

All settings come from the environment (.env is loaded on import).
"""

import os

from dotenv import load_dotenv

load_dotenv()


class StorefrontConfig:
    """Centralized configuration for the storefront"""

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///freshcart.db")
    DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    # Locale
    STORE_NAME = os.getenv("STORE_NAME", "FreshCart")
    STORE_TIMEZONE = os.getenv("STORE_TIMEZONE", "Africa/Nairobi")
    CURRENCY = os.getenv("CURRENCY", "KES")

    # Delivery defaults (overridden by the delivery_settings row)
    WAREHOUSE_LAT = float(os.getenv("WAREHOUSE_LAT", "-1.2921"))
    WAREHOUSE_LNG = float(os.getenv("WAREHOUSE_LNG", "36.8219"))
    FREE_DELIVERY_THRESHOLD = float(os.getenv("FREE_DELIVERY_THRESHOLD", "50"))

    # External services
    GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY")
    LIPANA_SECRET_KEY = os.getenv("LIPANA_SECRET_KEY")
    LIPANA_BASE_URL = os.getenv("LIPANA_BASE_URL", "https://api.lipana.dev/v1")
    LIPANA_WEBHOOK_SECRET = os.getenv("LIPANA_WEBHOOK_SECRET")
    WEBHOOK_PORT = int(os.getenv("WEBHOOK_PORT", "5005"))
    RECEIPT_FUNCTION_URL = os.getenv("RECEIPT_FUNCTION_URL")
    RECEIPT_FUNCTION_TOKEN = os.getenv("RECEIPT_FUNCTION_TOKEN")
    DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY")
    DEEPSEEK_BASE_URL = os.getenv("DEEPSEEK_BASE_URL", "https://api.deepseek.com")

    @classmethod
    def warehouse_location(cls):
        """Default warehouse coordinates as a {lat, lng} point"""
        return {"lat": cls.WAREHOUSE_LAT, "lng": cls.WAREHOUSE_LNG}
