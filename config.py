"""Configuration module for the dispensary cart core."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'dispensary')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'dispensary')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'dispensary')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Redis (durable storage for cart, selected customer and durable cache namespaces)
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'dispensary')

    # Cache TTLs (seconds) per category
    CACHE_PRODUCT_TTL = int(os.getenv('CACHE_PRODUCT_TTL', '300'))
    CACHE_PROFILE_TTL = int(os.getenv('CACHE_PROFILE_TTL', '1800'))
    CACHE_LEDGER_TTL = int(os.getenv('CACHE_LEDGER_TTL', '300'))
    CACHE_SETTINGS_TTL = int(os.getenv('CACHE_SETTINGS_TTL', '86400'))
    CACHE_SWEEP_INTERVAL = int(os.getenv('CACHE_SWEEP_INTERVAL', '300'))
    # Comma-separated categories mirrored to durable storage
    CACHE_DURABLE_CATEGORIES = os.getenv('CACHE_DURABLE_CATEGORIES', 'settings')

    # Cart
    CART_MAX_LINE_QTY = int(os.getenv('CART_MAX_LINE_QTY', '99'))
    CART_OVER_LIMIT_POLICY = os.getenv('CART_OVER_LIMIT_POLICY', 'clamp')  # 'clamp' or 'reject'
    CART_STORAGE_KEY = os.getenv('CART_STORAGE_KEY', 'cart')
    SELECTED_CUSTOMER_KEY = os.getenv('SELECTED_CUSTOMER_KEY', 'selectedCustomer')

    # Stock locations
    SHOP_LOCATION_NAME = os.getenv('SHOP_LOCATION_NAME', 'shop')
    FACILITY_LOCATION_NAME = os.getenv('FACILITY_LOCATION_NAME', 'facility')

    # Notifications (seconds a message stays visible)
    NOTIFICATION_DURATION = float(os.getenv('NOTIFICATION_DURATION', '3'))


class TestingConfig(Config):
    """Configuration for the test suite: in-memory SQLite, no Redis."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    CACHE_ENABLED = False
    NOTIFICATION_DURATION = 0.01
