# keyshop/config.py
import os
import logging
from decimal import Decimal
from pathlib import Path
from dotenv import load_dotenv
from typing import List

# Load environment variables
load_dotenv()

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent

class Config:
    """Configuration settings for the shop backend"""

    # Database settings
    DATABASE_URL: str = os.getenv("DATABASE_URL")
    if not DATABASE_URL:
        raise ValueError("No DATABASE_URL set in environment")
    DB_POOL_MIN: int = int(os.getenv("DB_POOL_MIN", "2"))
    DB_POOL_MAX: int = int(os.getenv("DB_POOL_MAX", "10"))

    # HTTP settings
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))

    # Auth settings
    SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-secret-change-me")
    ACCESS_TOKEN_TTL: int = int(os.getenv("ACCESS_TOKEN_TTL", "3600"))
    PERMISSION_CACHE_TTL: int = int(os.getenv("PERMISSION_CACHE_TTL", "300"))

    # Fulfillment and wallet rules
    DELIVERY_WINDOW_DAYS: int = int(os.getenv("DELIVERY_WINDOW_DAYS", "30"))
    DEPOSIT_EXPIRY_MINUTES: int = int(os.getenv("DEPOSIT_EXPIRY_MINUTES", "30"))
    MIN_DEPOSIT_AMOUNT: Decimal = Decimal(os.getenv("MIN_DEPOSIT_AMOUNT", "10000"))
    MAX_DEPOSIT_AMOUNT: Decimal = Decimal(os.getenv("MAX_DEPOSIT_AMOUNT", "50000000"))
    EXPIRING_INVENTORY_DAYS: int = int(os.getenv("EXPIRING_INVENTORY_DAYS", "7"))

    # Background jobs
    SWEEP_INTERVAL_MINUTES: int = int(os.getenv("SWEEP_INTERVAL_MINUTES", "5"))
    STOCK_SYNC_INTERVAL_MINUTES: int = int(os.getenv("STOCK_SYNC_INTERVAL_MINUTES", "60"))

    # SePay settings
    SEPAY_WEBHOOK_API_KEY: str = os.getenv("SEPAY_WEBHOOK_API_KEY", "")
    SEPAY_ACCOUNT_NUMBER: str = os.getenv("SEPAY_ACCOUNT_NUMBER", "")
    SEPAY_ACCOUNT_NAME: str = os.getenv("SEPAY_ACCOUNT_NAME", "")
    SEPAY_BANK_NAME: str = os.getenv("SEPAY_BANK_NAME", "")
    SEPAY_BANK_BIN: str = os.getenv("SEPAY_BANK_BIN", "")

    # Operator alerts
    TELEGRAM_TOKEN: str = os.getenv("TELEGRAM_TOKEN", "")
    ADMIN_IDS: List[int] = [
        int(id_) for id_ in os.getenv("ADMIN_IDS", "").split(",")
        if id_.strip().isdigit()
    ]

    # Other settings
    TIMEZONE: str = os.getenv("TZ", "Asia/Ho_Chi_Minh")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Paths
    LOG_DIR = BASE_DIR / "logs"

    # Ensure directories exist
    LOG_DIR.mkdir(exist_ok=True)

def setup_logging():
    """Configure logging settings"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    log_file = Config.LOG_DIR / "shop.log"

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL),
        format=log_format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )
