# ==========================================================================================================
# -------------- Configuration for the MCNmart commission service -------------------------------------------
# ==========================================================================================================
import os
from decimal import Decimal
from dotenv import load_dotenv


if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


def _database_url(default):
    url = os.getenv("DATABASE_URL") or default
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+pg8000://", 1)
    return url


class Config:

    SECRET_KEY = os.getenv("SECRET_KEY")
    if not SECRET_KEY:
        raise ValueError("SECRET_KEY must be set")

    FLASK_ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = os.getenv("DEBUG", "False").lower() in ("true", "1", "t")
    TESTING = False

    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(basedir, 'instance', 'mcnmart.db')}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    LOG_DIR = os.getenv("LOG_DIR", "logs")

    # Commission engine
    CURRENCY = os.getenv("CURRENCY", "PKR")
    COMMISSION_MAX_LEVEL = int(os.getenv("COMMISSION_MAX_LEVEL", "5"))
    COMMISSION_CACHE_SECONDS = int(os.getenv("COMMISSION_CACHE_SECONDS", "300"))
    # skip | escrow
    MISSING_ANCESTOR_POLICY = os.getenv("MISSING_ANCESTOR_POLICY", "skip").lower()

    # Withdrawals
    MIN_WITHDRAWAL = Decimal(os.getenv("MIN_WITHDRAWAL", "2000"))
    WITHDRAWAL_METHODS = [
        m.strip().lower()
        for m in os.getenv("WITHDRAWAL_METHODS", "jazzcash,easypaisa,bank").split(",")
        if m.strip()
    ]


class TestingConfig(Config):
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    COMMISSION_CACHE_SECONDS = 0
    MISSING_ANCESTOR_POLICY = "skip"
