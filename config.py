import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

TAX_RATE = 0.1
CART_STORAGE_KEY = "pos-cart-storage"


class Config:
    DATABASE_URL = os.environ.get("DATABASE_URL", f"sqlite:///{os.path.join(BASE_DIR, 'pos.db')}")

    # external auth service
    AUTH_URL = os.environ.get("AUTH_URL", "http://localhost:9999")
    AUTH_ANON_KEY = os.environ.get("AUTH_ANON_KEY", "")
    JWT_SECRET = os.environ.get("JWT_SECRET", "pos-dev-secret")
    JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
    JWT_AUDIENCE = os.environ.get("JWT_AUDIENCE", "authenticated")
    DEFAULT_ROLE = os.environ.get("DEFAULT_ROLE", "staff")

    PAYMENT_DELAY_SECONDS = float(os.environ.get("PAYMENT_DELAY_SECONDS", "2.0"))
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))

    UPLOAD_DIR = os.environ.get("UPLOAD_DIR", os.path.join(BASE_DIR, "static", "images"))
    PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "")

    CART_STORAGE_DIR = os.environ.get("CART_STORAGE_DIR", os.path.join(os.path.expanduser("~"), ".pos"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
