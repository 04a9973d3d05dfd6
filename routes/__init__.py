from routes.health import health_bp
from routes.auth import auth_bp
from routes.availability import availability_bp
from routes.booking import booking_bp
from routes.coach import coach_bp
from routes.admin import admin_bp
from routes.wallet import wallet_bp

__all__ = [
    "health_bp",
    "auth_bp",
    "availability_bp",
    "booking_bp",
    "coach_bp",
    "admin_bp",
    "wallet_bp",
]
