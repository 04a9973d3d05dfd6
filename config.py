import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as academy.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "academy.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "academy_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = False  # set True when using HTTPS
    CSRF_ENABLED = True
    BCRYPT_ROUNDS = 12

    # All civil dates/times shown to users are in the academy's zone
    ACADEMY_TIMEZONE = os.getenv("ACADEMY_TIMEZONE", "Australia/Sydney")

    # Slots
    SLOT_MINUTES = 30
    DEFAULT_MAX_CAPACITY = 10

    # Cancellation policy: free until noon (local) the day before the lesson
    FREE_CANCEL_CUTOFF_HOUR = 12

    # Students must book at least a week ahead
    BOOKING_MIN_ADVANCE_DAYS = int(os.getenv("BOOKING_MIN_ADVANCE_DAYS", "7"))

    # Pricing (credits) and fixed block length per service, in hours
    DEFAULT_SERVICE_NAME = "Private Lessons"
    DEFAULT_SERVICE_PRICE = "149.99"
    SERVICE_PRICES = {
        "Stroke Clinic": "99.99",
        "Boot Camp": "149.99",
        "Private Lessons": "149.99",
        "Private Lesson": "149.99",
        "UTR Points": "149.99",
        "UTR Points Play": "149.99",
    }
    SERVICE_BLOCK_HOURS = {
        "Boot Camp": 3,
        "Stroke Clinic": 1,
        "UTR Points Play": 2,
        "Private Lessons": 1,
    }

    # Cancellation notifications
    ADMIN_NOTIFY_EMAIL = os.getenv("ADMIN_NOTIFY_EMAIL")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    CSRF_ENABLED = False
    SMTP_HOST = None
    ADMIN_NOTIFY_EMAIL = None
    BCRYPT_ROUNDS = 4
    SEED_ROLES_ON_STARTUP = False
