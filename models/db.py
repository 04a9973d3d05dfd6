from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow() -> datetime:
    # Columns hold naive UTC datetimes
    return datetime.now(timezone.utc).replace(tzinfo=None)
