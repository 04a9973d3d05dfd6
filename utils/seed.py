from models import db
from models.user import Role
from services.identity import ROLE_NAMES


def seed_roles():
    """Adds any missing role rows; returns the names it created."""
    existing = {name for (name,) in db.session.query(Role.name).all()}
    missing = [name for name in ROLE_NAMES if name not in existing]
    if missing:
        db.session.add_all([Role(name=name) for name in missing])
        db.session.commit()
    return missing
