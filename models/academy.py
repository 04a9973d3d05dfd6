from models.db import db, utcnow

class Academy(db.Model):
    __tablename__ = "academies"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
