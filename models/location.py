from models.db import db, utcnow

class Location(db.Model):
    __tablename__ = "locations"

    id = db.Column(db.Integer, primary_key=True)
    academy_id = db.Column(db.Integer, db.ForeignKey("academies.id"), nullable=True, index=True)

    name = db.Column(db.String(120), nullable=False)
    address = db.Column(db.String(255), nullable=True)

    # soft delete: slots and bookings keep pointing at the row
    is_deleted = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
