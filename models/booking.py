from decimal import Decimal

from models.db import db, utcnow

class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    coach_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False)

    service_name = db.Column(db.String(80), nullable=True)
    credit_cost = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    academy_id = db.Column(db.Integer, db.ForeignKey("academies.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    location = db.relationship("Location")

    __table_args__ = (
        # One seat per student per session
        db.UniqueConstraint("location_id", "start_time", "end_time", "user_id", name="uq_booking_session_user"),
        db.Index("ix_bookings_session", "location_id", "start_time", "end_time"),
    )

    @property
    def session_key(self):
        return (self.location_id, self.start_time, self.end_time)
