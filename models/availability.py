from models.db import db, utcnow

class Availability(db.Model):
    __tablename__ = "availabilities"

    id = db.Column(db.Integer, primary_key=True)

    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False)

    service_name = db.Column(db.String(80), nullable=True)
    max_capacity = db.Column(db.Integer, nullable=False, default=10)

    # UI hint only, maintained by the capacity gate
    is_booked = db.Column(db.Boolean, default=False, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("location_id", "start_time", "end_time", name="uq_location_timeslot"),
        db.CheckConstraint("max_capacity >= 1", name="ck_availability_capacity_positive"),
    )
