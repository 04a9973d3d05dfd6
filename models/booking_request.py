from models.db import db, utcnow

REQUEST_TYPES = ("cancel", "raincheck")
REQUEST_STATUSES = ("pending", "approved", "rejected")

class BookingRequest(db.Model):
    __tablename__ = "booking_requests"

    id = db.Column(db.Integer, primary_key=True)

    # kept after approval deletes the booking, so no FK cascade here
    booking_id = db.Column(db.Integer, nullable=False, index=True)
    requested_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    request_type = db.Column(db.String(20), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    # snapshot needed to refund once the booking row is gone
    booking_user_id = db.Column(db.Integer, nullable=True)
    booking_coach_id = db.Column(db.Integer, nullable=True)
    credit_cost = db.Column(db.Numeric(10, 2), nullable=True)

    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("request_type IN ('cancel', 'raincheck')", name="ck_booking_request_type"),
        db.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_booking_request_status"),
    )
