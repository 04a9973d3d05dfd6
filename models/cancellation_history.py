from models.db import db, utcnow

# self_cancel, cancel_request, raincheck_request, coach_raincheck
HISTORY_SOURCES = ("self_cancel", "cancel_request", "raincheck_request", "coach_raincheck")

class CancellationHistory(db.Model):
    __tablename__ = "cancellation_history"

    id = db.Column(db.Integer, primary_key=True)
    original_booking_id = db.Column(db.Integer, nullable=False, index=True)

    user_id = db.Column(db.Integer, nullable=True, index=True)
    coach_id = db.Column(db.Integer, nullable=True, index=True)
    location_id = db.Column(db.Integer, nullable=True)
    location_name = db.Column(db.String(120), nullable=True)

    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    service_name = db.Column(db.String(80), nullable=True)
    credit_cost = db.Column(db.Numeric(10, 2), nullable=True)

    reason = db.Column(db.Text, nullable=True)
    source = db.Column(db.String(30), nullable=False)
    academy_id = db.Column(db.Integer, nullable=True, index=True)

    cancelled_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
