from flask import Blueprint, request, jsonify, g

from models.booking import Booking
from security.rbac import require_roles
from services import lifecycle
from services import selection as selection_service
from services import timezone as tz
from services.identity import ADMIN, COACH, STUDENT
from services.sessions import list_sessions
from utils.auth_context import current_actor, login_required
from utils.responses import error_response, respond

booking_bp = Blueprint("booking", __name__)


def booking_dict(b: Booking) -> dict:
    return {
        "id": b.id,
        "location_id": b.location_id,
        "location_name": b.location.name if b.location else None,
        "user_id": b.user_id,
        "coach_id": b.coach_id,
        "start_time": b.start_time.isoformat(),
        "end_time": b.end_time.isoformat(),
        "local_date": tz.utc_to_local_date(b.start_time).isoformat(),
        "local_start": tz.utc_to_local_time(b.start_time),
        "local_end": tz.utc_to_local_time(b.end_time),
        "service_name": b.service_name,
        "credit_cost": str(b.credit_cost),
        "created_at": b.created_at.isoformat() if b.created_at else None,
    }


# ---------- STUDENTS: book a selection ----------
@booking_bp.post("/bookings")
@require_roles(STUDENT)
def create_booking():
    data = request.get_json(silent=True) or {}
    result, err = selection_service.book_selection(
        current_actor(),
        data.get("selection"),
        data.get("date"),
        service_name=data.get("service") or None,
    )
    if result is not None:
        result = dict(result, bookings=[booking_dict(b) for b in result["bookings"]])
    return respond(result, err, status=201)


@booking_bp.get("/bookings/me")
@login_required
def my_bookings():
    q = Booking.query.filter_by(user_id=g.user.id)
    if request.args.get("upcoming", "1") != "0":
        q = q.filter(Booking.start_time >= tz.utcnow())
    rows = q.order_by(Booking.start_time.asc()).all()
    return jsonify([booking_dict(b) for b in rows]), 200


@booking_bp.get("/bookings/me/requests")
@login_required
def my_requests():
    result, err = lifecycle.list_requests(status=request.args.get("status") or None, requested_by=g.user.id)
    return respond(result, err)


@booking_bp.post("/bookings/<int:booking_id>/cancel")
@require_roles(STUDENT)
def cancel_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    result, err = lifecycle.request_cancellation(current_actor(), booking_id, data.get("reason"))
    if err:
        return respond(result, err)
    status = 202 if result["outcome"] == "pending" else 200
    return jsonify(result), status


@booking_bp.post("/bookings/<int:booking_id>/raincheck")
@require_roles(STUDENT)
def raincheck_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    result, err = lifecycle.request_raincheck(current_actor(), booking_id, data.get("reason"))
    return respond(result, err, status=202)


# ---------- ADMIN / COACH: sessions ----------
@booking_bp.get("/sessions")
@require_roles(ADMIN, COACH)
def sessions():
    actor = current_actor()
    coach_id = request.args.get("coach_id", type=int)
    if not actor.is_admin:
        # coaches only see the sessions they run
        coach_id = actor.user_id

    result, err = list_sessions(
        start_date=request.args.get("start"),
        end_date=request.args.get("end"),
        location_id=request.args.get("location_id", type=int),
        coach_id=coach_id,
    )
    if err:
        return error_response(err)
    return jsonify([s.to_dict() for s in result]), 200
