import json

from flask import Blueprint, jsonify, g, request
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.audit_log import AuditLog
from models.cancellation_history import CancellationHistory, HISTORY_SOURCES
from models.user import User, Role
from security.rbac import require_roles
from services import capacity, lifecycle, pricing
from services import timezone as tz
from services.availability import bulk_create_availability, create_location
from services.errors import BookingError, NotFoundError, ValidationError
from services.identity import ADMIN, STUDENT
from services.sessions import assign_coach
from services.slot_planner import time_to_minutes
from services.wallet import get_ledger
from routes.availability import location_dict
from routes.booking import booking_dict
from utils.audit import log_event
from utils.auth_context import current_actor
from utils.responses import error_response, respond

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _parse_instant(value, field: str):
    try:
        return tz.to_naive_utc(tz.parse_instant(value))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO datetime")


def _local_wall_time(day, time24: str, field: str):
    try:
        minutes = time_to_minutes(time24)
    except (AttributeError, ValueError):
        raise ValidationError(f"{field} must use HH:MM")
    if minutes == 24 * 60:
        return tz.local_date_to_utc_range(tz.add_days(day, 1))[0]
    try:
        return tz.local_datetime_to_utc(day, minutes // 60, minutes % 60)
    except ValueError as exc:
        raise ValidationError(str(exc))


# ---------- review queue ----------
@admin_bp.get("/requests")
@require_roles(ADMIN)
def list_requests():
    result, err = lifecycle.list_requests(
        status=request.args.get("status", "pending") or None,
        request_type=request.args.get("type") or None,
        coach_id=request.args.get("coach_id", type=int),
    )
    return respond(result, err)


@admin_bp.post("/requests/<int:request_id>/approve")
@require_roles(ADMIN)
def approve_request(request_id: int):
    data = request.get_json(silent=True) or {}
    result, err = lifecycle.approve_request(current_actor(), request_id, data.get("notes"))
    return respond(result, err)


@admin_bp.post("/requests/<int:request_id>/reject")
@require_roles(ADMIN)
def reject_request(request_id: int):
    data = request.get_json(silent=True) or {}
    result, err = lifecycle.reject_request(current_actor(), request_id, data.get("notes"))
    return respond(result, err)


@admin_bp.post("/requests/<int:request_id>/retry-refund")
@require_roles(ADMIN)
def retry_refund(request_id: int):
    result, err = lifecycle.retry_refund(current_actor(), request_id)
    return respond(result, err)


# ---------- sessions & lessons ----------
@admin_bp.post("/sessions/coach")
@require_roles(ADMIN)
def set_session_coach():
    data = request.get_json(silent=True) or {}
    try:
        start = _parse_instant(data.get("start_time"), "start_time")
        end = _parse_instant(data.get("end_time"), "end_time")
    except ValidationError as err:
        return error_response(err)

    coach_id = data.get("coach_id")
    updated, err = assign_coach(data.get("location_id"), start, end, coach_id, actor_id=g.user.id)
    if err:
        return error_response(err)
    return jsonify(message="Coach updated", bookings=updated, coach_id=coach_id), 200


@admin_bp.post("/bookings")
@require_roles(ADMIN)
def assign_lesson():
    """Books a student into a lesson on their behalf; the advance-notice rule does not apply."""
    data = request.get_json(silent=True) or {}
    try:
        user_id = data.get("user_id")
        student = db.session.get(User, user_id) if user_id else None
        if student is None:
            raise NotFoundError("Student not found", {"user_id": user_id})
        if STUDENT not in student.role_names:
            raise ValidationError("User is not a student", {"user_id": user_id})
        try:
            day = tz.parse_local_date(data.get("date"))
        except (TypeError, ValueError):
            raise ValidationError("date must use YYYY-MM-DD")
        start = _local_wall_time(day, data.get("start"), "start")
        end = _local_wall_time(day, data.get("end"), "end")
        service = data.get("service") or None
        cost = data.get("credit_cost")
        cost = pricing.parse_cost(cost) if cost is not None else None
    except BookingError as err:
        return error_response(err)

    booking, err = capacity.create_booking(
        data.get("location_id"),
        start,
        end,
        student.id,
        coach_id=data.get("coach_id"),
        service_name=service,
        credit_cost=cost,
        enforce_advance=False,
        actor_id=g.user.id,
    )
    if err:
        return error_response(err)
    return jsonify(booking_dict(booking)), 201


# ---------- setup ----------
@admin_bp.post("/locations")
@require_roles(ADMIN)
def add_location():
    data = request.get_json(silent=True) or {}
    location, err = create_location(
        data.get("name"),
        data.get("address"),
        academy_id=data.get("academy_id") or g.user.academy_id,
        actor_id=g.user.id,
    )
    if err:
        return error_response(err)
    return jsonify(location_dict(location)), 201


@admin_bp.post("/availability/bulk")
@require_roles(ADMIN)
def bulk_availability():
    data = request.get_json(silent=True) or {}
    result, err = bulk_create_availability(
        data.get("location_ids") or [],
        data.get("start_date"),
        data.get("end_date"),
        data.get("days_of_week") or [],
        data.get("start_time"),
        data.get("end_time"),
        service_name=data.get("service") or None,
        max_capacity=data.get("max_capacity"),
        actor_id=g.user.id,
    )
    return respond(result, err, status=201)


# ---------- reporting ----------
@admin_bp.get("/history")
@require_roles(ADMIN)
def cancellation_history():
    source = request.args.get("source")
    if source and source not in HISTORY_SOURCES:
        return error_response(ValidationError(f"source must be one of {', '.join(HISTORY_SOURCES)}"))
    limit = max(1, min(request.args.get("limit", type=int) or 200, 500))

    q = CancellationHistory.query
    if source:
        q = q.filter(CancellationHistory.source == source)
    user_id = request.args.get("user_id", type=int)
    if user_id:
        q = q.filter(CancellationHistory.user_id == user_id)

    rows = q.order_by(CancellationHistory.cancelled_at.desc()).limit(limit).all()
    return jsonify([
        {
            "id": h.id,
            "original_booking_id": h.original_booking_id,
            "user_id": h.user_id,
            "coach_id": h.coach_id,
            "location_id": h.location_id,
            "location_name": h.location_name,
            "start_time": h.start_time.isoformat(),
            "end_time": h.end_time.isoformat(),
            "service_name": h.service_name,
            "credit_cost": str(h.credit_cost) if h.credit_cost is not None else None,
            "reason": h.reason,
            "source": h.source,
            "cancelled_at": h.cancelled_at.isoformat(),
        }
        for h in rows
    ]), 200


@admin_bp.get("/audit-logs")
@require_roles(ADMIN)
def list_audit_logs():
    limit = max(1, min(request.args.get("limit", type=int) or 200, 500))

    q = AuditLog.query
    action = request.args.get("action")
    if action:
        q = q.filter(AuditLog.action == action)
    user_id = request.args.get("user_id", type=int)
    if user_id is not None:
        q = q.filter(AuditLog.user_id == user_id)

    rows = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
    return jsonify([
        {
            "id": r.id,
            "timestamp": r.timestamp.isoformat() if r.timestamp else None,
            "user_id": r.user_id,
            "action": r.action,
            "entity": r.entity,
            "entity_id": r.entity_id,
            "ip": r.ip,
            "metadata": json.loads(r.metadata_json) if r.metadata_json else None,
        }
        for r in rows
    ]), 200


# ---------- users & wallets ----------
@admin_bp.get("/users")
@require_roles(ADMIN)
def list_users():
    role_filter = (request.args.get("role") or "").strip().upper()
    q = User.query
    if role_filter:
        q = q.join(User.roles).filter(Role.name == role_filter)

    users = q.order_by(User.created_at.desc()).limit(200).all()
    return jsonify([
        {
            "id": u.id,
            "email": u.email,
            "first_name": u.first_name,
            "last_name": u.last_name,
            "roles": sorted(u.role_names),
        }
        for u in users
    ]), 200


@admin_bp.post("/users/<int:user_id>/roles")
@require_roles(ADMIN)
def update_user_roles(user_id: int):
    data = request.get_json(silent=True) or {}
    roles = data.get("roles")
    if not isinstance(roles, list) or not roles:
        return jsonify(error="roles must be a non-empty list"), 400

    role_names = {name.strip().upper() for name in roles if isinstance(name, str) and name.strip()}
    if not role_names:
        return jsonify(error="roles must include valid role names"), 400

    user = db.session.get(User, user_id)
    if not user:
        return jsonify(error="User not found"), 404

    available_roles = Role.query.filter(Role.name.in_(role_names)).all()
    missing = role_names - {r.name for r in available_roles}
    if missing:
        return jsonify(error="Unknown role(s)", missing=sorted(missing)), 400

    if user.id == g.user.id and ADMIN not in role_names:
        return jsonify(error="Cannot remove your own ADMIN role"), 403

    user.roles = available_roles
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        return jsonify(error="Could not update roles"), 503

    log_event("ADMIN_UPDATE_ROLES", user_id=g.user.id, entity="user", entity_id=user.id,
              metadata={"roles": sorted(role_names)})
    return jsonify(message="Roles updated", roles=sorted(role_names)), 200


@admin_bp.post("/wallets/<int:user_id>/credit")
@require_roles(ADMIN)
def credit_wallet(user_id: int):
    """Manual top-up; the caller supplies the idempotency key so a resubmitted form credits once."""
    data = request.get_json(silent=True) or {}
    try:
        amount = pricing.parse_cost(data.get("amount"))
    except ValidationError as err:
        return error_response(err)
    key = (data.get("idempotency_key") or "").strip()
    if not key:
        return jsonify(error="idempotency_key required"), 400
    if db.session.get(User, user_id) is None:
        return jsonify(error="User not found"), 404

    ledger = get_ledger()
    ok, err = ledger.credit_balance(user_id, amount, f"admin:{key}")
    if not ok:
        return error_response(err)

    log_event("WALLET_CREDIT", user_id=g.user.id, entity="user", entity_id=user_id,
              metadata={"amount": str(amount)})
    return jsonify(user_id=user_id, balance=str(ledger.get_balance(user_id))), 200
