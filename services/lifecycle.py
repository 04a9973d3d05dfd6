"""
Booking lifecycle: cancellations, rain checks and their review.

    (none) --student cancel/raincheck--> pending --admin approves--> approved
                                                 --admin rejects---> rejected
    (none) --student cancel, free window--> booking deleted, no request row

Approval runs its steps in a fixed order and never rolls back a step that
already happened: mark approved, history snapshot (best effort), release
the booking, refund, notify (best effort). A refund that fails after the
booking is gone is reported as PartialSuccess.
"""

from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.booking import Booking
from models.booking_request import BookingRequest, REQUEST_STATUSES, REQUEST_TYPES
from models.cancellation_history import CancellationHistory
from models.location import Location
from services import capacity
from services import timezone as tz
from services.errors import (
    BookingError,
    DependencyError,
    DuplicatePendingRequest,
    NotAuthorizedError,
    NotFoundError,
    PartialSuccess,
    ValidationError,
)
from services.identity import Actor
from services.notifications import notify_cancellation
from services.sessions import display_name, load_profiles
from services.wallet import get_ledger
from utils.audit import log_event

SUPERSEDED_NOTE = "Superseded by coach rain check"


# ---------- policy ----------

def free_cancel_deadline(start_time):
    """Naive UTC instant of the cutoff hour (local) on the day before the session's local date."""
    cutoff_hour = current_app.config.get("FREE_CANCEL_CUTOFF_HOUR", 12)
    day_before = tz.add_days(tz.utc_to_local_date(start_time), -1)
    return tz.local_datetime_to_utc(day_before, cutoff_hour, 0)


def in_free_window(start_time, now=None) -> bool:
    return (now or tz.utcnow()) < free_cancel_deadline(start_time)


# ---------- helpers ----------

def _require_reason(reason) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required")
    return reason


def _own_booking(actor: Actor, booking_id, lock: bool = False) -> Booking:
    if not actor.is_student:
        raise NotAuthorizedError("Only students can cancel or rain check their bookings")
    q = Booking.query.filter_by(id=booking_id)
    if lock:
        q = q.with_for_update()
    booking = q.first()
    if booking is None:
        raise NotFoundError("Booking not found", {"booking_id": booking_id})
    if booking.user_id != actor.user_id:
        raise NotAuthorizedError("You can only change your own bookings", {"booking_id": booking_id})
    return booking


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise NotAuthorizedError("Only admins can review requests")


def _pending_request(request_id) -> BookingRequest:
    req = BookingRequest.query.filter_by(id=request_id).with_for_update().first()
    if req is None:
        raise NotFoundError("Request not found", {"request_id": request_id})
    if req.status != "pending":
        raise ValidationError(
            f"Request already {req.status}",
            {"request_id": request_id, "status": req.status},
        )
    return req


def _booking_details(booking: Booking) -> dict:
    """Everything history and notifications need once the row is deleted."""
    location = db.session.get(Location, booking.location_id)
    profiles = load_profiles([booking.user_id])
    return {
        "booking_id": booking.id,
        "user_id": booking.user_id,
        "student_name": display_name(profiles.get(booking.user_id)),
        "coach_id": booking.coach_id,
        "location_id": booking.location_id,
        "location_name": location.name if location else None,
        "start_time": booking.start_time,
        "end_time": booking.end_time,
        "service_name": booking.service_name,
        "credit_cost": Decimal(booking.credit_cost or 0),
        "academy_id": booking.academy_id,
    }


def _write_history(details: dict, reason, source: str) -> bool:
    row = CancellationHistory(
        original_booking_id=details["booking_id"],
        user_id=details.get("user_id"),
        coach_id=details.get("coach_id"),
        location_id=details.get("location_id"),
        location_name=details.get("location_name"),
        start_time=details["start_time"],
        end_time=details["end_time"],
        service_name=details.get("service_name"),
        credit_cost=details.get("credit_cost"),
        reason=reason,
        source=source,
        academy_id=details.get("academy_id"),
    )
    db.session.add(row)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("cancellation history not written for booking %s: %s", details["booking_id"], exc)
        return False
    return True


def _credit(user_id, amount: Decimal, key: str):
    """(ok, error); a ledger that raises counts as a failed credit."""
    try:
        return get_ledger().credit_balance(user_id, amount, key)
    except Exception as exc:
        current_app.logger.exception("wallet ledger raised for %s", key)
        return False, DependencyError("Wallet credit failed", {"reason": str(exc)})


def _notify(details: dict, reason, source: str) -> None:
    notify_cancellation(dict(details, reason=reason, source=source))


def _request_dict(req: BookingRequest) -> dict:
    return {
        "id": req.id,
        "booking_id": req.booking_id,
        "requested_by": req.requested_by,
        "request_type": req.request_type,
        "reason": req.reason,
        "status": req.status,
        "booking_user_id": req.booking_user_id,
        "booking_coach_id": req.booking_coach_id,
        "credit_cost": str(req.credit_cost) if req.credit_cost is not None else None,
        "reviewed_by": req.reviewed_by,
        "reviewed_at": req.reviewed_at.isoformat() if req.reviewed_at else None,
        "admin_notes": req.admin_notes,
        "created_at": req.created_at.isoformat() if req.created_at else None,
    }


def _file_request(actor: Actor, booking: Booking, request_type: str, reason: str) -> BookingRequest:
    exists = BookingRequest.query.filter_by(
        booking_id=booking.id, request_type=request_type, status="pending"
    ).first()
    if exists:
        raise DuplicatePendingRequest(
            f"A {request_type} request is already pending for this booking",
            {"booking_id": booking.id, "request_id": exists.id},
        )

    req = BookingRequest(
        booking_id=booking.id,
        requested_by=actor.user_id,
        request_type=request_type,
        reason=reason,
        status="pending",
        booking_user_id=booking.user_id,
        booking_coach_id=booking.coach_id,
        credit_cost=booking.credit_cost,
    )
    db.session.add(req)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise DependencyError("Could not save request", {"reason": str(exc)})

    log_event(
        "BOOKING_REQUEST_CREATE",
        user_id=actor.user_id,
        entity="booking_request",
        entity_id=req.id,
        metadata={"booking_id": booking.id, "type": request_type},
    )
    return req


# ---------- student ----------

def request_cancellation(actor: Actor, booking_id, reason=None, now=None):
    """
    Before the free-cancellation deadline the booking is released and
    refunded straight away; after it a pending cancel request is filed.
    Returns ({"outcome": "cancelled" | "pending", ...}, error).
    """
    try:
        booking = _own_booking(actor, booking_id, lock=True)

        if not in_free_window(booking.start_time, now):
            req = _file_request(actor, booking, "cancel", _require_reason(reason))
            return {"outcome": "pending", "request": _request_dict(req)}, None

        # a pending request decides this booking until an admin reviews it
        pending = BookingRequest.query.filter_by(booking_id=booking.id, status="pending").first()
        if pending:
            raise DuplicatePendingRequest(
                f"A {pending.request_type} request is already pending for this booking",
                {"booking_id": booking.id, "request_id": pending.id},
            )

        reason = (reason or "").strip() or None
        details = _booking_details(booking)
        _, err = capacity.release_booking(booking.id)
        if err:
            return None, err
    except BookingError as err:
        db.session.rollback()
        return None, err

    log_event("BOOKING_SELF_CANCEL", user_id=actor.user_id, entity="booking", entity_id=details["booking_id"])

    result = {"outcome": "cancelled", "booking_id": details["booking_id"], "refunded": "0.00"}
    refund_error = None
    amount = details["credit_cost"]
    if amount > 0:
        ok, err = _credit(details["user_id"], amount, f"booking:{details['booking_id']}:self-cancel")
        if ok:
            result["refunded"] = str(amount)
        else:
            refund_error = PartialSuccess(
                "Booking cancelled but the refund failed",
                {"booking_id": details["booking_id"], "amount": str(amount), "reason": err.message if err else None},
            )
            log_event("REFUND_FAILED", user_id=actor.user_id, entity="booking", entity_id=details["booking_id"])

    _write_history(details, reason, "self_cancel")
    _notify(details, reason, "self_cancel")
    return result, refund_error


def request_raincheck(actor: Actor, booking_id, reason=None):
    """Always files a pending raincheck request. Returns (request_dict, error)."""
    try:
        booking = _own_booking(actor, booking_id, lock=True)
        req = _file_request(actor, booking, "raincheck", _require_reason(reason))
    except BookingError as err:
        db.session.rollback()
        return None, err
    return _request_dict(req), None


# ---------- admin ----------

def approve_request(actor: Actor, request_id, notes=None):
    """
    Returns ({"request", "booking_removed", "refunded"}, error). A failed
    release leaves the request approved and the booking in place; the
    error is returned for an operator to follow up.
    """
    try:
        _require_admin(actor)
        req = _pending_request(request_id)
        req.status = "approved"
        req.reviewed_by = actor.user_id
        req.reviewed_at = tz.utcnow()
        req.admin_notes = (notes or "").strip() or None
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError("Could not update request", {"reason": str(exc)})
    except BookingError as err:
        db.session.rollback()
        return None, err

    log_event("BOOKING_REQUEST_APPROVE", user_id=actor.user_id, entity="booking_request", entity_id=req.id)

    source = "cancel_request" if req.request_type == "cancel" else "raincheck_request"
    booking = db.session.get(Booking, req.booking_id)
    details = _booking_details(booking) if booking else None
    if details:
        _write_history(details, req.reason, source)

    _, err = capacity.release_booking(req.booking_id)
    if err:
        current_app.logger.warning("request %s approved but booking %s not released: %s", req.id, req.booking_id, err.message)
        log_event(
            "BOOKING_RELEASE_FAILED",
            user_id=actor.user_id,
            entity="booking_request",
            entity_id=req.id,
            metadata={"booking_id": req.booking_id, "error": err.code},
        )
        return None, err

    result = {"request": _request_dict(req), "booking_removed": True, "refunded": "0.00"}
    refund_error = None
    amount = Decimal(req.credit_cost if req.credit_cost is not None else (details or {}).get("credit_cost", 0))
    user_id = req.booking_user_id or (details or {}).get("user_id")
    if amount > 0:
        ok, err = _credit(user_id, amount, f"request:{req.id}:refund")
        if ok:
            result["refunded"] = str(amount)
        else:
            refund_error = PartialSuccess(
                "Booking removed but the refund is still owed",
                {"request_id": req.id, "booking_id": req.booking_id, "amount": str(amount),
                 "reason": err.message if err else None},
            )
            log_event("REFUND_FAILED", user_id=actor.user_id, entity="booking_request", entity_id=req.id)

    if details:
        _notify(details, req.reason, source)
    return result, refund_error


def reject_request(actor: Actor, request_id, notes=None):
    try:
        _require_admin(actor)
        req = _pending_request(request_id)
        req.status = "rejected"
        req.reviewed_by = actor.user_id
        req.reviewed_at = tz.utcnow()
        req.admin_notes = (notes or "").strip() or None
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError("Could not update request", {"reason": str(exc)})
    except BookingError as err:
        db.session.rollback()
        return None, err

    log_event("BOOKING_REQUEST_REJECT", user_id=actor.user_id, entity="booking_request", entity_id=req.id)
    return _request_dict(req), None


def retry_refund(actor: Actor, request_id):
    """Re-issues the refund of an approved request under the same idempotency key."""
    try:
        _require_admin(actor)
        req = db.session.get(BookingRequest, request_id)
        if req is None:
            raise NotFoundError("Request not found", {"request_id": request_id})
        if req.status != "approved":
            raise ValidationError("Only approved requests can be refunded", {"status": req.status})
        if db.session.get(Booking, req.booking_id) is not None:
            raise ValidationError("Booking has not been released yet", {"booking_id": req.booking_id})
        amount = Decimal(req.credit_cost or 0)
        if amount <= 0:
            raise ValidationError("Nothing to refund for this request")
    except BookingError as err:
        return None, err

    ok, err = _credit(req.booking_user_id, amount, f"request:{req.id}:refund")
    if not ok:
        return None, err or DependencyError("Wallet credit failed")

    log_event("REFUND_RETRY", user_id=actor.user_id, entity="booking_request", entity_id=req.id,
              metadata={"amount": str(amount)})
    return {"request_id": req.id, "refunded": str(amount)}, None


def list_requests(status="pending", request_type=None, coach_id=None, requested_by=None):
    """Review queue, newest first, with the student's display name. Returns (rows, error)."""
    try:
        if status and status not in REQUEST_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(REQUEST_STATUSES)}")
        if request_type and request_type not in REQUEST_TYPES:
            raise ValidationError(f"type must be one of {', '.join(REQUEST_TYPES)}")
        try:
            q = BookingRequest.query
            if status:
                q = q.filter(BookingRequest.status == status)
            if request_type:
                q = q.filter(BookingRequest.request_type == request_type)
            if coach_id:
                q = q.filter(BookingRequest.booking_coach_id == coach_id)
            if requested_by:
                q = q.filter(BookingRequest.requested_by == requested_by)
            requests = q.order_by(BookingRequest.created_at.desc(), BookingRequest.id.desc()).all()

            bookings = {}
            booking_ids = {r.booking_id for r in requests}
            if booking_ids:
                bookings = {b.id: b for b in Booking.query.filter(Booking.id.in_(booking_ids)).all()}
            profiles = load_profiles({r.booking_user_id or r.requested_by for r in requests})
        except SQLAlchemyError as exc:
            raise DependencyError("Could not load requests", {"reason": str(exc)})
    except BookingError as err:
        return None, err

    out = []
    for req in requests:
        row = _request_dict(req)
        row["student_name"] = display_name(profiles.get(req.booking_user_id or req.requested_by))
        booking = bookings.get(req.booking_id)
        row["booking"] = {
            "location_id": booking.location_id,
            "start_time": booking.start_time.isoformat(),
            "end_time": booking.end_time.isoformat(),
            "service_name": booking.service_name,
        } if booking else None
        out.append(row)
    return out, None


# ---------- coach ----------

def batch_raincheck(actor: Actor, booking_ids, reason=None):
    """
    Rain checks several bookings of the coach's own sessions. Each booking is
    handled on its own: pending requests are superseded, then
    history, release, refund and notify. Returns
    ({"succeeded", "refund_failed", "failed"}, error); mixed outcomes come
    back as PartialSuccess alongside the result.
    """
    try:
        if not actor.is_coach:
            raise NotAuthorizedError("Only coaches can rain check sessions")
        try:
            ids = sorted({int(b) for b in booking_ids or []})
        except (TypeError, ValueError):
            raise ValidationError("booking_ids must be a list of ids")
        if not ids:
            raise ValidationError("Select at least one booking")

        bookings = {b.id: b for b in Booking.query.filter(Booking.id.in_(ids)).all()}
        foreign = [b.id for b in bookings.values() if b.coach_id != actor.user_id]
        if foreign:
            raise NotAuthorizedError("You can only rain check your own sessions", {"booking_ids": foreign})
    except BookingError as err:
        return None, err

    reason = (reason or "").strip() or "Rain check"
    succeeded, refund_failed, failed = [], [], []

    for booking_id in ids:
        booking = bookings.get(booking_id)
        if booking is None:
            failed.append({"booking_id": booking_id, "error": "not_found"})
            continue

        details = _booking_details(booking)
        superseded = BookingRequest.query.filter_by(booking_id=booking_id, status="pending").all()
        for req in superseded:
            req.status = "rejected"
            req.reviewed_by = actor.user_id
            req.reviewed_at = tz.utcnow()
            req.admin_notes = SUPERSEDED_NOTE
        if superseded:
            try:
                db.session.commit()
            except SQLAlchemyError as exc:
                db.session.rollback()
                failed.append({"booking_id": booking_id, "error": DependencyError.code, "reason": str(exc)})
                continue

        _write_history(details, reason, "coach_raincheck")

        _, err = capacity.release_booking(booking_id)
        if err:
            failed.append({"booking_id": booking_id, "error": err.code})
            continue

        amount = details["credit_cost"]
        if amount > 0:
            ok, err = _credit(details["user_id"], amount, f"booking:{booking_id}:raincheck")
            if not ok:
                refund_failed.append({"booking_id": booking_id, "amount": str(amount)})
        succeeded.append(booking_id)
        _notify(details, reason, "coach_raincheck")

    log_event(
        "COACH_RAINCHECK",
        user_id=actor.user_id,
        entity="booking",
        entity_id=",".join(str(i) for i in ids),
        metadata={"succeeded": len(succeeded), "refund_failed": len(refund_failed), "failed": len(failed)},
    )

    result = {"succeeded": succeeded, "refund_failed": refund_failed, "failed": failed}
    if not refund_failed and not failed:
        return result, None
    if not succeeded:
        return result, DependencyError("No bookings were rain checked", result)
    return result, PartialSuccess(
        f"{len(succeeded)} rain checked, {len(refund_failed)} refunds failed, {len(failed)} not released",
        result,
    )
