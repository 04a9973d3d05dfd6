from flask import Blueprint, request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from models.location import Location
from services import selection as selection_service
from services import timezone as tz
from services.availability import list_open_slots
from services.errors import DependencyError, ValidationError
from services.heatmap import HeatmapCache, compute_heatmap
from utils.auth_context import login_required
from utils.responses import error_response, respond

availability_bp = Blueprint("availability", __name__)


def location_dict(loc: Location) -> dict:
    return {"id": loc.id, "name": loc.name, "address": loc.address, "academy_id": loc.academy_id}


def slot_dict(slot) -> dict:
    return {
        "location_id": slot.location_id,
        "time": slot.time24,
        "availability_id": slot.availability_id,
        "start_time": slot.start_time.isoformat() if slot.start_time else None,
        "end_time": slot.end_time.isoformat() if slot.end_time else None,
        "service_name": slot.service_name,
    }


@availability_bp.get("/locations")
def list_locations():
    locations = Location.query.filter_by(is_deleted=False).order_by(Location.name.asc()).all()
    return jsonify([location_dict(loc) for loc in locations]), 200


@availability_bp.get("/slots")
@login_required
def list_slots():
    date_str = request.args.get("date")
    location_id = request.args.get("location_id", type=int)
    service = request.args.get("service") or None
    try:
        day = tz.parse_local_date(date_str)
    except (TypeError, ValueError):
        return error_response(ValidationError("Invalid date. Use YYYY-MM-DD"))

    try:
        slots = list_open_slots(day, location_id, service)
    except SQLAlchemyError as exc:
        return error_response(DependencyError("Could not load availability", {"reason": str(exc)}))
    return jsonify(date=day.isoformat(), slots=[slot_dict(s) for s in slots]), 200


@availability_bp.get("/slots/heatmap")
@login_required
def heatmap():
    # one cache per request; nothing is shared between clients
    cache = HeatmapCache()
    result, err = compute_heatmap(
        request.args.get("start"),
        request.args.get("end"),
        location_id=request.args.get("location_id", type=int),
        service_name=request.args.get("service") or None,
        cache=cache,
    )
    if err:
        return error_response(err)
    return jsonify({day.isoformat(): has_open for day, has_open in result.items()}), 200


@availability_bp.post("/selection/toggle")
@login_required
def toggle_selection():
    data = request.get_json(silent=True) or {}
    result, err = selection_service.plan_selection(
        data.get("selection"),
        data.get("location_id"),
        data.get("time"),
        data.get("date"),
        location_filter=data.get("location_filter"),
        service_name=data.get("service") or None,
    )
    return respond(result, err)
