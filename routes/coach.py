from flask import Blueprint, request

from security.rbac import require_roles
from services import lifecycle
from services.identity import COACH
from utils.auth_context import current_actor
from utils.responses import respond

coach_bp = Blueprint("coach", __name__, url_prefix="/coach")


@coach_bp.get("/requests")
@require_roles(COACH)
def raincheck_requests():
    actor = current_actor()
    result, err = lifecycle.list_requests(
        status=request.args.get("status", "pending"),
        request_type="raincheck",
        coach_id=actor.user_id,
    )
    return respond(result, err)


@coach_bp.post("/raincheck")
@require_roles(COACH)
def batch_raincheck():
    data = request.get_json(silent=True) or {}
    result, err = lifecycle.batch_raincheck(current_actor(), data.get("booking_ids"), data.get("reason"))
    return respond(result, err)
