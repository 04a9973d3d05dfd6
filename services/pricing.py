from decimal import Decimal, InvalidOperation

from flask import current_app

from services.errors import ValidationError
from services.slot_planner import MIN_SLOTS, SLOT_MINUTES


def service_price(service_name) -> Decimal:
    # flat price per service, regardless of duration
    prices = current_app.config.get("SERVICE_PRICES", {})
    default = current_app.config.get("DEFAULT_SERVICE_PRICE", "0")
    return Decimal(str(prices.get(service_name or "", default)))


def required_slots(service_name) -> int:
    if not service_name:
        return MIN_SLOTS
    hours = current_app.config.get("SERVICE_BLOCK_HOURS", {}).get(service_name)
    if not hours:
        return MIN_SLOTS
    return max(MIN_SLOTS, int(hours * 60 // SLOT_MINUTES))


def parse_cost(value) -> Decimal:
    try:
        cost = Decimal(str(value).replace(",", "."))
    except (InvalidOperation, ValueError):
        raise ValidationError("credit_cost must be a number")
    if not cost.is_finite() or cost < 0:
        raise ValidationError("credit_cost must be zero or more")
    return cost.quantize(Decimal("0.01"))
