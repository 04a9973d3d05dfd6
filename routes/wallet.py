from flask import Blueprint, jsonify, g

from services.wallet import get_ledger
from utils.auth_context import login_required

wallet_bp = Blueprint("wallet", __name__, url_prefix="/wallet")


@wallet_bp.get("/me")
@login_required
def my_wallet():
    balance = get_ledger().get_balance(g.user.id)
    return jsonify(user_id=g.user.id, balance=str(balance)), 200
