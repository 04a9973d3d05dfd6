from decimal import Decimal

from models.db import db, utcnow

class WalletAccount(db.Model):
    __tablename__ = "wallet_accounts"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)
    balance = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class WalletCredit(db.Model):
    __tablename__ = "wallet_credits"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)

    # a replayed key must not credit twice
    idempotency_key = db.Column(db.String(120), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
