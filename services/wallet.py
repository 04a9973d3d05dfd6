from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.wallet import WalletAccount, WalletCredit
from services.errors import DependencyError, ValidationError


class WalletLedger:
    """
    Credits student wallets. The booking engine only ever credits; balances
    belong to the ledger.
    """

    def credit_balance(self, user_id: int, amount: Decimal, idempotency_key: str):
        """Returns (ok, error). Replaying a key must not credit twice."""
        raise NotImplementedError

    def get_balance(self, user_id: int) -> Decimal:
        raise NotImplementedError


class SqlWalletLedger(WalletLedger):

    def credit_balance(self, user_id: int, amount: Decimal, idempotency_key: str):
        amount = Decimal(str(amount))
        if amount <= 0:
            return False, ValidationError("Credit amount must be positive")
        if not idempotency_key:
            return False, ValidationError("idempotency_key required")

        try:
            if WalletCredit.query.filter_by(idempotency_key=idempotency_key).first():
                return True, None

            account = (
                WalletAccount.query
                .filter_by(user_id=user_id)
                .with_for_update()
                .first()
            )
            if account is None:
                account = WalletAccount(user_id=user_id, balance=Decimal("0.00"))
                db.session.add(account)

            account.balance = Decimal(account.balance or 0) + amount
            db.session.add(WalletCredit(user_id=user_id, amount=amount, idempotency_key=idempotency_key))
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            # lost a race with the same key: the other call did the credit
            if WalletCredit.query.filter_by(idempotency_key=idempotency_key).first():
                return True, None
            return False, DependencyError("Wallet credit failed", {"idempotency_key": idempotency_key})
        except SQLAlchemyError as exc:
            db.session.rollback()
            return False, DependencyError("Wallet credit failed", {"reason": str(exc)})

        return True, None

    def get_balance(self, user_id: int) -> Decimal:
        account = WalletAccount.query.filter_by(user_id=user_id).first()
        return Decimal(account.balance) if account else Decimal("0.00")


def get_ledger() -> WalletLedger:
    return current_app.extensions["wallet_ledger"]
