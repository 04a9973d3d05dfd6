from decimal import Decimal

from models.wallet import WalletCredit
from services.errors import ValidationError
from services.wallet import SqlWalletLedger


def test_credit_is_idempotent(make_user):
    user = make_user()
    ledger = SqlWalletLedger()

    assert ledger.credit_balance(user.id, Decimal("15.00"), "booking:1:self-cancel") == (True, None)
    assert ledger.credit_balance(user.id, Decimal("15.00"), "booking:1:self-cancel") == (True, None)
    assert ledger.credit_balance(user.id, "2.50", "request:3:refund") == (True, None)

    assert ledger.get_balance(user.id) == Decimal("17.50")
    assert WalletCredit.query.count() == 2


def test_credit_rejects_bad_input(make_user):
    user = make_user()
    ledger = SqlWalletLedger()

    ok, err = ledger.credit_balance(user.id, Decimal("0"), "k1")
    assert not ok and isinstance(err, ValidationError)
    ok, err = ledger.credit_balance(user.id, Decimal("5"), "")
    assert not ok and isinstance(err, ValidationError)
    assert ledger.get_balance(user.id) == Decimal("0.00")
