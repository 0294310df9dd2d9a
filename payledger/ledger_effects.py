"""
Balance effects of a transaction.

effects_of() answers "how much does this transaction, in its current
status, contribute to each balance field?". Summing it over all of a
user's transactions yields what their Balance row must hold, which is the
definition the reconciliation check audits against.

The workflows never call this; they apply explicit deltas. The table below
is the contract those deltas must keep:

    type                status                      available  pending  disputed  total_earnings
    payment             completed/disputed/refunded   +amt                         +amt
    payment             pending/failed                  0
    withdrawal          pending                       -amt      +amt
    withdrawal          completed                     -amt
    withdrawal          failed                          0
    refund              completed                     -amt                         -amt
    dispute_hold        any                           -held               +held
    dispute_resolution  completed (won)               +held               -held
    dispute_resolution  refunded (lost)                                   -held    -amt

A refunded or disputed payment keeps its original credit; the refund or
dispute rows carry the reversal.
"""

from dataclasses import dataclass

from payledger.models.transaction import Transaction, TransactionStatus, TransactionType

BALANCE_FIELDS = ("available", "pending", "disputed", "total_earnings")

_CREDITED_PAYMENT_STATUSES = frozenset(
    {
        TransactionStatus.COMPLETED,
        TransactionStatus.DISPUTED,
        TransactionStatus.REFUNDED,
    }
)


@dataclass
class Effects:
    available: int = 0
    pending: int = 0
    disputed: int = 0
    total_earnings: int = 0

    def __add__(self, other: "Effects") -> "Effects":
        return Effects(
            *(getattr(self, f) + getattr(other, f) for f in BALANCE_FIELDS)
        )

    def as_dict(self) -> dict[str, int]:
        return {f: getattr(self, f) for f in BALANCE_FIELDS}


def effects_of(txn: Transaction) -> Effects:
    """Return the balance contribution of ``txn`` in its current status."""
    amount = txn.amount
    status = txn.status

    match txn.type:
        case TransactionType.PAYMENT:
            if status in _CREDITED_PAYMENT_STATUSES:
                return Effects(available=amount, total_earnings=amount)
            return Effects()
        case TransactionType.WITHDRAWAL:
            if status == TransactionStatus.PENDING:
                return Effects(available=-amount, pending=amount)
            if status == TransactionStatus.COMPLETED:
                return Effects(available=-amount)
            return Effects()
        case TransactionType.REFUND:
            if status == TransactionStatus.COMPLETED:
                return Effects(available=-amount, total_earnings=-amount)
            return Effects()
        case TransactionType.DISPUTE_HOLD:
            return Effects(available=-txn.held, disputed=txn.held)
        case TransactionType.DISPUTE_RESOLUTION:
            if status == TransactionStatus.COMPLETED:
                return Effects(available=txn.held, disputed=-txn.held)
            if status == TransactionStatus.REFUNDED:
                return Effects(disputed=-txn.held, total_earnings=-amount)
            return Effects()
        case _:
            raise NotImplementedError(f"Transaction type '{txn.type}' has no effects")


def sum_effects(transactions) -> Effects:
    """Sum effects_of() over an iterable of transactions."""
    total = Effects()
    for txn in transactions:
        total = total + effects_of(txn)
    return total
