from subledger.db.models.subscriptions import Subscription
from subledger.db.models.transactions import Transaction
from subledger.db.models.users import User

__all__ = [
    "Subscription",
    "Transaction",
    "User",
]
