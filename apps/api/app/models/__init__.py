from app.models.billing import UserAccount, SubscriptionRecord, ProcessedBillingEvent
from app.models.budgets import Client, Budget, BudgetItem

__all__ = [
    "UserAccount",
    "SubscriptionRecord",
    "ProcessedBillingEvent",
    "Client",
    "Budget",
    "BudgetItem",
]
