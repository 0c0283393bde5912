"""Repository layer package."""

from agenda.repositories.anomaly_repo import AnomalyRepo
from agenda.repositories.subscription_repo import SubscriptionRepo
from agenda.repositories.usage_repo import UsageRepo

__all__ = [
    "AnomalyRepo",
    "SubscriptionRepo",
    "UsageRepo",
]
