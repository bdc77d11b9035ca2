from geodir.subscriptions.models import Subscription, SubscriptionState
from geodir.subscriptions.registry import SubscriptionRegistry
from geodir.subscriptions.repository import PostgresSubscriptionRepository, SubscriptionRepository

__all__ = [
    "PostgresSubscriptionRepository",
    "Subscription",
    "SubscriptionRegistry",
    "SubscriptionRepository",
    "SubscriptionState",
]
