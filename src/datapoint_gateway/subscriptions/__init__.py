"""Subscription fan-out."""

from datapoint_gateway.subscriptions.fanout import Subscription, SubscriptionHub

__all__ = ["Subscription", "SubscriptionHub"]
