from geodir.matching.matcher import BboxMatcher, SubscriberTarget

__all__ = ["BboxMatcher", "SubscriberTarget"]
