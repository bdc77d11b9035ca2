from geodir.ratings.aggregator import RatingAggregator
from geodir.ratings.models import NewRating, Rating, RatingAggregate, RatingContext
from geodir.ratings.repository import PostgresRatingRepository, RatingRepository

__all__ = [
    "NewRating",
    "PostgresRatingRepository",
    "Rating",
    "RatingAggregate",
    "RatingAggregator",
    "RatingContext",
    "RatingRepository",
]
