"""geodir: geo-bounded subscriptions, notification dispatch and rating aggregation."""

__version__ = "0.1.0"
