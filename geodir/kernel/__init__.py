"""Shared building blocks: errors, ids, hashing, clocks, keyed locks, logging.

Nothing in here imports from the API layer or from a domain package.
"""
