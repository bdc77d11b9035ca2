from geodir.entries.models import Entry, EntryPatch, NewEntry
from geodir.entries.repository import EntryRepository, PostgresEntryRepository
from geodir.entries.store import EntryStore, normalize_tags

__all__ = [
    "Entry",
    "EntryPatch",
    "EntryRepository",
    "EntryStore",
    "NewEntry",
    "PostgresEntryRepository",
    "normalize_tags",
]
