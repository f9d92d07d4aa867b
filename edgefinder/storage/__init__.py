"""Persistence boundary."""

from config.settings import JournalSettings
from edgefinder.storage.journal import Journal, JsonlJournal, MemoryJournal


def build_journal(settings: JournalSettings) -> Journal:
    if settings.directory:
        return JsonlJournal(settings.directory)
    return MemoryJournal()


__all__ = [
    "Journal",
    "JsonlJournal",
    "MemoryJournal",
    "build_journal",
]
