"""Re-export ORM tables and domain types for import convenience."""

from airdate.models.tables import UserState  # noqa: F401
from airdate.models.domain import (  # noqa: F401
    MediaKind, ReleaseType, InteractionKind, ReminderScope, ReminderStrategy,
    ViewMode, ReplacementMode,
    LibraryKey, LibraryItem, SubscribedList, UserProfile,
    Episode, InteractionKey, Interaction, Reminder,
    SpoilerConfig, HiddenItem, AppSettings, SyncProgress,
)
