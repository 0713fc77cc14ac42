"""Internal constants shared across the library."""

USER_AGENT = "livetrack/1.0"

#: Columns requested for a snapshot read.
SNAPSHOT_COLUMNS = "id,latitude,longitude,status,updated_at"

#: Change-feed payload event types that carry a row.
ROW_EVENT_TYPES: frozenset[str] = frozenset({"INSERT", "UPDATE"})
