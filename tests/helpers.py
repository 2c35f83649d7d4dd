from datetime import datetime, timezone

# Fixed "now" shared by services under test
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
ACTOR = "user-42"
