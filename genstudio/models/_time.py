# genstudio/models/_time.py
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DATETIME columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
