"""UTC timezone enforcement.

This module sets the TZ environment variable to UTC to ensure
consistent datetime behavior across all environments.
"""

import os
from datetime import datetime, timezone

# Set UTC timezone for the entire application
os.environ["TZ"] = "UTC"


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Timestamp columns are stored without timezone, always in UTC.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
