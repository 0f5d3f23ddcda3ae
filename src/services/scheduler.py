from datetime import datetime, timedelta
from typing import Optional

# Extra fetch passes between two digest runs
FETCH_INTERVAL_HOURS = 4


def next_run_time(hour: int = 7, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now()
    run = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if run <= now:
        run += timedelta(days=1)
    return run


def next_wakeup(hour: int = 7, now: Optional[datetime] = None,
                fetch_interval_hours: int = FETCH_INTERVAL_HOURS) -> tuple[datetime, bool]:
    """
    Next scheduled slot and whether it is the digest run (True) or a fetch pass (False).
    """
    now = now or datetime.now()
    digest_at = next_run_time(hour, now)
    fetch_at = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=fetch_interval_hours)
    if fetch_at < digest_at:
        return fetch_at, False
    return digest_at, True
