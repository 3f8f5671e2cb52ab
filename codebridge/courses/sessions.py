"""
Live class session status
Pure classification of a scheduled session relative to the current time
"""

from datetime import datetime, timedelta
from typing import Optional

STARTING_SOON_MINUTES = 15

UPCOMING = "upcoming"
STARTING_SOON = "starting-soon"
LIVE = "live"
ENDED = "ended"

JOINABLE = (STARTING_SOON, LIVE)


def session_status(start_time: datetime, duration: int, now: Optional[datetime] = None) -> str:
    """
    Classify a session:
      more than 15 minutes before start -> upcoming
      within 15 minutes of start        -> starting-soon
      between start and start+duration  -> live
      afterwards                        -> ended
    """
    now = now or datetime.utcnow()
    end_time = start_time + timedelta(minutes=duration)
    minutes_until_start = (start_time - now).total_seconds() / 60

    if minutes_until_start > STARTING_SOON_MINUTES:
        return UPCOMING
    if minutes_until_start > 0:
        return STARTING_SOON
    if start_time <= now <= end_time:
        return LIVE
    return ENDED


def can_join(start_time: datetime, duration: int, now: Optional[datetime] = None) -> bool:
    return session_status(start_time, duration, now) in JOINABLE


def with_status(session: dict, now: Optional[datetime] = None) -> dict:
    """
    Copy of a schedule entry annotated with its status
    A status reported by the meeting provider wins over the clock: an ended or
    cancelled session is never joinable, a started one is live until its slot is over
    """
    session = dict(session)
    stored = session.get("status")
    if stored in ("cancelled", "ended"):
        session["session_status"] = ENDED
    else:
        derived = session_status(session["start_time"], session.get("duration", 60), now)
        session["session_status"] = LIVE if stored == "started" and derived != ENDED else derived
    session["can_join"] = session["session_status"] in JOINABLE
    return session
