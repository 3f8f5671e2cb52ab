from datetime import datetime, timedelta

import pytest

from codebridge.courses.sessions import (
    ENDED,
    LIVE,
    STARTING_SOON,
    UPCOMING,
    can_join,
    session_status,
    with_status,
)

NOW = datetime(2024, 3, 1, 12, 0)


@pytest.mark.parametrize("offset, expected", [
    (timedelta(hours=2), UPCOMING),
    (timedelta(minutes=16), UPCOMING),
    (timedelta(minutes=15), STARTING_SOON),
    (timedelta(minutes=1), STARTING_SOON),
    (timedelta(0), LIVE),
    (timedelta(minutes=-59), LIVE),
    (timedelta(minutes=-60), LIVE),
    (timedelta(minutes=-61), ENDED),
])
def test_session_status_windows(offset, expected):
    assert session_status(NOW + offset, 60, now=NOW) == expected


def test_can_join_only_when_starting_soon_or_live():
    assert can_join(NOW + timedelta(minutes=10), 60, now=NOW)
    assert can_join(NOW - timedelta(minutes=10), 60, now=NOW)
    assert not can_join(NOW + timedelta(minutes=30), 60, now=NOW)
    assert not can_join(NOW - timedelta(hours=2), 60, now=NOW)


def test_cancelled_session_is_ended():
    session = {"start_time": NOW + timedelta(minutes=5), "duration": 60, "status": "cancelled"}
    annotated = with_status(session, now=NOW)
    assert annotated["session_status"] == ENDED
    assert annotated["can_join"] is False
    assert "session_status" not in session


def test_meeting_ended_early_is_not_joinable():
    session = {"start_time": NOW - timedelta(minutes=10), "duration": 60, "status": "ended"}
    annotated = with_status(session, now=NOW)
    assert annotated["session_status"] == ENDED
    assert annotated["can_join"] is False


@pytest.mark.parametrize("start_offset, expected", [
    (timedelta(minutes=40), LIVE),
    (timedelta(minutes=-30), LIVE),
    (timedelta(hours=-3), ENDED),
])
def test_started_meeting_is_live_until_its_slot_is_over(start_offset, expected):
    session = {"start_time": NOW + start_offset, "duration": 60, "status": "started"}
    annotated = with_status(session, now=NOW)
    assert annotated["session_status"] == expected
    assert annotated["can_join"] is (expected == LIVE)
