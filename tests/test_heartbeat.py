from datetime import datetime, timedelta

import pytest

from errors import AttendanceInactiveError, InvalidBranchError
from heartbeat import HeartbeatService, presence_key
from presence import PresenceTracker
from schemas import HeartbeatRequest

SESSION = "abc_2024-05-01_SundayService"


@pytest.fixture
def presence(clock):
    return PresenceTracker(window_ms=120_000, clock=clock)


@pytest.fixture
def service(ledger, presence, gate):
    return HeartbeatService(ledger, presence, gate, branches=["Cardiff", "Swansea"])


def payload(**overrides):
    body = {
        "name": "Jane",
        "email": "jane@x.com",
        "branch": "Cardiff",
        "streamSessionId": SESSION,
        "streamTitle": "Sunday Service",
        "startTime": "2024-05-01T10:00:00Z",
        "durationSeconds": 0,
    }
    body.update(overrides)
    return HeartbeatRequest(**body)


def test_accepted_heartbeat_writes_and_tracks(service, gate, presence, ledger):
    gate.toggle(True)

    record = service.process(payload())

    assert record["startTime"] == "2024-05-01T10:00:00"
    assert presence.active_identities() == [presence_key("jane@x.com", "Cardiff")]
    assert presence.count_active(scope="Cardiff") == 1
    assert len(ledger.list_all()) == 1


def test_scenario_two_ticks_thirty_seconds_apart(service, gate, ledger, clock):
    gate.toggle(True)
    service.process(payload(durationSeconds=0))
    clock.advance(30)
    record = service.process(payload(durationSeconds=30, startTime="2024-05-01T10:00:30Z"))

    rows = ledger.list_all()
    assert len(rows) == 1
    assert record["durationSeconds"] == 30
    assert rows[0]["startTime"] == "2024-05-01T10:00:00"


def test_closed_gate_rejects_without_writing(service, gate, ledger, presence):
    gate.toggle(True)
    service.process(payload(durationSeconds=120))
    gate.toggle(False)
    presence.clear()

    with pytest.raises(AttendanceInactiveError):
        service.process(payload(durationSeconds=150))

    assert ledger.find("jane@x.com", SESSION, "Cardiff")["durationSeconds"] == 120
    assert presence.count_active() == 0


def test_expired_deadline_rejects(service, gate, clock):
    gate.toggle(True, clock() + timedelta(minutes=1))
    service.process(payload())
    clock.advance(minutes=2)

    with pytest.raises(AttendanceInactiveError):
        service.process(payload(durationSeconds=180))


def test_unknown_branch(service, gate):
    gate.toggle(True)
    with pytest.raises(InvalidBranchError):
        service.process(payload(branch="Newport"))


def test_payload_accepts_snake_case_names():
    request = HeartbeatRequest(
        name="Jane",
        email="jane@x.com",
        branch="Cardiff",
        stream_session_id=SESSION,
        stream_title="Sunday Service",
        start_time=datetime(2024, 5, 1, 10, 0),
        duration_seconds=5,
    )
    assert request.duration_seconds == 5
