from datetime import timedelta

import pytest

from nooks.core.commitment import (
    CommitmentPhase as P,
    CommitmentStatus as S,
    allowed_targets,
    can_transition,
    commitment_phase,
    parse_status,
    triggers_failover,
)
from nooks.core.phase import MeetupPhase, compute_phase

from conftest import START


@pytest.mark.parametrize("before, expected", [
    (timedelta(hours=4), P.TOO_EARLY),
    (timedelta(hours=3), P.INTENTION),
    (timedelta(hours=1, minutes=1), P.INTENTION),
    (timedelta(hours=1), P.STATUS_UPDATE),
    (timedelta(minutes=11), P.STATUS_UPDATE),
    (timedelta(minutes=10), P.ARRIVAL),
    (timedelta(0), P.LIVE),
    (-timedelta(minutes=60), P.LIVE),
    (-timedelta(minutes=61), P.ENDED),
])
def test_commitment_phase(before, expected):
    assert commitment_phase(START, 60, START - before) == expected


def test_intention_moves():
    assert can_transition(P.INTENTION, None, S.CONFIRMED)
    assert can_transition(P.INTENTION, None, S.UNSURE)
    assert can_transition(P.INTENTION, S.UNSURE, S.CANCELLED)
    assert can_transition(P.INTENTION, S.CONFIRMED, S.CANCELLED)
    assert can_transition(P.INTENTION, S.CANCELLED, S.CONFIRMED)
    assert not can_transition(P.INTENTION, S.CONFIRMED, S.UNSURE)
    assert not can_transition(P.INTENTION, None, S.ON_THE_WAY)


def test_status_update_moves():
    assert allowed_targets(P.STATUS_UPDATE, S.CONFIRMED) == {S.ON_THE_WAY, S.RUNNING_LATE, S.CANCELLED}
    assert allowed_targets(P.STATUS_UPDATE, S.RUNNING_LATE) == {S.ON_THE_WAY}
    # cancelling this close to the start is final
    assert allowed_targets(P.STATUS_UPDATE, S.CANCELLED) == set()


@pytest.mark.parametrize("phase", [P.TOO_EARLY, P.ARRIVAL, P.LIVE, P.ENDED])
def test_quiet_phases_accept_no_participant_moves(phase):
    for current in [None, *S]:
        assert allowed_targets(phase, current) == set()


def test_system_can_record_no_show_once_underway():
    assert can_transition(P.LIVE, S.ON_THE_WAY, S.NO_SHOW, system=True)
    assert not can_transition(P.LIVE, S.ON_THE_WAY, S.NO_SHOW)
    assert not can_transition(P.INTENTION, S.CONFIRMED, S.NO_SHOW, system=True)
    assert not can_transition(P.LIVE, S.ARRIVED, S.NO_SHOW, system=True)


def test_legacy_values_count_as_unset():
    assert parse_status("getting_ready") is None
    assert parse_status("pending") is None
    assert parse_status("running_late") == S.RUNNING_LATE


def test_failover_trigger():
    assert triggers_failover(True, S.CANCELLED)
    assert triggers_failover(True, S.NO_SHOW)
    assert not triggers_failover(True, S.RUNNING_LATE)
    assert not triggers_failover(False, S.CANCELLED)


def test_end_instant_is_completed_but_commitment_still_live():
    end = START + timedelta(minutes=60)
    assert compute_phase(START, 60, "confirmed", end).phase == MeetupPhase.COMPLETED
    assert commitment_phase(START, 60, end) == P.LIVE
    assert commitment_phase(START, 60, end + timedelta(milliseconds=1)) == P.ENDED
