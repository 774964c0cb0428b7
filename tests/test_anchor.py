from datetime import timedelta

from nooks.core.errors import NotHost
from nooks.core.qr import sign_qr
from nooks.core.windows import ScanPhase
from nooks.services.anchor import AnchorRefresher

from conftest import START


class FakeJob:
    def __init__(self, scheduler):
        self.scheduler = scheduler

    def remove(self):
        self.scheduler.jobs.remove(self)


class FakeScheduler:
    def __init__(self):
        self.jobs = []

    def add_job(self, func, trigger, **kwargs):
        job = FakeJob(self)
        job.func = func
        job.kwargs = kwargs
        self.jobs.append(job)
        return job


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def make_refresher(clock, issued, shown, **kwargs):
    async def issue(phase):
        issued.append(phase)
        return sign_qr(meetup_id="m-1", phase=phase, now=clock())

    return AnchorRefresher(
        start=START,
        duration_minutes=60,
        issue=issue,
        on_token=shown.append,
        scheduler=kwargs.pop("scheduler", FakeScheduler()),
        clock=clock,
        **kwargs,
    )


async def test_switches_phase_on_the_next_tick():
    clock = Clock(START - timedelta(minutes=1))
    issued, shown = [], []
    anchor = AnchorRefresher(
        start=START, duration_minutes=20,
        issue=lambda phase: _async(sign_qr(meetup_id="m-1", phase=phase, now=clock())),
        on_token=shown.append, scheduler=FakeScheduler(), clock=clock,
    )
    await anchor.start()
    assert anchor.phase == ScanPhase.ENTRY
    clock.now = START + timedelta(minutes=16)
    await anchor.tick()
    assert anchor.phase == ScanPhase.EXIT
    assert shown[-1]["phase"] == "exit"


async def _async(value):
    return value


async def test_keeps_ticking_through_the_gap_and_issues_for_exit():
    clock = Clock(START - timedelta(minutes=10))
    issued, shown = [], []
    scheduler = FakeScheduler()
    anchor = make_refresher(clock, issued, shown, scheduler=scheduler)

    await anchor.start()
    assert anchor.running
    assert len(scheduler.jobs) == 1
    assert scheduler.jobs[0].kwargs["seconds"] == 60

    clock.now += timedelta(seconds=60)
    await anchor.tick()
    assert issued == [ScanPhase.ENTRY, ScanPhase.ENTRY]
    assert shown[-1]["issued_at"] > shown[0]["issued_at"]

    # past entry, before exit: nothing on screen, loop still alive
    clock.now = START + timedelta(minutes=20)
    await anchor.tick()
    assert anchor.running
    assert anchor.token is None
    assert anchor.phase is None
    assert len(scheduler.jobs) == 1
    assert len(issued) == 2

    clock.now = START + timedelta(minutes=46)
    await anchor.tick()
    assert issued[-1] == ScanPhase.EXIT
    assert shown[-1]["phase"] == "exit"
    assert anchor.phase == ScanPhase.EXIT

    clock.now = START + timedelta(minutes=76)
    await anchor.tick()
    assert not anchor.running
    assert anchor.token is None
    assert scheduler.jobs == []
    assert len(issued) == 3


async def test_started_between_windows_waits_for_exit():
    clock = Clock(START + timedelta(minutes=30))
    issued, shown = [], []
    scheduler = FakeScheduler()
    anchor = make_refresher(clock, issued, shown, scheduler=scheduler)

    await anchor.start()
    assert issued == []
    assert anchor.running
    assert len(scheduler.jobs) == 1

    clock.now = START + timedelta(minutes=45)
    await anchor.tick()
    assert issued == [ScanPhase.EXIT]


async def test_started_early_waits_for_entry():
    clock = Clock(START - timedelta(hours=1))
    issued, shown = [], []
    anchor = make_refresher(clock, issued, shown)
    await anchor.start()
    assert issued == []
    assert anchor.running

    clock.now = START - timedelta(minutes=15)
    await anchor.tick()
    assert issued == [ScanPhase.ENTRY]


async def test_nothing_scheduled_once_exit_has_closed():
    clock = Clock(START + timedelta(hours=2))
    issued, shown = [], []
    scheduler = FakeScheduler()
    anchor = make_refresher(clock, issued, shown, scheduler=scheduler)
    await anchor.start()
    assert issued == []
    assert scheduler.jobs == []


async def test_stop_prevents_further_issuance():
    clock = Clock(START)
    issued, shown = [], []
    anchor = make_refresher(clock, issued, shown)
    await anchor.start()
    anchor.stop()
    await anchor.tick()
    assert issued == [ScanPhase.ENTRY]


async def test_rejection_stops_the_loop():
    clock = Clock(START)
    errors_seen = []

    async def issue(phase):
        raise NotHost()

    scheduler = FakeScheduler()
    anchor = AnchorRefresher(
        start=START, duration_minutes=60, issue=issue, on_token=lambda t: None,
        scheduler=scheduler, clock=clock, on_error=errors_seen.append,
    )
    await anchor.start()
    assert not anchor.running
    assert scheduler.jobs == []
    assert [e.code for e in errors_seen] == ["not_host"]


async def test_stop_during_issue_drops_the_token():
    clock = Clock(START)
    shown = []
    holder = {}

    async def issue(phase):
        holder["anchor"].stop()
        return sign_qr(meetup_id="m-1", phase=phase, now=clock())

    anchor = AnchorRefresher(
        start=START, duration_minutes=60, issue=issue, on_token=shown.append,
        scheduler=FakeScheduler(), clock=clock,
    )
    holder["anchor"] = anchor
    await anchor.start()
    assert shown == []
    assert anchor.token is None
