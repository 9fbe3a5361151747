# tests/test_scheduler.py
import random
import threading
import time

import pytest

from socketcan_mon.errors import InvalidSpec, SendFailed
from socketcan_mon.model import Direction, TriggerKind
from socketcan_mon.scheduler import JOIN_MARGIN, CyclicScheduler
from fakes import wait_for


@pytest.fixture
def published():
    return []


@pytest.fixture
def scheduler(fake_transport, published):
    sched = CyclicScheduler(fake_transport, published.append)
    yield sched
    sched.stop_all()


class TestSendOnce:

    def test_one_shot_send(self, scheduler, fake_transport, published, make_spec):
        spec = make_spec(period=0.0)
        event = scheduler.send_once(spec)

        assert len(fake_transport.sent) == 1
        assert published == [event]
        assert event.direction is Direction.TRANSMITTED
        assert event.trigger is TriggerKind.MANUAL
        assert event.self_originated is True
        assert event.cycle_time == 0.0
        assert spec.trigger is TriggerKind.MANUAL
        assert spec.active is False

        # Never recurs
        time.sleep(0.1)
        assert len(fake_transport.sent) == 1
        assert len(published) == 1

    def test_one_shot_on_periodic_spec_does_not_start_task(self, scheduler, make_spec):
        spec = make_spec(period=0.05)
        scheduler.send_once(spec)
        assert not scheduler.is_running(spec)

    def test_send_failure_is_raised_and_not_published(self, scheduler, fake_transport, published, make_spec):
        fake_transport.fail_sends = True
        with pytest.raises(SendFailed):
            scheduler.send_once(make_spec())
        assert published == []
        assert scheduler.send_failures == 1

    def test_invalid_spec_never_reaches_transport(self, scheduler, fake_transport, make_spec):
        with pytest.raises(InvalidSpec):
            scheduler.send_once(make_spec(payload=bytes(9)))
        assert fake_transport.sent == []


class TestCyclic:

    def test_periodic_scenario(self, scheduler, published, make_spec):
        """50ms period gives at least 3 sends within 160ms, about 50ms apart."""
        spec = make_spec(period=0.05)
        assert scheduler.start_cyclic(spec) is True
        assert spec.active is True
        assert spec.trigger is TriggerKind.PERIODIC

        time.sleep(0.16)
        events = list(published)
        assert len(events) >= 3
        assert all(e.trigger is TriggerKind.PERIODIC for e in events)
        assert all(e.cycle_time == 0.05 for e in events)
        gaps = [b.timestamp - a.timestamp for a, b in zip(events, events[1:])]
        for gap in gaps:
            assert gap == pytest.approx(0.05, abs=0.03)

    def test_zero_period_is_rejected(self, scheduler, make_spec):
        spec = make_spec(period=0.0)
        with pytest.raises(InvalidSpec):
            scheduler.start_cyclic(spec)
        assert spec.active is False
        assert len(scheduler) == 0

    def test_double_start_keeps_single_sender(self, scheduler, fake_transport, make_spec):
        spec = make_spec(period=0.05)
        start = time.monotonic()
        assert scheduler.start_cyclic(spec) is True
        assert scheduler.start_cyclic(spec) is False
        assert len(scheduler) == 1

        time.sleep(0.25)
        scheduler.stop_cyclic(spec)
        elapsed = time.monotonic() - start
        # One sender: at most one frame per period
        assert len(fake_transport.sent) <= int(elapsed / 0.05) + 1

    def test_no_sends_after_stop_returns(self, scheduler, fake_transport, make_spec):
        spec = make_spec(period=0.02)
        scheduler.start_cyclic(spec)
        assert wait_for(lambda: len(fake_transport.sent) >= 2)

        t0 = time.monotonic()
        assert scheduler.stop_cyclic(spec) is True
        assert time.monotonic() - t0 <= 0.02 + scheduler.send_timeout + JOIN_MARGIN + 0.05
        assert spec.active is False

        count = len(fake_transport.sent)
        time.sleep(0.1)
        assert len(fake_transport.sent) == count

    def test_stop_when_idle_is_noop(self, scheduler, make_spec):
        assert scheduler.stop_cyclic(make_spec(period=0.05)) is False

    def test_restart_after_stop(self, scheduler, fake_transport, make_spec):
        spec = make_spec(period=0.02)
        scheduler.start_cyclic(spec)
        scheduler.stop_cyclic(spec)
        assert scheduler.start_cyclic(spec) is True
        assert spec.active is True
        before = len(fake_transport.sent)
        assert wait_for(lambda: len(fake_transport.sent) > before)

    def test_stop_all(self, scheduler, fake_transport, make_spec):
        specs = [make_spec(identifier=0x100 + i, period=0.02) for i in range(3)]
        for spec in specs:
            scheduler.start_cyclic(spec)
        assert len(scheduler.running()) == 3

        assert scheduler.stop_all() == 3
        assert all(spec.active is False for spec in specs)
        assert len(scheduler) == 0

        count = len(fake_transport.sent)
        time.sleep(0.08)
        assert len(fake_transport.sent) == count

    def test_send_failure_does_not_stop_task(self, scheduler, fake_transport, published, make_spec):
        spec = make_spec(period=0.02)
        fake_transport.fail_sends = True
        scheduler.start_cyclic(spec)
        assert wait_for(lambda: scheduler.send_failures >= 2)
        assert scheduler.is_running(spec)
        assert published == []

        fake_transport.fail_sends = False
        assert wait_for(lambda: len(published) >= 1)

    def test_failure_in_one_task_leaves_others_running(self, scheduler, fake_transport, make_spec):
        good = make_spec(identifier=0x100, period=0.02)
        scheduler.start_cyclic(good)
        fake_transport.fail_sends = True
        with pytest.raises(SendFailed):
            scheduler.send_once(make_spec(identifier=0x200))
        fake_transport.fail_sends = False
        before = len(fake_transport.sends_for(0x100))
        assert wait_for(lambda: len(fake_transport.sends_for(0x100)) > before)
        assert scheduler.is_running(good)

    def test_stuck_transmit_does_not_block_stop(self, scheduler, fake_transport, make_spec):
        spec = make_spec(period=0.02)
        fake_transport.send_delay = 0.5
        scheduler.start_cyclic(spec)
        time.sleep(0.05)  # first send is now in flight

        t0 = time.monotonic()
        scheduler.stop_cyclic(spec)
        assert time.monotonic() - t0 < 0.4
        assert spec.active is False

        time.sleep(0.6)
        # Only the in-flight frame completes
        assert len(fake_transport.sent) <= 1


class TestConcurrentControl:
    """Start and stop called on the same spec from several threads at once."""

    def test_concurrent_start_stop_keeps_one_sender(self, scheduler, fake_transport, make_spec):
        spec = make_spec(identifier=0x321, period=0.04)
        lock = threading.Lock()
        counts = {"started": 0, "stopped": 0}
        max_tasks = []
        done = threading.Event()

        def control(seed):
            rng = random.Random(seed)
            while not done.is_set():
                action = rng.choice(("start", "start", "stop", "stop_all"))
                if action == "start":
                    result = 1 if scheduler.start_cyclic(spec) else 0
                    key = "started"
                elif action == "stop":
                    result = 1 if scheduler.stop_cyclic(spec) else 0
                    key = "stopped"
                else:
                    result = scheduler.stop_all()
                    key = "stopped"
                with lock:
                    counts[key] += result
                time.sleep(rng.uniform(0.0, 0.03))

        def watch():
            while not done.is_set():
                max_tasks.append(len(scheduler))
                time.sleep(0.002)

        threads = [threading.Thread(target=control, args=(i,)) for i in range(4)]
        threads.append(threading.Thread(target=watch))
        for t in threads:
            t.start()
        time.sleep(0.6)
        done.set()
        for t in threads:
            t.join(timeout=2.0)

        assert all(n <= 1 for n in max_tasks)
        # Every successful start is one Idle -> Running transition
        assert counts["started"] - counts["stopped"] == len(scheduler)
        assert counts["started"] >= 1

        scheduler.stop_all()
        times = [s[0] for s in fake_transport.sends_for(0x321)]
        gaps = [b - a for a, b in zip(times, times[1:])]
        # At most one frame per period, with slack for late-tick realignment
        assert all(gap >= 0.04 * 0.5 for gap in gaps)

    def test_failures_counted_across_tasks(self, scheduler, fake_transport, make_spec):
        fake_transport.fail_sends = True
        specs = [make_spec(identifier=0x100 + i, period=0.005) for i in range(4)]
        for spec in specs:
            scheduler.start_cyclic(spec)
        assert wait_for(lambda: fake_transport.failed >= 40)
        scheduler.stop_all()

        with pytest.raises(SendFailed):
            scheduler.send_once(make_spec(identifier=0x200))
        assert scheduler.send_failures == fake_transport.failed
