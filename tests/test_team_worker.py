import time

from teamwire.team_engine.worker import TeammateWorker


def test_worker_keeps_polling_until_stopped():
    polls = []
    worker = TeammateWorker(
        team_name="demo",
        member_id="dev",
        poll_fn=lambda: polls.append(1) or False,
        poll_interval_s=0.02,
    )
    worker.start()
    time.sleep(0.12)
    assert worker.is_alive()
    assert len(polls) >= 2

    worker.stop()
    assert worker.wait_stopped(timeout=1.0)
    assert worker.failures == 0


def test_worker_exits_when_asked_to():
    flags = {"done": False}

    def poll():
        flags["done"] = True
        return True

    worker = TeammateWorker(
        team_name="demo",
        member_id="dev",
        poll_fn=poll,
        should_exit=lambda: flags["done"],
        poll_interval_s=0.02,
    )
    worker.start()
    worker.join(timeout=1.0)
    assert not worker.is_alive()
    assert worker.polls == 1
    assert worker.last_processed_at is not None


def test_worker_survives_a_failing_poll():
    calls = {"n": 0}

    def poll():
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("bad message")
        return False

    worker = TeammateWorker(team_name="demo", member_id="dev", poll_fn=poll, poll_interval_s=0.01)
    worker.start()
    time.sleep(0.1)
    assert worker.is_alive()
    assert worker.failures == 1
    assert worker.last_error == "bad message"
    worker.stop()
    worker.join(timeout=1.0)
