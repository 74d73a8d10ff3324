import threading

from nexachat.core.bus import EventBus


def test_pump_dispatches_in_order():
    bus = EventBus()
    seen = []
    bus.on("evt", lambda p: seen.append(p["n"]))
    for n in range(3):
        bus.post("evt", n=n)
    assert bus.pump_once() == 3
    assert seen == [0, 1, 2]


def test_handler_error_does_not_stop_others():
    bus = EventBus()
    seen = []

    def bad(payload):
        raise RuntimeError("boom")

    bus.on("evt", bad)
    bus.on("evt", lambda p: seen.append(p))
    bus.post("evt", x=1)
    bus.pump_once()
    assert seen == [{"x": 1}]


def test_worker_thread_delivers():
    bus = EventBus(poll_sec=0.01)
    got = threading.Event()
    bus.on("ping", lambda p: got.set())
    bus.start()
    try:
        bus.post("ping")
        assert got.wait(2)
    finally:
        bus.stop()
