import threading

from hapticsync.services.events import ChunkReady, EventChannel, PipelineError, Progress


def test_publish_then_poll_in_order():
    channel = EventChannel()
    channel.publish(Progress(0, "Downloading video...", 0))
    channel.publish(ChunkReady(0, 42))

    assert channel.get() == Progress(0, "Downloading video...", 0)
    assert channel.drain() == [ChunkReady(0, 42)]
    assert channel.get() is None
    assert channel.get(timeout=0.01) is None


def test_full_queue_drops_oldest():
    channel = EventChannel(maxsize=2)
    for index in range(3):
        channel.publish(ChunkReady(index, 1))

    assert [event.index for event in channel.drain()] == [1, 2]


def test_listeners_receive_events_and_failures_are_contained(caplog):
    channel = EventChannel()
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    channel.subscribe(broken)
    channel.subscribe(seen.append)
    channel.publish(PipelineError("Chunk 1 failed: boom"))

    assert seen == [PipelineError("Chunk 1 failed: boom")]
    assert "Event listener failed" in caplog.text

    channel.unsubscribe(seen.append)
    channel.unsubscribe(broken)
    channel.publish(ChunkReady(1, 1))
    assert len(seen) == 1


def test_concurrent_publishers_on_full_queue():
    channel = EventChannel(maxsize=4)
    errors = []
    start = threading.Barrier(8)

    def publisher(worker):
        start.wait()
        try:
            for step in range(500):
                channel.publish(Progress(worker, "Analyzing", step % 100))
        except Exception as exc:  # pragma: no cover - reported below
            errors.append(exc)

    threads = [threading.Thread(target=publisher, args=(worker,)) for worker in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert errors == []
    assert len(channel.drain()) == 4
