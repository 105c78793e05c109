from conftest import make_frame
from keyframe_capture.frame_queue import FrameQueue
from keyframe_capture.frames import FrameCacheEntry


def _entry(index: int, timestamp: float) -> FrameCacheEntry:
    return FrameCacheEntry(index=index, frame=make_frame(timestamp, with_image=False))


def test_dequeue_is_fifo():
    queue = FrameQueue()
    for i in range(3):
        queue.enqueue(_entry(i, float(i)))

    assert [queue.dequeue().index for _ in range(3)] == [0, 1, 2]
    assert queue.dequeue() is None


def test_enqueue_same_timestamp_keeps_latest():
    queue = FrameQueue()
    first = _entry(0, 1.0)
    second = _entry(1, 1.0)

    queue.enqueue(first)
    queue.enqueue(second)

    assert queue.count == 1
    assert queue.head is second


def test_replaced_entry_moves_to_tail():
    queue = FrameQueue()
    queue.enqueue(_entry(0, 1.0))
    queue.enqueue(_entry(1, 2.0))
    queue.enqueue(_entry(2, 1.0))

    assert [e.index for e in queue] == [1, 2]
    assert queue.tail.index == 2


def test_remove_and_membership():
    queue = FrameQueue()
    queue.enqueue(_entry(0, 1.0))
    queue.enqueue(_entry(1, 2.0))

    assert queue.is_in_queue(2.0)
    assert not queue.is_in_queue(None)

    queue.remove(2.0)
    assert not queue.is_in_queue(2.0)
    assert len(queue) == 1


def test_dequeue_all_empties_queue():
    queue = FrameQueue()
    for i in range(5):
        queue.enqueue(_entry(i, float(i)))

    queue.dequeue_all()

    assert queue.count == 0
    assert queue.head is None
    assert queue.tail is None
