from services.captions.queue import ProcessingQueue


def test_fifo_order():
    queue = ProcessingQueue()
    for image_id in ("a", "b", "c"):
        queue.enqueue(image_id)
    assert [queue.dequeue(), queue.dequeue(), queue.dequeue()] == ["a", "b", "c"]
    assert queue.dequeue() is None


def test_enqueue_is_unique():
    queue = ProcessingQueue()
    assert queue.enqueue("a")
    assert not queue.enqueue("a")
    assert len(queue) == 1
    assert queue.ids() == ["a"]


def test_duplicate_keeps_original_position():
    queue = ProcessingQueue(["a", "b"])
    queue.enqueue("a")
    assert queue.ids() == ["a", "b"]


def test_remove_and_contains():
    queue = ProcessingQueue(["a", "b", "c"])
    assert queue.remove("b")
    assert not queue.remove("b")
    assert not queue.contains("b")
    assert "b" not in queue
    assert queue.contains("a")
    assert queue.ids() == ["a", "c"]


def test_requeue_puts_id_at_head():
    queue = ProcessingQueue(["b", "c"])
    queue.requeue("a")
    assert queue.ids() == ["a", "b", "c"]
    queue.requeue("c")
    assert queue.ids() == ["c", "a", "b"]


def test_init_drops_duplicates():
    queue = ProcessingQueue(["a", "b", "a"])
    assert list(queue) == ["a", "b"]


def test_clear():
    queue = ProcessingQueue(["a"])
    queue.clear()
    assert len(queue) == 0
