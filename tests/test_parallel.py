import threading
import time

import pytest

from polyphonia.parallel import parallel_map


def test_output_follows_input_order():
    def slow_square(x):
        time.sleep(0.01 * (5 - x))
        return x * x

    assert parallel_map(slow_square, range(5), workers=3) == [0, 1, 4, 9, 16]
    assert parallel_map(slow_square, [], workers=3) == []


def test_first_error_cancels_pending_items():
    started = []
    lock = threading.Lock()

    def work(x):
        with lock:
            started.append(x)
        if x == 0:
            raise ValueError("bad item 0")
        time.sleep(0.05)
        return x

    with pytest.raises(ValueError, match="bad item 0"):
        parallel_map(work, range(50), workers=2)
    assert 0 in started
    assert len(started) < 50
