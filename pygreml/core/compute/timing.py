"""
Section timing for fits.

The breakdown ends up in Result.timing. GPU kernels run asynchronously,
so a GPU fit asks the timer to synchronise CUDA at every boundary.
"""

import time
from contextlib import contextmanager
from typing import Iterator


class Timer:
    """
    Wall-clock timer with named, accumulating sections.

    Entering the same section twice adds to its total, so a section wrapped
    around each likelihood evaluation reports the time spent in all of them.

    Usage:
        timer = Timer()
        timer.start()
        with timer.section('optimization'):
            opt = maximize(objective, theta0, lower_bounds)
        timer.stop()
        timer.result()   # {'total_seconds': ..., 'optimization': ...}
    """

    def __init__(self, sync_cuda: bool = False):
        self._sync_cuda = sync_cuda
        self._sections: dict[str, float] = {}
        self._t0: float | None = None
        self._total: float | None = None

    def _sync(self) -> None:
        if not self._sync_cuda:
            return
        import torch
        if torch.cuda.is_available():
            torch.cuda.synchronize()

    def start(self) -> None:
        self._sync()
        self._t0 = time.perf_counter()

    def stop(self) -> None:
        if self._t0 is None:
            raise RuntimeError("Timer.stop() called before start()")
        self._sync()
        self._total = time.perf_counter() - self._t0

    @contextmanager
    def section(self, name: str) -> Iterator[None]:
        """Add the time spent inside the block to section `name`."""
        self._sync()
        t = time.perf_counter()
        try:
            yield
        finally:
            self._sync()
            self._sections[name] = self._sections.get(name, 0.0) + time.perf_counter() - t

    def result(self) -> dict[str, float]:
        """'total_seconds' plus one entry per section.

        Raises:
            RuntimeError: If called before stop().
        """
        if self._total is None:
            raise RuntimeError("Timer.result() called before stop()")
        return {'total_seconds': self._total, **self._sections}
