"""A pool of worker threads that tokenize prompts and record them in a token store."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Hashable
from dataclasses import dataclass, field

from .prefix_lru import TokenIndexer
from .tokenizer import HFTokenizerConfig, Tokenizer

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 5

_BASE_RETRY_DELAY = 0.005
_MAX_RETRY_DELAY = 1000.0


@dataclass
class PoolConfig:
    """Settings for :class:`TokenizationPool`."""

    workers_count: int = DEFAULT_WORKERS
    hf_tokenizer_config: HFTokenizerConfig = field(default_factory=HFTokenizerConfig)


@dataclass(frozen=True)
class Task:
    """A prompt to tokenize for a model."""

    prompt: str
    model_name: str


class _WorkQueue:
    """A de-duplicating work queue with per-item exponential retry delays.

    An item added while already waiting is not queued twice; an item added
    while being processed is queued again once it is done.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._failures: dict[Hashable, int] = {}
        self._timers: list[threading.Timer] = []
        self._shutting_down = False

    def add(self, item: Hashable) -> None:
        with self._cond:
            if self._shutting_down or item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self) -> tuple[Hashable | None, bool]:
        """Block for the next item; the flag is true once the queue is shut down and empty."""
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if not self._queue:
                return None, True
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: Hashable) -> None:
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def forget(self, item: Hashable) -> None:
        with self._cond:
            self._failures.pop(item, None)

    def add_rate_limited(self, item: Hashable) -> None:
        with self._cond:
            failures = self._failures.get(item, 0)
            self._failures[item] = failures + 1
            if self._shutting_down:
                return
            delay = min(_BASE_RETRY_DELAY * 2 ** min(failures, 40), _MAX_RETRY_DELAY)
            timer = threading.Timer(delay, self.add, (item,))
            timer.daemon = True
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
            timer.start()

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            timers, self._timers = self._timers, []
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()


class TokenizationPool:
    """Tokenizes queued prompts in the background and stores the results.

    Failed tasks are retried with an exponentially growing delay.
    """

    def __init__(
        self,
        config: PoolConfig | None,
        store: TokenIndexer,
        tokenizer: Tokenizer,
    ) -> None:
        config = config or PoolConfig()
        self._workers = config.workers_count
        self._queue = _WorkQueue()
        self._store = store
        self._tokenizer = tokenizer

    def add_task(self, prompt: str, model_name: str) -> None:
        """Queue a prompt for tokenization; processing happens in :meth:`run`."""
        self._queue.add(Task(prompt=prompt, model_name=model_name))

    def run(self, stop_event: threading.Event) -> None:
        """Process tasks with the worker threads until ``stop_event`` is set."""
        threads = [
            threading.Thread(target=self._worker_loop, name=f"tokenizer-{i}", daemon=True)
            for i in range(self._workers)
        ]
        for thread in threads:
            thread.start()

        stop_event.wait()

        self._queue.shutdown()
        for thread in threads:
            thread.join()

    def _worker_loop(self) -> None:
        while True:
            task, shutdown = self._queue.get()
            if shutdown:
                return
            try:
                self._process_task(task)
            except Exception:
                logger.exception("tokenization task failed, retrying later: %s", task.model_name)
                self._queue.add_rate_limited(task)
            else:
                self._queue.forget(task)
            finally:
                self._queue.done(task)

    def _process_task(self, task: Task) -> None:
        ids, offsets = self._tokenizer.encode(task.prompt, task.model_name)
        try:
            self._store.add_tokenization(task.model_name, task.prompt, ids, offsets)
        except Exception as err:
            raise RuntimeError(f"tokenization failed for model {task.model_name}: {err}") from err