"""
Cancellation primitives for running pipelines.

A `CancellationToken` stands for one in-flight operation (usually an
asyncio task). A `CancelBag` owns a group of tokens and cancels all of
them at once, e.g. when the request or screen that started them goes away.

Example:
    with CancelBag() as bag:
        task = service.load_countries(subject, search="", locale="en", cancel_bag=bag)
        await task
    # leaving the block cancels whatever is still running
"""

import asyncio
import logging
import threading
from typing import Callable, Optional, Set

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Handle for one cancellable operation.

    Either bind an asyncio task to it (`bind`) or pass a plain callback.
    `cancel()` runs at most once; cancelling after the task finished is a no-op.
    """

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._on_cancel = on_cancel
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._cancelled = False
        self._lock = threading.Lock()
        self.bag: Optional["CancelBag"] = None

    def bind(self, task: asyncio.Task) -> "CancellationToken":
        self._task = task
        self._loop = task.get_loop()
        return self

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True

        if self._on_cancel is not None:
            self._on_cancel()

        task = self._task
        if task is None or task.done():
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            task.cancel()
        elif not self._loop.is_closed():
            # Tasks may only be touched from their own loop's thread
            self._loop.call_soon_threadsafe(task.cancel)


class CancelBag:
    """
    A set of tokens cancelled together.

    `cancel()` cancels every stored token exactly once and empties the bag.
    Storing into a bag that was already cancelled cancels the token right away.
    Access to the token set is guarded by a lock, so completions coming from
    other threads can't race with disposal.
    """

    def __init__(self):
        self._tokens: Set[CancellationToken] = set()
        self._lock = threading.Lock()
        self._cancelled = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

    def __enter__(self) -> "CancelBag":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def store(self, token: CancellationToken) -> CancellationToken:
        """
        Add a token to the bag.

        Raises:
            ValueError: the token already belongs to another bag.
        """
        with self._lock:
            if token.bag is not None and token.bag is not self:
                raise ValueError("Token already belongs to another CancelBag")
            token.bag = self
            if not self._cancelled:
                self._tokens.add(token)
                return token

        # Bag is already gone, nobody would ever cancel this token
        token.cancel()
        return token

    def discard(self, token: CancellationToken) -> None:
        """Forget a token whose operation completed on its own."""
        with self._lock:
            self._tokens.discard(token)

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            tokens = list(self._tokens)
            self._tokens.clear()

        if tokens:
            logger.debug(f"Cancelling {len(tokens)} operation(s)")
        for token in tokens:
            token.cancel()
