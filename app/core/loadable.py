"""
Loading state of one asynchronous value, and an observable slot holding it.

States:
    NotRequested -> nobody asked yet
    Loading      -> a request is running, `last` keeps the previous value
    Loaded       -> value is available
    Failed       -> the request raised, `error` is the exception

A `LoadableSubject` is what pipelines write into and what consumers watch.
"""

import logging
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, List, Optional, TypeVar

from app.core.cancel_bag import CancelBag, CancellationToken

T = TypeVar("T")
U = TypeVar("U")

logger = logging.getLogger(__name__)


# =========================
# States
# =========================
class Loadable(Generic[T]):
    @property
    def value(self) -> Optional[T]:
        return None

    @property
    def error(self) -> Optional[Exception]:
        return None

    @property
    def is_loading(self) -> bool:
        return False

    def map(self, transform: Callable[[T], U]) -> "Loadable[U]":
        return self


@dataclass(frozen=True)
class NotRequested(Loadable[T]):
    pass


@dataclass(frozen=True)
class Loading(Loadable[T]):
    last: Optional[T] = None
    cancel_bag: CancelBag = field(default_factory=CancelBag, compare=False, repr=False)

    @property
    def value(self) -> Optional[T]:
        return self.last

    @property
    def is_loading(self) -> bool:
        return True

    def map(self, transform: Callable[[T], U]) -> "Loadable[U]":
        if self.last is None:
            return Loading(None, self.cancel_bag)
        try:
            return Loading(transform(self.last), self.cancel_bag)
        except Exception as error:
            return Failed(error)


@dataclass(frozen=True)
class Loaded(Loadable[T]):
    loaded: T

    @property
    def value(self) -> Optional[T]:
        return self.loaded

    def map(self, transform: Callable[[T], U]) -> "Loadable[U]":
        try:
            return Loaded(transform(self.loaded))
        except Exception as error:
            return Failed(error)


@dataclass(frozen=True)
class Failed(Loadable[T]):
    failure: Exception

    @property
    def error(self) -> Optional[Exception]:
        return self.failure


# =========================
# Observable slot
# =========================
class LoadableSubject(Generic[T]):
    """
    Mutable slot holding a `Loadable[T]`.

    Every assignment is pushed to the observers synchronously, in
    subscription order. Observers that raise are logged and skipped so one
    broken consumer can't stop the others.
    """

    def __init__(self, initial: Optional[Loadable[T]] = None):
        self._value: Loadable[T] = initial if initial is not None else NotRequested()
        self._observers: List[Callable[[Loadable[T]], None]] = []

    @property
    def value(self) -> Loadable[T]:
        return self._value

    @value.setter
    def value(self, new_value: Loadable[T]) -> None:
        self._value = new_value
        for observer in list(self._observers):
            try:
                observer(new_value)
            except Exception as error:
                logger.error(f"Loadable observer failed: {error}")

    def set_loading(self, cancel_bag: CancelBag) -> None:
        """Enter Loading, keeping the current value (if any) as `last`."""
        self.value = Loading(self._value.value, cancel_bag)

    def cancel_loading(self) -> None:
        """
        Abort the running request from the consumer side.

        The previous value comes back as Loaded; without one the slot returns
        to NotRequested. Cancellation is never reported as Failed.
        """
        current = self._value
        if not isinstance(current, Loading):
            return
        current.cancel_bag.cancel()
        if current.last is not None:
            self.value = Loaded(current.last)
        else:
            self.value = NotRequested()

    def subscribe(self, observer: Callable[[Loadable[T]], None]) -> CancellationToken:
        """Register an observer; cancel the returned token to stop it."""
        self._observers.append(observer)

        def unsubscribe():
            if observer in self._observers:
                self._observers.remove(observer)

        return CancellationToken(unsubscribe)

    def bind(self, target: Any, attribute: str) -> CancellationToken:
        """
        Mirror every new state into `target.<attribute>` without keeping
        `target` alive. Once `target` is garbage collected the binding
        removes itself.
        """
        target_ref = weakref.ref(target)
        token: Optional[CancellationToken] = None

        def assign(state: Loadable[T]) -> None:
            obj = target_ref()
            if obj is None:
                token.cancel()
                return
            setattr(obj, attribute, state)

        token = self.subscribe(assign)
        return token
