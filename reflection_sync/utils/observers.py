from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from reflection_sync.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


@dataclass(eq=False)
class _Observer(Generic[T]):
    on_next: Callable[[T], None]
    on_error: Optional[ErrorCallback]


class ObserverList(Generic[T]):
    """Synchronous publish/subscribe fan-out. A failing observer never blocks the others."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._observers: list[_Observer[T]] = []

    def __len__(self) -> int:
        return len(self._observers)

    def subscribe(self, on_next: Callable[[T], None], on_error: Optional[ErrorCallback] = None) -> Unsubscribe:
        observer = _Observer(on_next, on_error)
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def emit(self, value: T) -> None:
        for observer in list(self._observers):
            try:
                observer.on_next(value)
            except Exception as e:
                logger.error("observer_failed", source=self._name, error=str(e))

    def fail(self, error: Exception) -> None:
        for observer in list(self._observers):
            if observer.on_error is None:
                continue
            try:
                observer.on_error(error)
            except Exception as e:
                logger.error("observer_error_handler_failed", source=self._name, error=str(e))

    def clear(self) -> None:
        self._observers.clear()
