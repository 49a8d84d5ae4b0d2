"""
Observable keyed store.

Each store is owned by one component (detector, coordinator, recovery
manager) which mutates it only through the methods below. Consumers
observe changes through subscribe(); every mutation delivers a snapshot
of the current values, in insertion order.
"""

import logging
from collections.abc import Callable, Iterable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")

Subscriber = Callable[[list[V]], None]


class ObservableStore(Generic[K, V]):
    """Keyed collection that notifies subscribers after every change."""

    def __init__(self, name: str, key: Callable[[V], K]):
        """
        Initialize the store.

        Args:
            name: Store name (used in log messages)
            key: Function extracting the key from a value
        """
        self.name = name
        self._key = key
        self._items: dict[K, V] = {}
        self._subscribers: list[Subscriber] = []

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def get(self, key: K) -> V | None:
        return self._items.get(key)

    def values(self) -> list[V]:
        return list(self._items.values())

    def put(self, value: V) -> None:
        """Insert or replace a value (replacement keeps its position)."""
        self._items[self._key(value)] = value
        self._notify()

    def put_many(self, values: Iterable[V]) -> None:
        for value in values:
            self._items[self._key(value)] = value
        self._notify()

    def remove(self, key: K) -> V | None:
        value = self._items.pop(key, None)
        if value is not None:
            self._notify()
        return value

    def remove_many(self, keys: Iterable[K]) -> list[V]:
        removed = [self._items.pop(k) for k in list(keys) if k in self._items]
        if removed:
            self._notify()
        return removed

    def replace_all(self, values: Iterable[V]) -> None:
        self._items = {self._key(v): v for v in values}
        self._notify()

    def clear(self) -> None:
        if self._items:
            self._items = {}
            self._notify()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a change callback.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.values()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.exception("Subscriber of store '%s' failed: %s", self.name, e)
