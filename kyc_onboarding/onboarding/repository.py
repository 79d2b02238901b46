"""Key-value storage seam for merchant and KYC records."""

import threading
from typing import Generic, Protocol, TypeVar

T = TypeVar("T")


class Repository(Protocol[T]):
    """Minimal storage contract the onboarding services depend on."""

    def get(self, key: str) -> T | None: ...

    def set(self, key: str, value: T) -> None: ...

    def delete(self, key: str) -> None: ...

    def values(self) -> list[T]: ...


class InMemoryRepository(Generic[T]):
    """Dictionary-backed repository, one store per instance."""

    def __init__(self) -> None:
        self._items: dict[str, T] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> T | None:
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._items[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def values(self) -> list[T]:
        with self._lock:
            return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)
