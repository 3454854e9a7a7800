"""Contract for the upstream data source behind the refresh engine.

The refresh coordinator and the game browser never talk HTTP themselves;
they receive a :class:`ResourceFetcher` at construction time.  This enables:

* **Unit testing** - inject a fake fetcher that returns canned sports and
  events, or raises a chosen :class:`~linescanner.core.errors.FetchError`.
* **Provider swaps** - The Odds API today, another odds vendor tomorrow,
  without touching cache or scheduling logic.

Design choices
--------------
* :class:`ResourceFetcher` is an ABC rather than a ``typing.Protocol`` so
  that the coordinator constructor can reject objects that do not implement
  the contract.
* Both methods raise :class:`~linescanner.core.errors.FetchError` for every
  upstream failure.  Implementations must never return partially parsed
  data; a payload either decodes completely or the call fails with
  ``malformed_response``.
* :class:`SportType` is frozen and slotted so cached lists of it can be
  shared across threads.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass(frozen=True, slots=True)
class SportType:
    """One entry of the primary resource (the sports list).

    Attributes:
        key: Provider sport key, also used as the secondary resource key
            (e.g. ``"basketball_nba"``).
        display_name: Human-readable title (e.g. ``"NBA"``).
    """

    key: str
    display_name: str

    def to_dict(self) -> Dict[str, str]:
        return {"key": self.key, "display_name": self.display_name}


class ResourceFetcher(ABC):
    """Abstract upstream source for the primary and secondary resources."""

    @abstractmethod
    def fetch_primary(self) -> List[SportType]:
        """Return every sport the provider currently covers.

        Raises:
            FetchError: On any upstream failure.
        """

    @abstractmethod
    def fetch_secondary(self, key: str) -> List[Dict[str, Any]]:
        """Return the event records for one sport key.

        Records are opaque to the cache; they are stored and served as-is.

        Raises:
            FetchError: On any upstream failure.
        """
