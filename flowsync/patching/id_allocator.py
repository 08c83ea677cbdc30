"""Collision-free id allocation for cells added to an existing document."""

import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from dataclasses import dataclass, field

from flowsync.config import DEFAULT_SETTINGS, EngineSettings
from flowsync.errors import IdentifierExhaustion
from flowsync.utils.identifiers import numeric_id

logger = logging.getLogger(__name__)


def scan_ids(element: ET.Element) -> list[str]:
    """Every `id` attribute anywhere below (and including) `element`."""
    return [node.get("id") for node in element.iter() if node.get("id") is not None]


@dataclass
class IdAllocator:
    """Hands out ids from two disjoint high ranges.

    Sub-step vertices start at max(floor, maxId + offset); edges start
    `edge_id_span` above that. Any candidate already in use is skipped.
    """

    used: set[str] = field(default_factory=set)
    next_subprocess: int = DEFAULT_SETTINGS.subprocess_id_floor
    next_edge: int = DEFAULT_SETTINGS.subprocess_id_floor + DEFAULT_SETTINGS.edge_id_span
    max_attempts: int = DEFAULT_SETTINGS.max_id_attempts

    @classmethod
    def for_ids(cls, ids: Iterable[str], settings: EngineSettings = DEFAULT_SETTINGS) -> "IdAllocator":
        used = set(ids)
        max_id = max((n for n in map(numeric_id, used) if n is not None), default=0)
        subprocess_base = max(settings.subprocess_id_floor, max_id + settings.subprocess_id_offset)
        return cls(
            used=used,
            next_subprocess=subprocess_base,
            next_edge=subprocess_base + settings.edge_id_span,
            max_attempts=settings.max_id_attempts,
        )

    @classmethod
    def for_element(cls, element: ET.Element, settings: EngineSettings = DEFAULT_SETTINGS) -> "IdAllocator":
        return cls.for_ids(scan_ids(element), settings)

    def _take(self, candidate: int) -> int:
        attempts = 0
        while str(candidate) in self.used:
            logger.debug("id %d already in use, trying %d", candidate, candidate + 1)
            candidate += 1
            attempts += 1
            if attempts >= self.max_attempts:
                raise IdentifierExhaustion(
                    f"no free id after {attempts} attempts (last candidate {candidate})"
                )
        self.used.add(str(candidate))
        return candidate

    def subprocess_id(self) -> str:
        value = self._take(self.next_subprocess)
        self.next_subprocess = value + 1
        return str(value)

    def edge_id(self) -> str:
        value = self._take(self.next_edge)
        self.next_edge = value + 1
        return str(value)

    def reserve(self, value: str) -> bool:
        """Mark an externally chosen id as used; False if it was taken."""
        if value in self.used:
            return False
        self.used.add(value)
        return True
