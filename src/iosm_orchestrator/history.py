"""Append-only cycle history with an optional JSON-lines log.

:class:`History` is the only memory carried between cycles.  Entries are
appended in cycle order and never reordered, pruned or replaced.  When a
:class:`HistoryLog` is attached each appended entry is also written to disk
so that a run can be resumed after a restart.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Iterator, Sequence, overload

from src.iosm_shared.models import HistoryEntry
from src.iosm_shared.utils import append_json_line

logger = logging.getLogger(__name__)


class HistoryLog:
    """JSON-lines log holding one :class:`HistoryEntry` per completed cycle.

    Re-appending a cycle number that is already present is a no-op, so
    replaying a partially persisted run never duplicates entries.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._cycles: set[int] | None = None

    def replay(self) -> list[HistoryEntry]:
        """Read all entries in cycle order.  A missing file yields ``[]``.

        Raises:
            ValueError: If a line is not a valid history entry.
        """
        if not self.path.exists():
            self._cycles = set()
            return []

        entries: dict[int, HistoryEntry] = {}
        with open(self.path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = HistoryEntry.from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                    raise ValueError(
                        f"{self.path}:{lineno}: invalid history entry: {exc}"
                    ) from exc
                entries.setdefault(entry.cycle, entry)
        self._cycles = set(entries)
        return [entries[cycle] for cycle in sorted(entries)]

    def cycles(self) -> set[int]:
        """Cycle numbers already logged.  The file is read once per instance."""
        if self._cycles is None:
            self.replay()
        return set(self._cycles or ())

    def append(self, entry: HistoryEntry) -> bool:
        """Persist *entry*; return ``False`` when its cycle is already logged."""
        if entry.cycle in self.cycles():
            logger.debug("History log already holds cycle %d", entry.cycle)
            return False
        append_json_line(self.path, entry.to_dict())
        if self._cycles is not None:
            self._cycles.add(entry.cycle)
        return True


class History(Sequence[HistoryEntry]):
    """Ordered, append-only sequence of completed cycles."""

    def __init__(
        self,
        entries: Iterable[HistoryEntry] = (),
        log: HistoryLog | None = None,
    ) -> None:
        self._entries: list[HistoryEntry] = []
        self._log = log
        for entry in entries:
            self._check_next(entry)
            self._entries.append(entry)

    @classmethod
    def from_log(cls, log: HistoryLog) -> History:
        """Rebuild a history from *log* and keep appending to it."""
        return cls(log.replay(), log=log)

    @property
    def next_cycle(self) -> int:
        return len(self._entries) + 1

    @property
    def last(self) -> HistoryEntry | None:
        return self._entries[-1] if self._entries else None

    def _check_next(self, entry: HistoryEntry) -> None:
        if entry.cycle != self.next_cycle:
            raise ValueError(
                f"History expects cycle {self.next_cycle}, got {entry.cycle}"
            )

    def append(self, entry: HistoryEntry) -> None:
        """Append the entry of the next cycle (and persist it when logged)."""
        self._check_next(entry)
        if self._log is not None:
            self._log.append(entry)
        self._entries.append(entry)

    def snapshot(self) -> tuple[HistoryEntry, ...]:
        """Immutable copy of the entries."""
        return tuple(self._entries)

    def indices(self) -> list[float]:
        return [entry.index for entry in self._entries]

    @overload
    def __getitem__(self, item: int) -> HistoryEntry: ...

    @overload
    def __getitem__(self, item: slice) -> Sequence[HistoryEntry]: ...

    def __getitem__(self, item):
        if isinstance(item, slice):
            return tuple(self._entries[item])
        return self._entries[item]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(tuple(self._entries))

    def __repr__(self) -> str:
        return f"History(cycles={len(self._entries)})"
