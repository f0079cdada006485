"""The archive index: per-entry metadata plus aggregate storage usage."""

import time
from dataclasses import asdict, dataclass, field
from typing import Any

SUBJECT_MAX_LENGTH = 100


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ImageRef:
    index: int
    size: int
    ttl_seconds: int
    filename: str
    mime_type: str


@dataclass
class ArchiveEntry:
    id: int
    timestamp: int
    starred: bool = False
    text_size: int = 0
    images: list[ImageRef] = field(default_factory=list)
    sender: str = ""
    subject: str = ""

    def __post_init__(self) -> None:
        self.subject = self.subject[:SUBJECT_MAX_LENGTH]

    @property
    def size(self) -> int:
        return self.text_size + sum(img.size for img in self.images)

    @property
    def max_ttl_seconds(self) -> int:
        return max((img.ttl_seconds for img in self.images), default=0)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ArchiveEntry":
        return cls(
            id=int(data["id"]),
            timestamp=int(data["timestamp"]),
            starred=bool(data.get("starred", False)),
            text_size=int(data.get("text_size") or 0),
            images=[ImageRef(**img) for img in data.get("images", [])],
            sender=data.get("sender", ""),
            subject=data.get("subject", ""),
        )


class ArchiveIndex:
    """All archived entries and the total bytes they occupy.

    Loaded once per invocation, mutated in place and written back as one
    snapshot. `total_size` must always equal the sum of entry sizes; every
    mutation adjusts it by exactly what was added or removed.
    """

    def __init__(self, entries: list[ArchiveEntry] | None = None, total_size: int | None = None) -> None:
        self.entries: list[ArchiveEntry] = entries or []
        self.total_size = sum(e.size for e in self.entries) if total_size is None else max(total_size, 0)
        self._positions: dict[int, int] = {}
        self._reindex()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ArchiveIndex":
        if not data:
            return cls()
        entries = [ArchiveEntry.from_dict(e) for e in data.get("entries", [])]
        return cls(entries, int(data.get("total_size", 0)))

    def to_dict(self) -> dict[str, Any]:
        return {"entries": [asdict(e) for e in self.entries], "total_size": self.total_size}

    def _reindex(self) -> None:
        self._positions = {entry.id: pos for pos, entry in enumerate(self.entries)}

    def get(self, entry_id: int) -> ArchiveEntry | None:
        pos = self._positions.get(entry_id)
        return self.entries[pos] if pos is not None else None

    def add(self, entry: ArchiveEntry) -> None:
        if entry.id in self._positions:
            raise ValueError(f"Entry {entry.id} is already in the index")
        self._positions[entry.id] = len(self.entries)
        self.entries.append(entry)
        self.total_size += entry.size

    def remove(self, entry_ids: set[int]) -> list[ArchiveEntry]:
        """Drop entries by id and subtract their sizes. Returns the removed entries."""
        removed = [e for e in self.entries if e.id in entry_ids]
        if not removed:
            return []
        self.entries = [e for e in self.entries if e.id not in entry_ids]
        self.total_size = max(self.total_size - sum(e.size for e in removed), 0)
        self._reindex()
        return removed

    def recalculate(self) -> int:
        self.total_size = sum(e.size for e in self.entries)
        return self.total_size

    def starred_size(self) -> int:
        return sum(e.size for e in self.entries if e.starred)

    def search(self, keyword: str) -> list[ArchiveEntry]:
        """Entries whose sender or subject contains the keyword, newest first."""
        kw = keyword.lower()
        matches = [e for e in self.entries if kw in e.sender.lower() or kw in e.subject.lower()]
        return sorted(matches, key=lambda e: e.timestamp, reverse=True)
