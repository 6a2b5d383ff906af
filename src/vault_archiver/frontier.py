from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Frontier:
    """Visited set plus a stack of discovered URLs for one crawl run.

    ``visited`` and ``pending`` never share a URL, and at most
    ``max_pages`` URLs are ever marked visited.
    """

    max_pages: int
    visited: set[str] = field(default_factory=set)
    pending: list[str] = field(default_factory=list)
    _pending_set: set[str] = field(default_factory=set, repr=False)

    def __post_init__(self) -> None:
        if self.max_pages < 1:
            raise ValueError("max_pages must be positive")

    def push(self, url: str) -> bool:
        if url in self.visited or url in self._pending_set:
            return False
        self.pending.append(url)
        self._pending_set.add(url)
        return True

    def pop(self) -> str:
        # Most recently discovered first.
        url = self.pending.pop()
        self._pending_set.discard(url)
        return url

    def mark_visited(self, url: str) -> None:
        if self.full:
            raise RuntimeError("page budget exhausted")
        self._pending_set.discard(url)
        self.visited.add(url)

    @property
    def full(self) -> bool:
        return len(self.visited) >= self.max_pages

    @property
    def exhausted(self) -> bool:
        return not self.pending or self.full

    def progress_percent(self) -> float:
        total = len(self.visited) + len(self.pending)
        return len(self.visited) / max(total, 1) * 100
