"""Scroll anchoring for history prepends.

Older messages are inserted above the viewport, which pushes the visible
messages down by exactly the height of the inserted block. Adding that
height difference to the previous offset keeps the same messages on screen.
"""
from dataclasses import dataclass
from typing import Protocol


class ScrollViewport(Protocol):
    scroll_top: float

    @property
    def scroll_height(self) -> float: ...


def preserved_scroll_offset(prev_offset: float, old_height: float, new_height: float) -> float:
    """Offset that keeps the previously visible content anchored."""
    return prev_offset + (new_height - old_height)


@dataclass(frozen=True)
class ScrollAnchor:
    """Scroll position captured before ``load_older``."""
    offset: float
    scroll_height: float

    @classmethod
    def capture(cls, viewport: ScrollViewport) -> "ScrollAnchor":
        return cls(offset=viewport.scroll_top, scroll_height=viewport.scroll_height)

    def offset_for(self, new_height: float) -> float:
        return preserved_scroll_offset(self.offset, self.scroll_height, new_height)

    def restore(self, viewport: ScrollViewport) -> float:
        """Apply the anchored offset once the viewport has re-rendered."""
        viewport.scroll_top = self.offset_for(viewport.scroll_height)
        return viewport.scroll_top
