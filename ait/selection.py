"""Cursor over a list of pickable items (models, snippets, past chats)."""

from typing import Generic, Sequence, TypeVar

T = TypeVar("T")


class SelectionList(Generic[T]):
    """Items plus a highlighted index and the index last confirmed with `choose`."""

    def __init__(self, items: Sequence[T] = (), chosen: int | None = None):
        self.items: list[T] = list(items)
        self.selected: int | None = 0 if self.items else None
        self.chosen: int | None = chosen

    def __len__(self) -> int:
        return len(self.items)

    def replace(self, items: Sequence[T]):
        self.items = list(items)
        self.selected = 0 if self.items else None
        if self.chosen is not None and self.chosen >= len(self.items):
            self.chosen = None

    def select(self, index: int | None):
        if index is None or not self.items:
            self.selected = None
        else:
            self.selected = max(0, min(index, len(self.items) - 1))

    def select_none(self):
        self.selected = None

    def select_first(self):
        self.select(0)

    def select_last(self):
        self.select(len(self.items) - 1)

    def select_next(self):
        self.select(0 if self.selected is None else self.selected + 1)

    def select_previous(self):
        self.select(0 if self.selected is None else self.selected - 1)

    def current(self) -> T | None:
        if self.selected is None or not self.items:
            return None
        return self.items[self.selected]

    def choose(self) -> T | None:
        """Mark the highlighted item as chosen and return it."""
        item = self.current()
        if item is not None:
            self.chosen = self.selected
        return item

    def remove_selected(self) -> T | None:
        if self.selected is None or not self.items:
            return None
        item = self.items.pop(self.selected)
        if self.chosen is not None:
            if self.chosen == self.selected:
                self.chosen = None
            elif self.chosen > self.selected:
                self.chosen -= 1
        self.select(self.selected)
        return item
