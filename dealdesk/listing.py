"""Sort, page, and selection state for the deal table.

The controller never sorts or slices records itself. It turns user clicks into
a ``PageRequest`` for the record store, which returns one pre-sorted page and
the total count.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field

from dealdesk.enums import DealOutcome, DealStage, SortColumn, SortDirection

PAGE_SIZE = 50
DEFAULT_SORT_COLUMN = SortColumn.created_at
DEFAULT_SORT_DIRECTION = SortDirection.desc
# direction a column gets when it becomes the active sort column
NEW_COLUMN_DIRECTION = SortDirection.desc


class PageOutOfRange(ValueError):
    """Navigation past the first or last page; the controls are disabled there."""


@dataclass(frozen=True)
class DealFilters:
    search: str | None = None
    stage: DealStage | None = None
    sector: str | None = None
    outcome: DealOutcome | None = None


@dataclass(frozen=True)
class PageRequest:
    sort_column: SortColumn
    sort_direction: SortDirection
    page: int
    page_size: int
    filters: DealFilters


def page_count(total: int, page_size: int) -> int:
    return max(1, math.ceil(total / page_size))


@dataclass
class DealListController:
    page_size: int = PAGE_SIZE
    sort_column: SortColumn = DEFAULT_SORT_COLUMN
    sort_direction: SortDirection = DEFAULT_SORT_DIRECTION
    page: int = 1
    total: int = 0
    filters: DealFilters = field(default_factory=DealFilters)
    selected: set[int] = field(default_factory=set)
    # last fetch failed, so total is a placeholder rather than the store's count
    load_failed: bool = False

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ValueError("page_size must be positive")

    # -- sorting ----------------------------------------------------------

    def toggle_sort(self, column: SortColumn | str) -> PageRequest:
        column = SortColumn(column)
        if column == self.sort_column:
            self.sort_direction = self.sort_direction.flipped()
        else:
            self.sort_column = column
            self.sort_direction = NEW_COLUMN_DIRECTION
        return self.request()

    # -- paging -----------------------------------------------------------

    @property
    def page_count(self) -> int:
        return page_count(self.total, self.page_size)

    @property
    def can_go_back(self) -> bool:
        return self.page > 1

    @property
    def can_go_forward(self) -> bool:
        return self.page < self.page_count

    def go_to(self, page: int) -> PageRequest:
        if page < 1 or page > self.page_count:
            raise PageOutOfRange(f"Page {page} outside 1-{self.page_count}")
        self.page = page
        return self.request()

    def next_page(self) -> PageRequest:
        return self.go_to(self.page + 1)

    def previous_page(self) -> PageRequest:
        return self.go_to(self.page - 1)

    def display_range(self) -> tuple[int, int]:
        start = (self.page - 1) * self.page_size + 1
        end = min(self.page * self.page_size, self.total)
        return start, end

    def range_label(self) -> str:
        if self.total <= 0:
            return "No deals"
        start, end = self.display_range()
        return f"{start}–{end} of {self.total:,} deals"

    def page_label(self) -> str:
        return f"Page {self.page} of {self.page_count}"

    def apply_total(self, total: int, failed: bool = False) -> None:
        """Record the total count the store reported for the last request."""
        self.total = max(0, total)
        self.load_failed = failed

    # -- filters ----------------------------------------------------------

    def set_filters(self, filters: DealFilters) -> PageRequest:
        self.filters = filters
        self.page = 1
        return self.request()

    # -- selection --------------------------------------------------------

    def toggle_select(self, deal_id: int) -> bool:
        """Flip selection for a row; returns whether it is now selected."""
        if deal_id in self.selected:
            self.selected.discard(deal_id)
            return False
        self.selected.add(deal_id)
        return True

    def clear_selection(self) -> None:
        self.selected.clear()

    def request(self) -> PageRequest:
        return PageRequest(
            sort_column=self.sort_column,
            sort_direction=self.sort_direction,
            page=self.page,
            page_size=self.page_size,
            filters=self.filters,
        )
