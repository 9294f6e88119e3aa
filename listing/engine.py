"""
Listing engine: filter → sort → paginate over the in-memory program list.

Every active filter becomes a predicate; a record is kept only if it passes
all of them, so the order predicates are applied in never changes the result.
Sorting uses Python's stable sort, so ties keep collection order and pages
are deterministic.

Public API:
    ProgramFilters(search, state, usmle_step, visa, lor, accepting)
    predicates(filters)                  → list[Predicate]
    filter_programs(programs, filters)   → list[Program]
    sort_programs(programs, sort)        → list[Program]
    paginate(items, page, page_size)     → list
    query(programs, filters, sort, page) → ListingPage
    ListingView                          browsing state with page-reset rules
"""

import math
import unicodedata
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace

from listing.models import ANY_VISA, Program

PAGE_SIZE = 24

# Select-box value the browsing UI sends for "no constraint".
ALL = "All"

SORT_NAME      = "name"
SORT_STATE     = "state"
SORT_ACCEPTING = "accepting"
SORT_KEYS      = (SORT_NAME, SORT_STATE, SORT_ACCEPTING)

USMLE_OPTIONS = (ALL, "Step 1", "Step 2 CK", "Step 1, Step 2 CK")
VISA_OPTIONS  = (ALL, "J1", "H1B", "F1", "O1", "EAD")

Predicate = Callable[[Program], bool]


# ---------------------------------------------------------------------------
# Filter specification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProgramFilters:
    search: str = ""
    state: str = ALL
    usmle_step: str = ALL
    visa: str = ALL
    lor: bool | None = None
    accepting: bool | None = None


def _is_set(value: str | None) -> bool:
    return bool(value) and value != ALL


def _matches_search(needle: str) -> Predicate:
    q = needle.lower()

    def check(p: Program) -> bool:
        return (
            q in p.name.lower()
            or q in p.city.lower()
            or q in p.state.lower()
            or q in p.hospital.lower()
        )
    return check


def _matches_state(state: str) -> Predicate:
    return lambda p: p.state == state


def _matches_usmle(step: str) -> Predicate:
    return lambda p: step in ", ".join(p.eligibility.usmle_steps)


def _matches_visa(visa: str) -> Predicate:
    def check(p: Program) -> bool:
        visas = p.eligibility.visa_types
        return any(visa in v for v in visas) or ANY_VISA in visas
    return check


def _matches_lor(flag: bool) -> Predicate:
    return lambda p: p.lor is flag


def _matches_accepting(flag: bool) -> Predicate:
    return lambda p: p.accepting_applications is flag


def predicates(filters: ProgramFilters) -> list[Predicate]:
    """Return one predicate per active filter field."""
    active: list[Predicate] = []
    if filters.search:
        active.append(_matches_search(filters.search))
    if _is_set(filters.state):
        active.append(_matches_state(filters.state))
    if _is_set(filters.usmle_step):
        active.append(_matches_usmle(filters.usmle_step))
    if _is_set(filters.visa):
        active.append(_matches_visa(filters.visa))
    if filters.lor is not None:
        active.append(_matches_lor(filters.lor))
    if filters.accepting is not None:
        active.append(_matches_accepting(filters.accepting))
    return active


def apply_predicates(programs: Iterable[Program], checks: Sequence[Predicate]) -> list[Program]:
    result = list(programs)
    for check in checks:
        result = [p for p in result if check(p)]
    return result


def filter_programs(programs: Iterable[Program], filters: ProgramFilters) -> list[Program]:
    return apply_predicates(programs, predicates(filters))


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------

def collation_key(text: str) -> tuple[str, str, str]:
    """
    Locale-style sort key, compared level by level.

    Base letters decide first, so "Émory" sorts beside "emory". Remaining
    ties go unaccented before accented, then lowercase before uppercase.
    Only strings with the same decomposed form share a key.
    """
    decomposed = unicodedata.normalize("NFKD", text)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return base.casefold(), decomposed.casefold(), decomposed.swapcase()


_SORTERS: dict[str, Callable[[Program], object]] = {
    SORT_NAME:      lambda p: collation_key(p.name),
    SORT_STATE:     lambda p: collation_key(p.state),
    SORT_ACCEPTING: lambda p: not p.accepting_applications,
}


def sort_programs(programs: Iterable[Program], sort: str = SORT_NAME) -> list[Program]:
    """
    Stable sort by one of SORT_KEYS.

    An unknown key leaves the order unchanged.
    """
    key = _SORTERS.get(sort)
    if key is None:
        return list(programs)
    return sorted(programs, key=key)


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

def page_count(total: int, page_size: int = PAGE_SIZE) -> int:
    return math.ceil(total / page_size)


def paginate(items: Sequence, page: int, page_size: int = PAGE_SIZE) -> list:
    """1-based page slice; out-of-range pages are empty."""
    if page < 1 or page > page_count(len(items), page_size):
        return []
    start = (page - 1) * page_size
    return list(items[start:start + page_size])


@dataclass(frozen=True)
class ListingPage:
    programs: list[Program]
    total: int
    page: int
    total_pages: int
    page_size: int = PAGE_SIZE


def query(
    programs: Iterable[Program],
    filters: ProgramFilters | None = None,
    sort: str = SORT_NAME,
    page: int = 1,
    page_size: int = PAGE_SIZE,
) -> ListingPage:
    """Filter, sort and slice one page. The source collection is not touched."""
    matched = sort_programs(filter_programs(programs, filters or ProgramFilters()), sort)
    return ListingPage(
        programs=paginate(matched, page, page_size),
        total=len(matched),
        page=page,
        total_pages=page_count(len(matched), page_size),
        page_size=page_size,
    )


# ---------------------------------------------------------------------------
# Browsing state
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ListingView:
    """
    What a browsing user currently looks at.

    Any filter change (search text included) jumps back to page 1. A sort
    change keeps the current page, as the directory UI always has.
    """
    filters: ProgramFilters = field(default_factory=ProgramFilters)
    sort: str = SORT_NAME
    page: int = 1

    def with_filters(self, **changes) -> "ListingView":
        filters = replace(self.filters, **changes)
        if filters == self.filters:
            return self
        return replace(self, filters=filters, page=1)

    def with_sort(self, sort: str) -> "ListingView":
        return replace(self, sort=sort)

    def with_page(self, page: int) -> "ListingView":
        return replace(self, page=page)

    def reset_filters(self) -> "ListingView":
        return replace(self, filters=ProgramFilters(), page=1)

    def render(self, programs: Iterable[Program], page_size: int = PAGE_SIZE) -> ListingPage:
        return query(programs, self.filters, self.sort, self.page, page_size)
