import itertools

import pytest

from listing.engine import (
    ListingView,
    ProgramFilters,
    apply_predicates,
    collation_key,
    filter_programs,
    page_count,
    paginate,
    predicates,
    query,
    sort_programs,
)
from conftest import make_program


def ids(programs):
    return [p.id for p in programs]


def expected(condition):
    """Ids of fixture records whose index satisfies `condition`."""
    return [f"p{i:02d}" for i in range(1, 31) if condition(i)]


class TestFilters:
    """Each filter field on its own."""

    def test_no_filters_returns_everything_in_order(self, programs):
        """No active filter keeps every record in collection order."""
        assert ids(filter_programs(programs, ProgramFilters())) == ids(programs)

    def test_all_sentinel_means_no_constraint(self, programs):
        """'All' on the select-box fields adds no predicate."""
        filters = ProgramFilters(state="All", usmle_step="All", visa="All")
        assert len(filter_programs(programs, filters)) == 30

    def test_search_is_case_insensitive_on_name(self, programs):
        """Upper-case search text still matches lower-case names."""
        result = filter_programs(programs, ProgramFilters(search="ALBANY"))
        assert ids(result) == ["p08", "p18"]

    def test_search_matches_state_name(self, programs):
        """Search text is matched against the state name too."""
        result = filter_programs(programs, ProgramFilters(search="new york"))
        assert ids(result) == ["p03", "p08", "p13", "p18", "p23"]

    def test_search_matches_hospital_and_city(self, programs):
        """Hospital and city are searched."""
        assert ids(filter_programs(programs, ProgramFilters(search="general hospital 07"))) == ["p07"]
        assert ids(filter_programs(programs, ProgramFilters(search="city 11"))) == ["p11"]

    def test_search_ignores_tags(self, programs):
        """Tags are not part of the searched text."""
        assert filter_programs(programs, ProgramFilters(search="tag-only-term")) == []

    def test_whitespace_search_is_literal(self, programs):
        """Blank search text is still a substring constraint, not 'no search'."""
        assert len(predicates(ProgramFilters(search=" "))) == 1
        assert len(filter_programs(programs, ProgramFilters(search=" "))) == 30
        assert filter_programs(programs, ProgramFilters(search="  ")) == []

    def test_state_is_exact_match(self, programs):
        """State compares exactly, case included."""
        assert len(filter_programs(programs, ProgramFilters(state="New York"))) == 5
        assert filter_programs(programs, ProgramFilters(state="new york")) == []

    def test_unknown_state_yields_nothing(self, programs):
        """A state no record has gives an empty result, not an error."""
        assert filter_programs(programs, ProgramFilters(state="Atlantis")) == []

    @pytest.mark.parametrize(
        "step, condition",
        [
            ("Step 1", lambda i: i % 4 in (0, 1)),
            ("Step 2 CK", lambda i: i % 4 in (1, 2)),
            ("Step 1, Step 2 CK", lambda i: i % 4 == 1),
        ],
    )
    def test_usmle_matches_joined_steps(self, programs, step, condition):
        """USMLE option is a substring of the comma-joined step list."""
        result = filter_programs(programs, ProgramFilters(usmle_step=step))
        assert ids(result) == expected(condition)

    @pytest.mark.parametrize(
        "visa, condition",
        [
            # index % 5 == 2 lists "Any valid US visa", which matches every code
            ("J1", lambda i: i % 5 in (0, 1, 2)),
            ("H1B", lambda i: i % 5 in (1, 2)),
            ("EAD", lambda i: i % 5 in (2, 4)),
            ("O1", lambda i: i % 5 == 2),
        ],
    )
    def test_visa_substring_or_any_visa(self, programs, visa, condition):
        """Visa code matches a listed visa or the 'any visa' entry."""
        result = filter_programs(programs, ProgramFilters(visa=visa))
        assert ids(result) == expected(condition)

    def test_lor_exact_boolean(self, programs):
        """LOR filter keeps exactly the records with that flag."""
        assert ids(filter_programs(programs, ProgramFilters(lor=True))) == expected(lambda i: i % 3 == 0)
        assert ids(filter_programs(programs, ProgramFilters(lor=False))) == expected(lambda i: i % 3 != 0)

    def test_accepting_exact_boolean(self, programs):
        """Accepting and not-accepting partition the collection."""
        accepting = filter_programs(programs, ProgramFilters(accepting=True))
        closed = filter_programs(programs, ProgramFilters(accepting=False))
        assert all(p.accepting_applications for p in accepting)
        assert not any(p.accepting_applications for p in closed)
        assert len(accepting) + len(closed) == 30


FILTER_COMBOS = [
    ProgramFilters(state="New York", accepting=True),
    ProgramFilters(search="program", usmle_step="Step 1", visa="J1", lor=False),
    ProgramFilters(visa="EAD", lor=True),
    ProgramFilters(search="observership", usmle_step="Step 2 CK", accepting=False),
    ProgramFilters(state="Atlantis", visa="J1"),
]


class TestFilterProperties:
    """Soundness, completeness and purity of the predicate chain."""

    @pytest.mark.parametrize("filters", FILTER_COMBOS)
    def test_included_pass_all_and_excluded_fail_one(self, programs, filters):
        """Kept records pass every predicate; dropped ones fail at least one."""
        checks = predicates(filters)
        result = filter_programs(programs, filters)
        kept = set(ids(result))

        assert kept <= set(ids(programs))
        for p in programs:
            if p.id in kept:
                assert all(check(p) for check in checks)
            else:
                assert not all(check(p) for check in checks)

    def test_predicate_order_does_not_matter(self, programs):
        """Every permutation of the predicates gives the same result."""
        checks = predicates(FILTER_COMBOS[1])
        assert len(checks) == 4
        results = {tuple(ids(apply_predicates(programs, order))) for order in itertools.permutations(checks)}
        assert len(results) == 1

    def test_filtering_is_idempotent_and_pure(self, programs):
        """Repeating a query gives the same page and leaves the source alone."""
        snapshot = list(programs)
        filters = FILTER_COMBOS[0]
        first = query(programs, filters)
        second = query(programs, filters)
        assert first == second
        assert programs == snapshot


class TestSorting:
    """Stable, locale-aware ordering."""

    def test_base_letters_decide_first(self):
        """Case and accents never outrank the letters themselves."""
        assert collation_key("Émory") < collation_key("emz")
        assert collation_key("ALBANY") < collation_key("albz")

    def test_lowercase_and_unaccented_break_ties(self):
        """Equal letters: unaccented before accented, lowercase before uppercase."""
        names = ["Albany Medical Observership", "Émory", "albany Medical Observership", "Emory", "emory"]
        programs = [make_program(f"x{i}", name=name) for i, name in enumerate(names)]
        assert [p.name for p in sort_programs(programs, "name")] == [
            "albany Medical Observership",
            "Albany Medical Observership",
            "emory",
            "Emory",
            "Émory",
        ]

    def test_only_identical_names_share_a_key(self):
        """Names differing only by case or accent get distinct keys."""
        assert collation_key("Emory") != collation_key("emory")
        assert collation_key("Emory") != collation_key("Émory")
        assert collation_key("Emory") == collation_key("Emory")

    def test_sort_by_name(self, programs):
        """Name sort follows the collation key; lowercase 'albany' precedes 'Albany'."""
        result = sort_programs(programs, "name")
        names = [collation_key(p.name) for p in result]
        assert names == sorted(names)
        assert ids(result).index("p18") == ids(result).index("p08") - 1

    def test_equal_names_keep_source_order(self):
        """Identical names stay in collection order."""
        programs = [make_program(pid, name="Same Name") for pid in ("b", "a", "c")]
        assert ids(sort_programs(programs, "name")) == ["b", "a", "c"]

    def test_sort_by_state(self, programs):
        """State sort keeps ties in collection order."""
        result = sort_programs(programs, "state")
        states = [p.state for p in result]
        assert states == sorted(states)
        assert ids(r for r in result if r.state == "New York") == ["p03", "p08", "p13", "p18", "p23"]

    def test_accepting_first_is_stable(self, programs):
        """Accepting programs come first, each group in collection order."""
        result = sort_programs(programs, "accepting")
        flags = [p.accepting_applications for p in result]
        assert flags == sorted(flags, reverse=True)
        assert ids(r for r in result if r.accepting_applications) == ids(
            p for p in programs if p.accepting_applications
        )

    def test_unknown_sort_leaves_order(self, programs):
        """An unrecognised sort key returns the input order."""
        assert ids(sort_programs(programs, "fee")) == ids(programs)


class TestPagination:
    """Fixed page size, 1-based, empty outside range."""

    def test_page_count(self):
        """Page count rounds up."""
        assert page_count(0) == 0
        assert page_count(24) == 1
        assert page_count(25) == 2

    def test_pages_concatenate_to_full_sorted_set(self, programs):
        """Walking every page yields the full sorted set once."""
        result = query(programs, sort="name", page=1)
        assert result.total == 30
        assert result.total_pages == 2

        pages = [query(programs, sort="name", page=n).programs for n in range(1, result.total_pages + 1)]
        assert [len(p) for p in pages] == [24, 6]
        flat = ids(itertools.chain.from_iterable(pages))
        assert flat == ids(sort_programs(programs, "name"))
        assert len(set(flat)) == 30

    @pytest.mark.parametrize("page", [0, -1, 3, 99])
    def test_out_of_range_page_is_empty(self, programs, page):
        """Pages outside 1..total_pages are empty but report the true total."""
        result = query(programs, page=page)
        assert result.programs == []
        assert result.total == 30

    def test_empty_result_has_no_pages(self, programs):
        """No matches means zero pages."""
        result = query(programs, ProgramFilters(state="Atlantis"))
        assert result.total == 0
        assert result.total_pages == 0
        assert result.programs == []

    def test_paginate_custom_size(self):
        """Page size other than the default slices correctly."""
        assert paginate(list(range(10)), 2, page_size=4) == [4, 5, 6, 7]
        assert paginate(list(range(10)), 3, page_size=4) == [8, 9]


class TestNewYorkScenario:
    """30 records, 5 in New York, 3 of those accepting."""

    def test_state_and_accepting_sorted_by_name(self, programs):
        """The three accepting New York programs, in name order."""
        result = query(programs, ProgramFilters(state="New York", accepting=True), sort="name")
        assert result.total == 3
        assert ids(result.programs) == ["p18", "p08", "p03"]


class TestListingView:
    """Browsing state transitions."""

    def test_filter_change_resets_page(self):
        """Changing a filter goes back to page 1."""
        view = ListingView().with_page(3).with_filters(state="New York")
        assert view.page == 1
        assert view.filters.state == "New York"

    def test_search_change_resets_page(self):
        """Search text counts as a filter."""
        view = ListingView().with_page(2).with_filters(search="albany")
        assert view.page == 1

    def test_sort_change_keeps_page(self):
        """Only filter changes go back to page 1."""
        view = ListingView().with_page(2).with_sort("state")
        assert view.page == 2
        assert view.sort == "state"

    def test_unchanged_filter_keeps_page(self):
        """Setting a filter to its current value is not a change."""
        view = ListingView().with_filters(state="Ohio").with_page(2)
        assert view.with_filters(state="Ohio").page == 2

    def test_reset_filters(self):
        """Reset clears every filter and returns to page 1."""
        view = ListingView().with_filters(lor=True, visa="J1").with_page(2).reset_filters()
        assert view.filters == ProgramFilters()
        assert view.page == 1

    def test_render(self, programs):
        """Rendering runs the view's query."""
        view = ListingView().with_filters(state="New York", accepting=True)
        assert ids(view.render(programs).programs) == ["p18", "p08", "p03"]
