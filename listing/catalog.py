"""
Program catalog: the read-only snapshot the service browses.

Loaded once from data/programs.json (written by etl/enrich.py). Records
are validated into Program models at load; a duplicate id aborts the load.

Public API:
    ProgramCatalog.load(path)          → ProgramCatalog
    ProgramCatalog.get(program_id)     → Program | None
    ProgramCatalog.search(filters, sort, page, page_size) → ListingPage
    ProgramCatalog.states() / .specialties() / .stats() / .featured(limit)
"""

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from listing.engine import PAGE_SIZE, SORT_NAME, ListingPage, ProgramFilters, query
from listing.models import Program

DATA_DIR      = Path(__file__).parent.parent / "data"
PROGRAMS_FILE = DATA_DIR / "programs.json"

# Placeholder state used for nationwide/remote listings.
NATIONWIDE = "United States"

log = logging.getLogger(__name__)


class ProgramCatalog:
    def __init__(self, programs: Iterable[Program]):
        self.programs: tuple[Program, ...] = tuple(programs)
        self._by_id: dict[str, Program] = {}
        for p in self.programs:
            if p.id in self._by_id:
                raise ValueError(f"Duplicate program id: {p.id!r}")
            self._by_id[p.id] = p

    def __len__(self) -> int:
        return len(self.programs)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, program_id: str) -> Program | None:
        return self._by_id.get(program_id)

    def search(
        self,
        filters: ProgramFilters | None = None,
        sort: str = SORT_NAME,
        page: int = 1,
        page_size: int = PAGE_SIZE,
    ) -> ListingPage:
        return query(self.programs, filters, sort, page, page_size)

    def states(self) -> list[str]:
        """Distinct state names for the filter dropdown, nationwide entry excluded."""
        return sorted({p.state for p in self.programs} - {NATIONWIDE})

    def specialties(self) -> list[str]:
        return sorted({p.specialty for p in self.programs})

    def stats(self) -> dict[str, int]:
        return {
            "total":     len(self.programs),
            "states":    len({p.state_code for p in self.programs}),
            "accepting": sum(1 for p in self.programs if p.accepting_applications),
            "with_lor":  sum(1 for p in self.programs if p.lor),
        }

    def featured(self, limit: int = 6) -> list[Program]:
        """First `limit` programs currently taking applications, in snapshot order."""
        return [p for p in self.programs if p.accepting_applications][:limit]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, path: Path = PROGRAMS_FILE) -> "ProgramCatalog":
        if not path.exists():
            raise FileNotFoundError(f"{path.name} not found at {path}. Run etl/enrich.py or restore the snapshot.")
        raw = json.loads(path.read_text(encoding="utf-8"))
        catalog = cls(Program.model_validate(r) for r in raw)
        log.info("Loaded %d programs from %s", len(catalog), path.name)
        return catalog
