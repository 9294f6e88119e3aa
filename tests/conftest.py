import asyncio

import pytest

from listing.catalog import ProgramCatalog
from listing.models import Program

OTHER_STATES = {"Ohio": "OH", "California": "CA", "Texas": "TX", "Illinois": "IL", "Florida": "FL"}

# index → (name, accepting). Two names differ only by case to exercise sort stability.
NEW_YORK = {
    3:  ("St. Luke's Observership", True),
    8:  ("Albany Medical Observership", True),
    13: ("Bronx Care Observership", False),
    18: ("albany Medical Observership", True),
    23: ("Queens Hospital Observership", False),
}

USMLE = [["Step 1"], ["Step 1", "Step 2 CK"], ["Step 2 CK"], []]
VISAS = [["J1"], ["H1B", "J1"], ["Any valid US visa"], ["F1"], ["EAD", "Green Card"]]


def make_program(program_id: str, **overrides) -> Program:
    """Build a Program from camelCase overrides on top of a minimal record."""
    data = {
        "id": program_id,
        "name": f"Program {program_id}",
        "hospital": "",
        "city": "",
        "state": "Ohio",
        "stateCode": "OH",
        "specialty": "Internal Medicine",
        "eligibility": {"usmleSteps": ["Step 1"], "visaTypes": ["J1"]},
        "contact": {"email": "", "phone": "", "website": "", "coordinatorName": ""},
        "acceptingApplications": True,
        "lor": False,
        "tags": [],
    }
    data.update(overrides)
    return Program.model_validate(data)


def build_programs() -> list[Program]:
    """30 records: 5 in New York (3 accepting), the rest spread over five states."""
    states = list(OTHER_STATES)
    programs = []
    for i in range(1, 31):
        if i in NEW_YORK:
            name, accepting = NEW_YORK[i]
            state, code = "New York", "NY"
        else:
            name = f"Program {i:02d}"
            state = states[i % len(states)]
            code = OTHER_STATES[state]
            accepting = i % 2 == 0
        programs.append(make_program(
            f"p{i:02d}",
            name=name,
            hospital=f"General Hospital {i:02d}",
            city=f"City {i:02d}",
            state=state,
            stateCode=code,
            specialty="Cardiology" if i % 7 == 0 else "Internal Medicine",
            acceptingApplications=accepting,
            lor=i % 3 == 0,
            eligibility={"usmleSteps": USMLE[i % 4], "visaTypes": VISAS[i % 5]},
            tags=["tag-only-term"] if i == 1 else [],
        ))
    return programs


@pytest.fixture
def programs():
    return build_programs()


@pytest.fixture
def catalog(programs):
    return ProgramCatalog(programs)


class FakeClient:
    """Upstream stand-in: streams `fragments`, optionally failing or stalling."""

    def __init__(self, fragments=(), fail_at=None, start_error=None, stall_at=None, trace=None):
        self.fragments   = list(fragments)
        self.fail_at     = fail_at
        self.start_error = start_error
        self.stall_at    = stall_at
        self.trace       = trace if trace is not None else []
        self.calls: list = []
        self.closed = False

    async def start_stream(self, history, message):
        self.calls.append((history, message))
        if self.start_error is not None:
            raise self.start_error
        return FakeFragments(self)


class FakeFragments:
    """Fragment stream of a FakeClient; yields to the event loop before each fragment."""

    def __init__(self, client):
        self.client = client
        self.index = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        client = self.client
        if client.closed or self.index >= len(client.fragments):
            raise StopAsyncIteration
        i = self.index
        self.index += 1
        await asyncio.sleep(0)
        if i == client.fail_at:
            raise RuntimeError("upstream connection reset")
        if i == client.stall_at:
            await asyncio.sleep(10)
        client.trace.append(client.fragments[i])
        return client.fragments[i]

    async def aclose(self):
        self.client.closed = True


@pytest.fixture
def fake_client():
    return FakeClient
