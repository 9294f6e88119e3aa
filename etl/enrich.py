"""
Enrichment job: re-verifies every program through the LLM and rewrites
the snapshot (data/programs.json unless PROGRAMS_FILE says otherwise).

Merge strategy:
  - the stored record is the base
  - a field from the model replaces it only when non-empty
    (lists: non-empty list; booleans: not null)
  - lastVerified is always set to today
  - the merged record must validate as a Program, otherwise it is discarded

Best-effort: a record that fails (API error, no JSON, invalid result) keeps its
stored values except lastVerified, a warning is logged, and the run continues.

Progress is written every SAVE_EVERY records; the job pauses BATCH_DELAY
seconds after every BATCH_SIZE records to stay under rate limits.

    python etl/enrich.py
"""

import json
import logging
import re
import sys
import time
from collections.abc import Callable
from datetime import date
from pathlib import Path
from typing import Any

from openai import OpenAI
from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.settings import Settings
from listing.models import Program

BATCH_SIZE  = 10
BATCH_DELAY = 2.0   # seconds
SAVE_EVERY  = 50

log = logging.getLogger(__name__)

Record = dict[str, Any]

PROMPT = """You are a medical education data researcher. Look up this US Internal Medicine observership / clinical experience program:

Program Name: "{name}"
Current State: {state}

Provide ONLY factual, publicly available information. Return a JSON object with these fields (use null when the information is not publicly available):
{{
  "fee": "specific fee such as $500/week or $2000/month, or null",
  "contact": {{
    "email": "coordinator email or null",
    "phone": "phone number or null",
    "website": "official program URL or null",
    "coordinatorName": "coordinator name or null"
  }},
  "eligibility": {{
    "usmleSteps": ["Step 1", "Step 2 CK"],
    "visaTypes": ["J1", "H1B"],
    "graduationCutoff": "Within X years or null",
    "clinicalExperience": "required/preferred/not required",
    "additionalNotes": "specific notes about IMG eligibility"
  }},
  "duration": "X-Y weeks or months",
  "applicationDeadline": "Rolling admissions or a specific date",
  "acceptingApplications": true or false,
  "lor": true or false,
  "description": "2-3 sentence description of the program and what IMGs can expect"
}}

IMPORTANT:
- If the fee is unknown, return "Contact program for fee details"
- Be conservative: only return information you are confident about
- For acceptingApplications, return true unless you specifically know they are closed
- Return ONLY the JSON object, no other text"""

TEXT_FIELDS        = ("fee", "duration", "applicationDeadline", "description")
BOOL_FIELDS        = ("acceptingApplications", "lor")
CONTACT_FIELDS     = ("email", "phone", "website", "coordinatorName")
ELIGIBILITY_TEXT   = ("graduationCutoff", "clinicalExperience", "additionalNotes")
ELIGIBILITY_LISTS  = ("usmleSteps", "visaTypes")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def load(path: Path) -> list[Record]:
    return json.loads(path.read_text(encoding="utf-8"))


def save(path: Path, programs: list[Record]) -> None:
    path.write_text(json.dumps(programs, indent=2, ensure_ascii=False), encoding="utf-8")


def extract_json(text: str) -> dict | None:
    """Pull the outermost {...} block out of a model reply."""
    match = re.search(r"\{[\s\S]*\}", text)
    if not match:
        return None
    data = json.loads(match.group(0))
    return data if isinstance(data, dict) else None


def _section(data: dict, key: str) -> dict:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


# ---------------------------------------------------------------------------
# Core merge
# ---------------------------------------------------------------------------

def merge_enrichment(program: Record, data: dict, today: str) -> Record:
    """
    Overlay model output onto a stored record.

    Empty/null values never overwrite stored ones. The result is validated
    as a Program; ValidationError propagates to the caller.
    """
    merged = dict(program)
    for field in TEXT_FIELDS:
        if data.get(field):
            merged[field] = data[field]
    for field in BOOL_FIELDS:
        if isinstance(data.get(field), bool):
            merged[field] = data[field]

    contact = dict(program.get("contact") or {})
    for field, value in _section(data, "contact").items():
        if field in CONTACT_FIELDS and value:
            contact[field] = value
    merged["contact"] = contact

    eligibility = dict(program.get("eligibility") or {})
    new_elig = _section(data, "eligibility")
    for field in ELIGIBILITY_TEXT:
        if new_elig.get(field):
            eligibility[field] = new_elig[field]
    for field in ELIGIBILITY_LISTS:
        if isinstance(new_elig.get(field), list) and new_elig[field]:
            eligibility[field] = new_elig[field]
    merged["eligibility"] = eligibility

    merged["lastVerified"] = today
    return Program.model_validate(merged).to_json()


def enrich_program(program: Record, ask: Callable[[str], str], today: str) -> tuple[Record, bool]:
    """Return (record, changed). On any failure only lastVerified moves."""
    prompt = PROMPT.format(name=program.get("name", ""), state=program.get("state", ""))
    try:
        data = extract_json(ask(prompt))
        if data is None:
            log.warning("No JSON in reply for %s", program.get("name"))
            return {**program, "lastVerified": today}, False
        return merge_enrichment(program, data, today), True
    except ValidationError as exc:
        log.warning("Rejected enrichment for %s: %d invalid field(s)", program.get("name"), exc.error_count())
    except Exception as exc:  # one failing record never aborts the batch
        log.warning("Could not enrich %s: %s", program.get("name"), exc)
    return {**program, "lastVerified": today}, False


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def make_ask(client: OpenAI, model: str) -> Callable[[str], str]:
    def ask(prompt: str) -> str:
        completion = client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0.2,
        )
        return completion.choices[0].message.content or ""
    return ask


def run(
    path: Path | None = None,
    ask: Callable[[str], str] | None = None,
    today: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[Record]:
    """
    Enrich every record in `path` (the configured programs file by default)
    and write the result back. Returns the records.
    """
    settings = Settings.from_env()
    path = path or settings.programs_file
    if ask is None:
        if not settings.api_key:
            raise RuntimeError("GEMINI_API_KEY not set")
        client = OpenAI(api_key=settings.api_key, base_url=settings.chat_base_url)
        ask = make_ask(client, settings.chat_model)
    today = today or date.today().isoformat()

    programs = load(path)
    log.info("Starting enrichment for %d programs…", len(programs))
    updated: list[Record] = []
    changed = 0

    for i, program in enumerate(programs):
        log.info("[%d/%d] %s", i + 1, len(programs), program.get("name"))
        record, was_changed = enrich_program(program, ask, today)
        updated.append(record)
        changed += was_changed

        if (i + 1) % SAVE_EVERY == 0:
            save(path, updated + programs[i + 1:])
            log.info("  Saved progress at %d programs.", i + 1)

        if (i + 1) % BATCH_SIZE == 0:
            sleep(BATCH_DELAY)

    save(path, updated)
    log.info("Enrichment complete: %d/%d programs enriched → %s", changed, len(programs), path.name)
    return updated


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(message)s")
    try:
        run()
    except RuntimeError as exc:
        log.error("%s", exc)
        sys.exit(1)
