"""
Runtime settings, read from the environment (and .env via python-dotenv).

    GEMINI_API_KEY      upstream credential; empty disables chat
    CHAT_MODEL          model name           (gemini-2.0-flash)
    CHAT_BASE_URL       OpenAI-compatible endpoint
    CHAT_MAX_DURATION   seconds per chat request (60)
    PROGRAMS_FILE       snapshot path        (data/programs.json)
    PAGE_SIZE           listing page size    (24, at least 1)
    LOG_DIR             log directory        (logs/)
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from listing.catalog import PROGRAMS_FILE
from listing.engine import PAGE_SIZE
from relay.chat import MAX_DURATION
from relay.client import DEFAULT_BASE_URL, DEFAULT_MODEL

ROOT_DIR = Path(__file__).parent.parent


@dataclass(frozen=True)
class Settings:
    api_key: str = ""
    chat_model: str = DEFAULT_MODEL
    chat_base_url: str = DEFAULT_BASE_URL
    chat_max_duration: float = MAX_DURATION
    programs_file: Path = PROGRAMS_FILE
    page_size: int = PAGE_SIZE
    log_dir: Path = ROOT_DIR / "logs"

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ValueError(f"PAGE_SIZE must be at least 1, got {self.page_size}")
        if self.chat_max_duration <= 0:
            raise ValueError(f"CHAT_MAX_DURATION must be positive, got {self.chat_max_duration}")

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            api_key=os.getenv("GEMINI_API_KEY", ""),
            chat_model=os.getenv("CHAT_MODEL", DEFAULT_MODEL),
            chat_base_url=os.getenv("CHAT_BASE_URL", DEFAULT_BASE_URL),
            chat_max_duration=float(os.getenv("CHAT_MAX_DURATION", MAX_DURATION)),
            programs_file=Path(os.getenv("PROGRAMS_FILE", PROGRAMS_FILE)),
            page_size=int(os.getenv("PAGE_SIZE", PAGE_SIZE)),
            log_dir=Path(os.getenv("LOG_DIR", ROOT_DIR / "logs")),
        )
