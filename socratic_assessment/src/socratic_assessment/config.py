"""
Assessment Settings

Runtime configuration read from the environment (and `.env` files).
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()
load_dotenv('../.env')  # Also try parent directory

# Protocol constants
TOTAL_QUESTIONS = 5
START_DIFFICULTY = 3
MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AssessmentSettings:
    """Tunable knobs for the assessment engine and its generation client."""
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: Optional[str] = None
    retry_fallback_seconds: int = 60
    retry_max_attempts: int = 2
    max_retry_wait_seconds: int = 120
    turn_timeout_seconds: float = 180.0
    llm_final_feedback: bool = True
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])

    @classmethod
    def from_env(cls) -> "AssessmentSettings":
        origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            retry_fallback_seconds=int(os.getenv("SOCRATIC_RETRY_FALLBACK_SECONDS", "60")),
            retry_max_attempts=int(os.getenv("SOCRATIC_RETRY_MAX_ATTEMPTS", "2")),
            max_retry_wait_seconds=int(os.getenv("SOCRATIC_MAX_RETRY_WAIT_SECONDS", "120")),
            turn_timeout_seconds=float(os.getenv("SOCRATIC_TURN_TIMEOUT_SECONDS", "180")),
            llm_final_feedback=_env_bool("SOCRATIC_LLM_FINAL_FEEDBACK", True),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
