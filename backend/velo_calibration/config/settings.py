"""Application-wide configuration loaded from environment variables."""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Redis
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")

# ── Calibration Settings (defaults for the settings store) ──────────────

ENABLE_ESTIMATE_CALIBRATION: bool = _env_flag("ENABLE_ESTIMATE_CALIBRATION", "true")
ESTIMATION_REQUIRE_APPROVAL: bool = _env_flag("ESTIMATION_REQUIRE_APPROVAL", "true")
ESTIMATION_APPROVAL_THRESHOLD: float = float(
    os.getenv("ESTIMATION_APPROVAL_THRESHOLD", "1.35")
)
SHOW_PERSONAL_CALIBRATION: bool = _env_flag("SHOW_PERSONAL_CALIBRATION", "true")

# "chronological" sorts each user's history by completion time before
# windowing; "input" keeps the task store's own ordering.
CALIBRATION_WINDOW_ORDER: str = os.getenv("CALIBRATION_WINDOW_ORDER", "chronological")

# ── Calibration Engine Constants ────────────────────────────────────────

MIN_SAMPLES: int = 8              # below this the blended factor is forced to 1
CONTEXT_MIN_SAMPLES: int = 5      # project/stage/tag partitions smaller than this are skipped
WINDOW_TASKS: int = 40            # most recent records per profile
MIN_RATIO: float = 0.5
MAX_RATIO: float = 2.5
RECENCY_HORIZON_DAYS: float = 180.0
MIN_RECENCY_WEIGHT: float = 0.2
ROUNDING_STEP_MINUTES: int = 15

# ── Agent Configuration ──────────────────────────────────────────────────

CALIBRATION_AGENT_SEED: str = os.getenv(
    "CALIBRATION_AGENT_SEED", "velo-calibration-agent-seed-v1"
)
CALIBRATION_AGENT_PORT: int = int(os.getenv("CALIBRATION_AGENT_PORT", "8001"))

# Set to "agentverse" to deploy on Agentverse (uses mailbox, no local endpoint).
# Set to "local" (default) for local dev with localhost endpoints.
AGENT_DEPLOY_MODE: str = os.getenv("AGENT_DEPLOY_MODE", "local")
AGENT_ENDPOINT_BASE: str = os.getenv("AGENT_ENDPOINT_BASE", "http://localhost")

# ── Server Configuration ─────────────────────────────────────────────────

SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
