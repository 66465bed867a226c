"""
Decision Engine Configuration
Single source of truth for environment-driven settings
"""
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# =========================
# Database
# =========================

DATABASE_URL = os.getenv("DATABASE_URL")

# =========================
# Logging
# =========================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = _env_bool("LOG_JSON", False)
LOG_FILE = os.getenv("LOG_FILE") or None

# =========================
# Evaluation scheduler
# =========================

EVALUATION_STALE_HOURS = float(os.getenv("EVALUATION_STALE_HOURS", "24"))
EVALUATION_INTERVAL_MINUTES = int(os.getenv("EVALUATION_INTERVAL_MINUTES", "60"))
EVALUATION_SCHEDULER_ENABLED = _env_bool("EVALUATION_SCHEDULER_ENABLED", True)

# =========================
# Conflict detection oracle
# =========================

CONFLICT_ORACLE_URL = os.getenv("CONFLICT_ORACLE_URL") or None
CONFLICT_ORACLE_TIMEOUT_SECONDS = float(os.getenv("CONFLICT_ORACLE_TIMEOUT_SECONDS", "10"))

ASSUMPTION_CONFLICT_MIN_CONFIDENCE = float(os.getenv("ASSUMPTION_CONFLICT_MIN_CONFIDENCE", "0.7"))
DECISION_CONFLICT_MIN_CONFIDENCE = float(os.getenv("DECISION_CONFLICT_MIN_CONFIDENCE", "0.65"))

# =========================
# HTTP
# =========================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if origin.strip()
]
