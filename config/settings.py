"""
CASEFORGE - Battle Engine Configuration

Every tunable of the reveal engine lives here as a class constant that can be
overridden through the environment (or a local .env file):

    PREMIUM_THRESHOLD=1.5
    PRIMARY_SPIN_DURATION=6.0
    TIEBREAK_MAX_ATTEMPTS=10

Usage:
    from config.settings import BattleConfig, configure_logging
    configure_logging()
    duration = BattleConfig.PRIMARY_SPIN_DURATION
"""

import logging
import os

from dotenv import load_dotenv

load_dotenv()


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger("caseforge.config").warning(
            f"Ignoring non-numeric {key}={raw!r}, using {default}")
        return default


def _env_int(key: str, default: int) -> int:
    return int(_env_float(key, default))


# ============================================================
# ENGINE CONSTANTS
#
# Ticket space is fixed: 1% drop chance == 1,000 tickets. Everything
# else is presentation or policy and may be tuned per deployment.
# ============================================================

class BattleConfig:

    # --- Lottery ---
    TICKET_SPACE = 100_000
    CHANCE_SUM_TOLERANCE = 0.5            # percent points

    # --- Reel ---
    PREMIUM_THRESHOLD = _env_float("PREMIUM_THRESHOLD", 2.0)   # drop_chance <= this is premium
    SECONDARY_REPEATS = _env_int("SECONDARY_REPEATS", 8)
    RPS_REEL_REPEATS = _env_int("RPS_REEL_REPEATS", 8)

    # --- Layout (px, defaults used when the host cannot measure) ---
    ITEM_SIZE = _env_float("ITEM_SIZE", 100.0)
    VIEWPORT_SIZE = _env_float("VIEWPORT_SIZE", 380.0)
    BASE_ROTATIONS = _env_float("BASE_ROTATIONS", 1.5)

    # --- Timing (seconds) ---
    COUNTDOWN_SECONDS = _env_float("COUNTDOWN_SECONDS", 3.0)
    PRIMARY_SPIN_DURATION = _env_float("PRIMARY_SPIN_DURATION", 5.5)
    SECONDARY_SPIN_DURATION = _env_float("SECONDARY_SPIN_DURATION", 2.5)
    SECONDARY_REVEAL_DELAY = _env_float("SECONDARY_REVEAL_DELAY", 1.0)
    SECONDARY_REVEAL_TIMEOUT = _env_float("SECONDARY_REVEAL_TIMEOUT", 10.0)
    CASE_REVEAL_DELAY = _env_float("CASE_REVEAL_DELAY", 1.5)      # pause before the next case
    CASE_SECONDARY_DELAY = _env_float("CASE_SECONDARY_DELAY", 2.0)  # same, after a gold spin
    TIEBREAK_SPIN_DURATION = _env_float("TIEBREAK_SPIN_DURATION", 4.0)
    FRAME_INTERVAL = _env_float("FRAME_INTERVAL", 1.0 / 60.0)

    # --- Tick pattern ---
    TICK_MIN_INTERVAL = _env_float("TICK_MIN_INTERVAL", 0.03)
    TICK_MAX_INTERVAL = _env_float("TICK_MAX_INTERVAL", 0.35)
    TICK_SILENT_TAIL = _env_float("TICK_SILENT_TAIL", 0.05)    # fraction of duration

    # --- Tiebreak ---
    TIEBREAK_MAX_ATTEMPTS = _env_int("TIEBREAK_MAX_ATTEMPTS", 10)
    TIEBREAK_RETRY_DELAY = _env_float("TIEBREAK_RETRY_DELAY", 1.5)
    TIEBREAK_FALLBACK_SIDE = os.getenv("TIEBREAK_FALLBACK_SIDE", "A").strip().upper()
    RPS_WEIGHTS = {
        "rock":     35.4,
        "paper":    29.6,
        "scissors": 35.0,
    }

    # --- Logging ---
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def snapshot(cls) -> dict:
        """Return every public constant as a plain dict (for audit records)."""
        return {
            k: (dict(v) if isinstance(v, dict) else v)
            for k, v in vars(cls).items()
            if k.isupper()
        }


# ============================================================
# Logging
# ============================================================

def configure_logging(level: str = None) -> logging.Logger:
    """Attach the project stream handler to the ``caseforge`` logger once."""
    logger = logging.getLogger("caseforge")
    if not logger.handlers:
        _h = logging.StreamHandler()
        _h.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(message)s", datefmt="%H:%M:%S"))
        logger.addHandler(_h)
    logger.setLevel((level or BattleConfig.LOG_LEVEL).upper())
    return logger
