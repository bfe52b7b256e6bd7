"""
Engine configuration parameters for roundbid.

Defines the round timeline, claim escalation windows and operational
limits. Values can be overridden through ROUNDBID_* environment variables
or a .env file.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "ROUNDBID_"


@dataclass
class EngineConfig:
    """Engine-wide configuration parameters (durations in seconds)"""

    # Round timeline
    round_length: int = 15 * 60  # Each bidding round lasts 15 minutes
    total_rounds: int = 4
    early_finish_threshold: int = 3  # Round-1 bidders at or below this end the auction

    # Admin cancellation
    cancel_window: int = 12 * 60  # Live auctions cancellable up to 12 minutes in
    stale_safety_margin: int = 60  # Window shrinks by this much on a stale clock

    # Prize claim escalation
    claim_window: int = 15 * 60
    winner_ranks: int = 3
    banner_visibility: int = 45 * 60  # Presentation only, not claim logic

    # Clock synchronization
    clock_sync_interval: int = 60
    time_source_url: Optional[str] = None
    time_source_timeout: float = 5.0

    # Background sweep of claim queues
    sweep_interval: int = 30

    # Logging
    log_level: str = "WARNING"  # Console level; --debug forces DEBUG and a log file

    # Paths
    data_dir: Path = Path("data")
    log_dir: Path = Path("logs")

    def ensure_directories(self):
        """Create necessary directories"""
        self.data_dir.mkdir(exist_ok=True, parents=True)
        self.log_dir.mkdir(exist_ok=True, parents=True)


def _coerce(raw: str, default):
    """Convert an environment string to the type of the default value."""
    if isinstance(default, bool):
        return raw.lower() in {"1", "true", "yes", "on"}
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, Path):
        return Path(raw)
    return raw


def load_config(env_file: Optional[str] = None) -> EngineConfig:
    """
    Load configuration from the environment.

    Args:
        env_file: Optional path to a .env file. When omitted, a .env in
            the working directory is used if present.

    Returns:
        EngineConfig instance
    """
    load_dotenv(env_file)

    defaults = EngineConfig()
    overrides = {}
    for f in fields(EngineConfig):
        raw = os.getenv(ENV_PREFIX + f.name.upper())
        if raw is None or raw == "":
            continue
        current = getattr(defaults, f.name)
        overrides[f.name] = _coerce(raw, current) if current is not None else raw

    return EngineConfig(**overrides)
