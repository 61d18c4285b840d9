from __future__ import annotations

import math
import os
from dataclasses import dataclass
from pathlib import Path

STRATEGY_EMBEDDING = "embedding"
STRATEGY_CATALOG_PROMPT = "catalog_prompt"


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if math.isfinite(value) and value > 0 else default


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class MatchConfig:
    strategy: str = STRATEGY_EMBEDDING
    top_k: int = 3
    max_concurrency: int = 8
    recent_photo_limit: int = 200
    request_timeout_seconds: float = 15.0
    match_timeout_seconds: float = 60.0
    db_path: Path = Path("data/stocktake.db")

    @classmethod
    def from_env(cls) -> "MatchConfig":
        strategy = os.getenv("MATCH_STRATEGY", STRATEGY_EMBEDDING).strip().lower()
        if strategy not in {STRATEGY_EMBEDDING, STRATEGY_CATALOG_PROMPT}:
            strategy = STRATEGY_EMBEDDING
        return cls(
            strategy=strategy,
            max_concurrency=env_int("MATCH_MAX_CONCURRENCY", 8),
            recent_photo_limit=env_int("MATCH_RECENT_PHOTO_LIMIT", 200),
            request_timeout_seconds=env_float("OPENAI_REQUEST_TIMEOUT_SECONDS", 15.0),
            match_timeout_seconds=env_float("MATCH_TIMEOUT_SECONDS", 60.0),
            db_path=Path(os.getenv("STOCKTAKE_DB_PATH", "data/stocktake.db")),
        )
