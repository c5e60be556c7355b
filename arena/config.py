"""Runtime configuration, with ARENA_* environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from arena.ratings import RatingConfig
from arena.scheduler import PhaseParams


@dataclass
class ArenaConfig:
    ratings: RatingConfig = field(default_factory=RatingConfig)
    phase: PhaseParams = field(default_factory=PhaseParams)
    data_dir: Path | None = None
    bootstrap_samples: int = 1000
    # Pseudo-wins added to both sides of every pair that met; 0 keeps the raw MLE.
    bt_smoothing: float = 0.0
    monte_carlo_trials: int = 50_000
    low_power: bool = False
    vote_retry_attempts: int = 3
    unlock_threshold: int = 0

    @property
    def votes_path(self) -> Path | None:
        return self.data_dir / "votes.jsonl" if self.data_dir else None

    @property
    def seen_pairs_path(self) -> Path | None:
        return self.data_dir / "seen_pairs.json" if self.data_dir else None

    @property
    def items_path(self) -> Path | None:
        return self.data_dir / "items.json" if self.data_dir else None

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> ArenaConfig:
        env = os.environ if environ is None else environ
        cfg = cls()

        data_dir = env.get("ARENA_DATA_DIR")
        if data_dir:
            cfg.data_dir = Path(data_dir)

        cfg.ratings.k_factor = _get_float(env, "ARENA_K_FACTOR", cfg.ratings.k_factor)
        cfg.ratings.min_rd = _get_float(env, "ARENA_MIN_RD", cfg.ratings.min_rd)
        cfg.ratings.rd_inflation_c = _get_float(
            env, "ARENA_RD_INFLATION_C", cfg.ratings.rd_inflation_c,
        )

        cfg.phase.random_phase_limit = _get_int(
            env, "ARENA_RANDOM_PHASE_LIMIT", cfg.phase.random_phase_limit,
        )
        cfg.phase.rating_diff_threshold = _get_float(
            env, "ARENA_RATING_DIFF_THRESHOLD", cfg.phase.rating_diff_threshold,
        )
        cfg.phase.partial_random_chance = _get_float(
            env, "ARENA_PARTIAL_RANDOM_CHANCE", cfg.phase.partial_random_chance,
        )

        cfg.bootstrap_samples = _get_int(env, "ARENA_BOOTSTRAP_SAMPLES", cfg.bootstrap_samples)
        cfg.bt_smoothing = _get_float(env, "ARENA_BT_SMOOTHING", cfg.bt_smoothing)
        cfg.monte_carlo_trials = _get_int(env, "ARENA_MONTE_CARLO_TRIALS", cfg.monte_carlo_trials)
        cfg.low_power = env.get("ARENA_LOW_POWER", "").lower() in ("1", "true", "yes")
        cfg.vote_retry_attempts = _get_int(
            env, "ARENA_VOTE_RETRY_ATTEMPTS", cfg.vote_retry_attempts,
        )
        cfg.unlock_threshold = _get_int(env, "ARENA_UNLOCK_THRESHOLD", cfg.unlock_threshold)

        if not 0.0 <= cfg.phase.partial_random_chance <= 1.0:
            raise ValueError(
                f"ARENA_PARTIAL_RANDOM_CHANCE must be in [0, 1], got {cfg.phase.partial_random_chance}"
            )
        if cfg.bt_smoothing < 0:
            raise ValueError(f"ARENA_BT_SMOOTHING must be non-negative, got {cfg.bt_smoothing}")
        if cfg.ratings.min_rd <= 0:
            raise ValueError(f"ARENA_MIN_RD must be positive, got {cfg.ratings.min_rd}")
        return cfg


def _get_int(env, key: str, default: int) -> int:
    val = env.get(key)
    if val is None or val == "":
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got: {val!r}")


def _get_float(env, key: str, default: float) -> float:
    val = env.get(key)
    if val is None or val == "":
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"{key} must be a number, got: {val!r}")
