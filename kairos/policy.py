from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping


@dataclass(frozen=True)
class SessionPolicy:
    """Timing and validation thresholds shared by the session services.

    Postponement and mode changes share a single cutoff by default; each can be
    overridden on its own through configuration.
    """

    min_duration: timedelta = timedelta(minutes=30)
    long_duration_warning: timedelta = timedelta(hours=4)
    early_start: timedelta = timedelta(minutes=30)
    late_start_warning: timedelta = timedelta(minutes=15)
    postpone_cutoff: timedelta = timedelta(hours=2)
    mode_change_cutoff: timedelta = timedelta(hours=2)
    min_reason_length: int = 10
    generation_max_days: int = 366

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "SessionPolicy":
        change_cutoff = config.get("SESSION_CHANGE_CUTOFF_MINUTES", 120)
        postpone_cutoff = _override(config, "SESSION_POSTPONE_CUTOFF_MINUTES", change_cutoff)
        mode_change_cutoff = _override(
            config, "SESSION_MODE_CHANGE_CUTOFF_MINUTES", change_cutoff
        )
        return cls(
            min_duration=timedelta(minutes=config.get("SESSION_MIN_DURATION_MINUTES", 30)),
            long_duration_warning=timedelta(
                minutes=config.get("SESSION_LONG_DURATION_WARNING_MINUTES", 240)
            ),
            early_start=timedelta(minutes=config.get("SESSION_EARLY_START_MINUTES", 30)),
            late_start_warning=timedelta(
                minutes=config.get("SESSION_LATE_START_WARNING_MINUTES", 15)
            ),
            postpone_cutoff=timedelta(minutes=postpone_cutoff),
            mode_change_cutoff=timedelta(minutes=mode_change_cutoff),
            min_reason_length=config.get("SESSION_MIN_REASON_LENGTH", 10),
            generation_max_days=config.get("SESSION_GENERATION_MAX_DAYS", 366),
        )


def _override(config: Mapping[str, Any], key: str, default: int) -> int:
    # 0 is a valid override: no cutoff at all.
    value = config.get(key)
    return default if value is None else value
