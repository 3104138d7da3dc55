"""
Scheduler configuration.

Defaults come from the environment (a local .env file is loaded with
python-dotenv) and can be overridden per run with a plain dict, using either
the camelCase keys sent by the wizard or snake_case keys.
"""
import os
import re
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

ALGORITHMS = ("balanced", "compact", "distributed")
OPTIMIZATION_LEVELS = ("fast", "balanced", "thorough")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got '{raw}'") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _coerce(field_type, value, name):
    if value is None:
        return None
    if field_type in (bool, "bool"):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if field_type in (int, "int", Optional[int], "Optional[int]"):
        if isinstance(value, bool):
            raise ValueError(f"'{name}' must be an integer")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"'{name}' must be an integer, got {value!r}") from None
    return value


def _overrides(cls, data: Optional[Dict[str, Any]]):
    known = {f.name: f.type for f in fields(cls)}
    result = {}
    for key, value in (data or {}).items():
        name = _snake_case(key)
        if name in known:
            result[name] = _coerce(known[name], value, name)
    return result


@dataclass(frozen=True)
class RuleSet:
    """Global placement rules applied by the scheduler and the validator."""

    max_daily_hours_teacher: int = 8
    max_daily_hours_class: int = 9
    max_consecutive_hours: int = 3
    avoid_consecutive_same_subject: bool = True
    prefer_morning_hours: bool = True
    avoid_first_last_period: bool = False
    lunch_break_required: bool = True
    lunch_break_duration: int = 1
    max_weekly_hours_teacher: Optional[int] = None
    overwork_threshold: Optional[int] = None

    def validate(self) -> "RuleSet":
        for name in ("max_daily_hours_teacher", "max_daily_hours_class", "max_consecutive_hours"):
            if getattr(self, name) < 1:
                raise ValueError(f"'{name}' must be at least 1")
        if self.lunch_break_duration < 0:
            raise ValueError("'lunch_break_duration' cannot be negative")
        for name in ("max_weekly_hours_teacher", "overwork_threshold"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise ValueError(f"'{name}' must be at least 1 when set")
        return self

    @classmethod
    def from_env(cls) -> "RuleSet":
        return cls(
            max_daily_hours_teacher=_env_int("SCHEDULER_MAX_DAILY_HOURS_TEACHER", 8),
            max_daily_hours_class=_env_int("SCHEDULER_MAX_DAILY_HOURS_CLASS", 9),
            max_consecutive_hours=_env_int("SCHEDULER_MAX_CONSECUTIVE_HOURS", 3),
            avoid_consecutive_same_subject=_env_bool("SCHEDULER_AVOID_CONSECUTIVE_SAME_SUBJECT", True),
            prefer_morning_hours=_env_bool("SCHEDULER_PREFER_MORNING_HOURS", True),
            avoid_first_last_period=_env_bool("SCHEDULER_AVOID_FIRST_LAST_PERIOD", False),
            lunch_break_required=_env_bool("SCHEDULER_LUNCH_BREAK_REQUIRED", True),
            lunch_break_duration=_env_int("SCHEDULER_LUNCH_BREAK_DURATION", 1),
            max_weekly_hours_teacher=_env_int("SCHEDULER_MAX_WEEKLY_HOURS_TEACHER", None),
            overwork_threshold=_env_int("SCHEDULER_OVERWORK_THRESHOLD", None),
        ).validate()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], base: Optional["RuleSet"] = None) -> "RuleSet":
        base = base or cls.from_env()
        return replace(base, **_overrides(cls, data)).validate()

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class GenerationSettings:
    """How hard the scheduler searches and which layout it favours."""

    algorithm: str = "balanced"
    optimization_level: str = "balanced"
    verbose: bool = False

    def validate(self) -> "GenerationSettings":
        if self.algorithm not in ALGORITHMS:
            raise ValueError(f"Unknown algorithm '{self.algorithm}', expected one of {', '.join(ALGORITHMS)}")
        if self.optimization_level not in OPTIMIZATION_LEVELS:
            raise ValueError(
                f"Unknown optimization level '{self.optimization_level}', "
                f"expected one of {', '.join(OPTIMIZATION_LEVELS)}"
            )
        return self

    @classmethod
    def from_env(cls) -> "GenerationSettings":
        return cls(
            algorithm=os.getenv("SCHEDULER_ALGORITHM", "balanced"),
            optimization_level=os.getenv("SCHEDULER_OPTIMIZATION_LEVEL", "balanced"),
            verbose=_env_bool("SCHEDULER_VERBOSE", False),
        ).validate()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], base: Optional["GenerationSettings"] = None):
        base = base or cls.from_env()
        return replace(base, **_overrides(cls, data)).validate()

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def app_config() -> Dict[str, Any]:
    """Flask settings read from the environment."""
    return {
        "MONGO_URI": os.getenv("MONGO_URI"),
        "MONGO_DBNAME": os.getenv("MONGO_DBNAME", "timetable"),
        "SECRET_KEY": os.getenv("SECRET_KEY", "fallback-secret-key"),
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
    }
