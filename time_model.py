"""
Weekly time grid per education level.

Teaching periods are numbered "1".."10". Fixed pseudo-periods (preparation,
breakfast, lunch, afternoon breakfast) are interleaved and their position
depends on the level: lunch takes period 5 for kindergarten/primary and
period 6 for middle school.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from errors import StructuralError

DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]

KINDERGARTEN = "kindergarten"
PRIMARY = "primary"
MIDDLE = "middle"
EDUCATION_LEVELS = (KINDERGARTEN, PRIMARY, MIDDLE)

TEACHING = "teaching"
PREP = "prep"
BREAKFAST = "breakfast"
LUNCH = "lunch"
AFTERNOON_BREAKFAST = "afternoon-breakfast"
FIXED_KINDS = (PREP, BREAKFAST, LUNCH, AFTERNOON_BREAKFAST)

# Non-teaching sentinel carried by fixed grid entries
FIXED_PERIOD_CLASS_ID = "fixed-period"


@dataclass(frozen=True)
class PeriodDefinition:
    id: str
    start_time: str
    end_time: str
    kind: str = TEACHING

    @property
    def is_fixed(self) -> bool:
        return self.kind != TEACHING

    @property
    def fixed_subject_id(self) -> Optional[str]:
        return f"fixed-{self.kind}" if self.is_fixed else None

    @property
    def time_range(self) -> str:
        return f"{self.start_time}-{self.end_time}"


def _p(period_id, start, end, kind=TEACHING):
    return PeriodDefinition(period_id, start, end, kind)


_YOUNGER_DAY = (
    _p("prep", "08:30", "08:50", BREAKFAST),
    _p("1", "08:50", "09:25"),
    _p("2", "09:35", "10:10"),
    _p("3", "10:20", "10:55"),
    _p("4", "11:05", "11:40"),
    _p("5", "11:50", "12:25", LUNCH),
    _p("6", "12:30", "13:05"),
    _p("7", "13:15", "13:50"),
    _p("8", "14:00", "14:35"),
    _p("afternoon-breakfast", "14:35", "14:45", AFTERNOON_BREAKFAST),
    _p("9", "14:45", "15:20"),
    _p("10", "15:25", "16:00"),
)

_MIDDLE_DAY = (
    _p("prep", "08:30", "08:40", PREP),
    _p("1", "08:40", "09:15"),
    _p("breakfast", "09:15", "09:35", BREAKFAST),
    _p("2", "09:35", "10:10"),
    _p("3", "10:20", "10:55"),
    _p("4", "11:05", "11:40"),
    _p("5", "11:50", "12:25"),
    _p("6", "12:30", "13:05", LUNCH),
    _p("7", "13:15", "13:50"),
    _p("8", "14:00", "14:35"),
    _p("afternoon-breakfast", "14:35", "14:45", AFTERNOON_BREAKFAST),
    _p("9", "14:45", "15:20"),
    _p("10", "15:25", "16:00"),
)


def normalize_level(level) -> Optional[str]:
    """Map a free-form level label ("İlkokul", "PRIMARY", "ortaokul") to a level id."""
    if not level:
        return None
    lowered = str(level).strip().replace("İ", "i").replace("I", "i").lower().replace("ı", "i")
    if "anaokul" in lowered or "kindergarten" in lowered:
        return KINDERGARTEN
    if "ilkokul" in lowered or "primary" in lowered:
        return PRIMARY
    if "ortaokul" in lowered or "middle" in lowered:
        return MIDDLE
    return None


class TimeModel:
    """Ordered period layout per education level over a fixed list of days."""

    def __init__(self, layouts: Dict[str, Iterable[PeriodDefinition]], days: Iterable[str] = DAYS):
        self.days: List[str] = list(days)
        self._layouts: Dict[str, Tuple[PeriodDefinition, ...]] = {
            level: tuple(periods) for level, periods in layouts.items()
        }
        for level, periods in self._layouts.items():
            ids = [p.id for p in periods]
            if len(ids) != len(set(ids)):
                raise ValueError(f"Duplicate period ids in layout for level '{level}'")
        self._teaching = {
            level: tuple(p.id for p in periods if not p.is_fixed)
            for level, periods in self._layouts.items()
        }

    @property
    def levels(self) -> List[str]:
        return list(self._layouts)

    def _layout(self, level) -> Tuple[PeriodDefinition, ...]:
        try:
            return self._layouts[level]
        except KeyError:
            raise StructuralError(f"Unknown education level '{level}'") from None

    def periods_for(self, level) -> List[PeriodDefinition]:
        return list(self._layout(level))

    def teaching_periods(self, level) -> List[str]:
        self._layout(level)
        return list(self._teaching[level])

    def fixed_periods(self, level) -> List[PeriodDefinition]:
        return [p for p in self._layout(level) if p.is_fixed]

    def lunch_periods(self, level) -> List[str]:
        return [p.id for p in self._layout(level) if p.kind == LUNCH]

    def is_teaching_period(self, level, period) -> bool:
        self._layout(level)
        return str(period) in self._teaching[level]

    def period_definition(self, level, period) -> Optional[PeriodDefinition]:
        for definition in self._layout(level):
            if definition.id == str(period):
                return definition
        return None

    def teaching_periods_for_levels(self, levels: Iterable[str]) -> List[str]:
        """Periods that are teaching periods for every given level, in layout order."""
        levels = list(levels)
        if not levels:
            raise StructuralError("At least one education level is required")
        base = self.teaching_periods(levels[0])
        allowed = set(base)
        for level in levels[1:]:
            allowed &= set(self.teaching_periods(level))
        return [p for p in base if p in allowed]

    def all_period_ids(self, levels: Iterable[str]) -> List[str]:
        """Union of period ids across levels, ordered by first appearance and start time."""
        seen = {}
        for level in levels:
            for definition in self._layout(level):
                seen.setdefault(definition.id, definition.start_time)
        return sorted(seen, key=lambda pid: (seen[pid], pid))

    def grid_layout(self, levels: Iterable[str]) -> Tuple[List[str], Dict[str, str]]:
        """Period ids of a grid spanning ``levels`` and the fixed subject per fixed period.

        A period is fixed in the combined grid only when no level teaches in it,
        so a teacher working at two levels keeps both lunch positions usable.
        """
        levels = list(levels)
        period_ids = self.all_period_ids(levels)
        fixed = {}
        for period in period_ids:
            definitions = [self.period_definition(level, period) for level in levels]
            definitions = [d for d in definitions if d is not None]
            if all(d.is_fixed for d in definitions):
                fixed[period] = definitions[0].fixed_subject_id
        return period_ids, fixed

    def lunch_window(self, levels: Iterable[str]) -> List[str]:
        """Lunch periods of ``levels`` that stay teachable in a combined grid."""
        levels = list(levels)
        _, fixed = self.grid_layout(levels)
        window = []
        for level in levels:
            for period in self.lunch_periods(level):
                if period not in fixed and period not in window:
                    window.append(period)
        return window


DEFAULT_TIME_MODEL = TimeModel({
    KINDERGARTEN: _YOUNGER_DAY,
    PRIMARY: _YOUNGER_DAY,
    MIDDLE: _MIDDLE_DAY,
})


def simple_time_model(levels: Iterable[str], periods_per_day: int, days: Iterable[str] = DAYS) -> TimeModel:
    """Time model without fixed slots, periods "1".."n" of 40 minutes from 08:30."""
    periods = []
    minutes = 8 * 60 + 30
    for number in range(1, periods_per_day + 1):
        start = f"{minutes // 60:02d}:{minutes % 60:02d}"
        end_minutes = minutes + 40
        end = f"{end_minutes // 60:02d}:{end_minutes % 60:02d}"
        periods.append(PeriodDefinition(str(number), start, end))
        minutes = end_minutes + 10
    return TimeModel({level: periods for level in levels}, days=days)
