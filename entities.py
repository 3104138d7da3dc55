from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from errors import PlacementShortfall
from time_model import DAYS, FIXED_PERIOD_CLASS_ID

PRIORITIES = ("high", "medium", "low")
PRIORITY_ORDER = {name: index for index, name in enumerate(PRIORITIES)}

# Reported per demand when hours are left unplaced
UnassignedLesson = PlacementShortfall


@dataclass(frozen=True)
class Teacher:
    id: str
    name: str
    competencies: FrozenSet[Tuple[str, str]] = frozenset()

    @classmethod
    def from_branches(cls, id, name, branches: Iterable[str], levels: Iterable[str]) -> "Teacher":
        """Every branch is taught on every level, the way teacher records store them."""
        levels = list(levels)
        return cls(id=id, name=name, competencies=frozenset((b, l) for b in branches for l in levels))

    @property
    def levels(self) -> FrozenSet[str]:
        return frozenset(level for _, level in self.competencies)

    def can_teach(self, branch: str, levels: Iterable[str]) -> bool:
        return any((branch, level) in self.competencies for level in levels)


@dataclass(frozen=True)
class SchoolClass:
    id: str
    name: str
    levels: Tuple[str, ...]
    homeroom_teacher_id: Optional[str] = None
    co_teacher_ids: Tuple[str, ...] = ()

    @property
    def linked_teacher_ids(self) -> Tuple[str, ...]:
        linked = list(self.co_teacher_ids)
        if self.homeroom_teacher_id and self.homeroom_teacher_id not in linked:
            linked.append(self.homeroom_teacher_id)
        return tuple(linked)


@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    branch: str
    levels: Tuple[str, ...]
    weekly_hours: int


@dataclass
class LessonDemand:
    """Weekly hour quota for one (class, subject, teacher) triple."""

    class_id: str
    subject_id: str
    teacher_id: str
    weekly_hours_required: int
    priority: str = "medium"
    assigned_hours: int = 0

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.class_id, self.subject_id, self.teacher_id)

    @property
    def remaining_hours(self) -> int:
        return self.weekly_hours_required - self.assigned_hours

    def assign_hour(self):
        if self.assigned_hours >= self.weekly_hours_required:
            raise ValueError(f"Demand {self.key} is already fully assigned")
        self.assigned_hours += 1

    def to_dict(self):
        return {
            "class_id": self.class_id,
            "subject_id": self.subject_id,
            "teacher_id": self.teacher_id,
            "weekly_hours_required": self.weekly_hours_required,
            "assigned_hours": self.assigned_hours,
            "priority": self.priority,
        }


@dataclass(frozen=True)
class ScheduleEntry:
    subject_id: str
    class_id: str
    teacher_id: Optional[str] = None
    is_fixed: bool = False

    @classmethod
    def fixed(cls, subject_id: str) -> "ScheduleEntry":
        return cls(subject_id=subject_id, class_id=FIXED_PERIOD_CLASS_ID, is_fixed=True)

    def to_dict(self):
        d = {"subjectId": self.subject_id, "classId": self.class_id}
        if self.teacher_id:
            d["teacherId"] = self.teacher_id
        if self.is_fixed:
            d["isFixed"] = True
        return d

    @classmethod
    def from_dict(cls, data) -> Optional["ScheduleEntry"]:
        if not data:
            return None
        class_id = data.get("classId", data.get("class_id"))
        return cls(
            subject_id=data.get("subjectId", data.get("subject_id")),
            class_id=class_id,
            teacher_id=data.get("teacherId", data.get("teacher_id")),
            is_fixed=bool(data.get("isFixed", data.get("is_fixed", class_id == FIXED_PERIOD_CLASS_ID))),
        )


Grid = Dict[str, Dict[str, Optional[ScheduleEntry]]]


@dataclass
class TeacherSchedule:
    """One teacher's weekly grid: day -> period id -> entry (None when free)."""

    teacher_id: str
    grid: Grid = field(default_factory=dict)

    @classmethod
    def empty(cls, teacher_id: str, period_ids: Iterable[str], fixed: Dict[str, str] = None,
              days: Iterable[str] = DAYS) -> "TeacherSchedule":
        fixed = fixed or {}
        period_ids = list(period_ids)
        grid = {}
        for day in days:
            grid[day] = {}
            for period in period_ids:
                subject = fixed.get(period)
                grid[day][period] = ScheduleEntry.fixed(subject) if subject else None
        return cls(teacher_id=teacher_id, grid=grid)

    def get(self, day: str, period: str) -> Optional[ScheduleEntry]:
        return self.grid.get(day, {}).get(period)

    def place(self, day: str, period: str, entry: ScheduleEntry):
        current = self.get(day, period)
        if current is not None:
            raise ValueError(f"Slot {day} {period} of teacher {self.teacher_id} is already occupied")
        self.grid.setdefault(day, {})[period] = entry

    def lessons(self) -> Iterable[Tuple[str, str, ScheduleEntry]]:
        for day, periods in self.grid.items():
            for period, entry in periods.items():
                if entry is not None and not entry.is_fixed:
                    yield day, period, entry

    def open_slot_count(self) -> int:
        """Cells that are not fixed pseudo-periods."""
        return sum(
            1 for periods in self.grid.values() for entry in periods.values()
            if entry is None or not entry.is_fixed
        )

    def to_dict(self):
        return {
            "teacherId": self.teacher_id,
            "schedule": {
                day: {period: (entry.to_dict() if entry else None) for period, entry in periods.items()}
                for day, periods in self.grid.items()
            },
        }

    @classmethod
    def from_dict(cls, data) -> "TeacherSchedule":
        raw = data.get("schedule") or {}
        grid = {
            day: {period: ScheduleEntry.from_dict(slot) for period, slot in (periods or {}).items()}
            for day, periods in raw.items()
        }
        return cls(teacher_id=data.get("teacherId", data.get("teacher_id")), grid=grid)


@dataclass
class Statistics:
    filled_slots: int = 0
    total_slots: int = 0
    conflict_count: int = 0
    unassigned_lessons: List[UnassignedLesson] = field(default_factory=list)

    def to_dict(self):
        return {
            "filledSlots": self.filled_slots,
            "totalSlots": self.total_slots,
            "conflictCount": self.conflict_count,
            "unassignedLessons": [lesson.to_dict() for lesson in self.unassigned_lessons],
        }


@dataclass
class ScheduleResult:
    success: bool
    schedules: List[TeacherSchedule] = field(default_factory=list)
    statistics: Statistics = field(default_factory=Statistics)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False
    # The run's own copies of the demands, with assigned hours filled in
    demands: List[LessonDemand] = field(default_factory=list)

    def schedule_for(self, teacher_id: str) -> Optional[TeacherSchedule]:
        return next((s for s in self.schedules if s.teacher_id == teacher_id), None)

    def to_dict(self):
        return {
            "success": self.success,
            "schedules": [s.to_dict() for s in self.schedules],
            "statistics": self.statistics.to_dict(),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "cancelled": self.cancelled,
        }


def index_by_id(items) -> Dict[str, object]:
    return {item.id: item for item in items}

