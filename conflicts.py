"""
Double-booking checks.

A teacher teaches one class at a time and a class is taught by one teacher at
a time. The checks read an OccupancyIndex and never modify it.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from constraints import EntityRef

SlotKey = Tuple[str, str, str]


@dataclass(frozen=True)
class Placement:
    teacher_id: str
    class_id: str
    subject_id: str
    # Set for entries persisted before the current run
    external: bool = False


@dataclass(frozen=True)
class ConflictCheck:
    has_conflict: bool
    message: str = ""

    def to_dict(self):
        return {"hasConflict": self.has_conflict, "message": self.message}


class OccupancyIndex:
    """Teacher-side and class-side views of the same lesson placements."""

    def __init__(self):
        self._by_teacher: Dict[SlotKey, Placement] = {}
        self._by_class: Dict[SlotKey, Placement] = {}

    @classmethod
    def from_schedules(cls, schedules: Iterable, external: bool = False,
                       skip_teacher_ids: Iterable[str] = ()) -> "OccupancyIndex":
        index = cls()
        index.add_schedules(schedules, external=external, skip_teacher_ids=skip_teacher_ids)
        return index

    def add_schedules(self, schedules: Iterable, external: bool = False, skip_teacher_ids: Iterable[str] = (),
                      skip_class_ids: Iterable[str] = ()):
        skip = set(skip_teacher_ids)
        skip_classes = set(skip_class_ids)
        for schedule in schedules:
            if schedule.teacher_id in skip:
                continue
            for day, period, entry in schedule.lessons():
                if entry.class_id in skip_classes:
                    continue
                self.add(day, period, Placement(schedule.teacher_id, entry.class_id, entry.subject_id, external))

    def add(self, day: str, period: str, placement: Placement):
        self._by_teacher[(placement.teacher_id, day, period)] = placement
        self._by_class[(placement.class_id, day, period)] = placement

    def at(self, entity: EntityRef, day: str, period: str) -> Optional[Placement]:
        side = self._by_teacher if entity.is_teacher else self._by_class
        return side.get((entity.id, day, str(period)))

    def count_for_day(self, entity: EntityRef, day: str) -> int:
        side = self._by_teacher if entity.is_teacher else self._by_class
        return sum(1 for (entity_id, d, _) in side if entity_id == entity.id and d == day)

    def placements(self):
        return list(self._by_teacher.items())

    def slots_for(self, entity: EntityRef) -> List[Tuple[str, str, Placement]]:
        side = self._by_teacher if entity.is_teacher else self._by_class
        return [(d, p, placement) for (entity_id, d, p), placement in side.items() if entity_id == entity.id]


def _name(labels: Optional[Dict[str, str]], entity_id: str) -> str:
    if labels and entity_id in labels:
        return labels[entity_id]
    return str(entity_id)


def _describe(placement: Placement, labels) -> str:
    return (
        f"{_name(labels, placement.subject_id)} with {_name(labels, placement.class_id)} "
        f"(teacher {_name(labels, placement.teacher_id)})"
    )


def check_slot_conflict(target: EntityRef, counterpart: EntityRef, day: str, period: str,
                        occupancy: OccupancyIndex, subject_id: Optional[str] = None,
                        labels: Optional[Dict[str, str]] = None) -> ConflictCheck:
    """Would placing target+counterpart at (day, period) collide with an existing placement?

    ``target`` is the grid being edited (a teacher in teacher mode, a class in
    class mode) and ``counterpart`` the other party of the lesson. Placing the
    exact same lesson again at its own slot is not a conflict.
    """
    try:
        if target.kind == counterpart.kind:
            return ConflictCheck(True, "A lesson needs one teacher and one class")
        teacher = target if target.is_teacher else counterpart
        school_class = counterpart if target.is_teacher else target
        period = str(period)

        def same_lesson(placement: Placement) -> bool:
            return (
                placement.teacher_id == teacher.id
                and placement.class_id == school_class.id
                and (subject_id is None or placement.subject_id == subject_id)
            )

        for entity in (target, counterpart):
            existing = occupancy.at(entity, day, period)
            if existing is None or same_lesson(existing):
                continue
            return ConflictCheck(
                True,
                f"{entity.label} {_name(labels, entity.id)} is already busy on {day} period {period}: "
                f"{_describe(existing, labels)}",
            )
        return ConflictCheck(False, "")
    except Exception as exc:  # the checker reports, it never raises
        return ConflictCheck(True, f"Conflict check failed: {exc}")
