"""
Time availability rules per teacher or class.

Every (entity, day, period) without a record is "preferred". When several
records exist for the same slot the strictest one wins:
unavailable > restricted > preferred.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from time_model import DAYS

TEACHER = "teacher"
CLASS = "class"
ENTITY_TYPES = (TEACHER, CLASS)

PREFERRED = "preferred"
RESTRICTED = "restricted"
UNAVAILABLE = "unavailable"
CONSTRAINT_TYPES = (PREFERRED, RESTRICTED, UNAVAILABLE)

_STRICTNESS = {PREFERRED: 0, RESTRICTED: 1, UNAVAILABLE: 2}

# Score added for each entity that marks a slot as restricted
RESTRICTED_PENALTY = 10


@dataclass(frozen=True)
class EntityRef:
    """Either a teacher or a class, identified by id."""

    kind: str
    id: str

    def __post_init__(self):
        if self.kind not in ENTITY_TYPES:
            raise ValueError(f"Unknown entity type '{self.kind}'")

    @classmethod
    def teacher(cls, teacher_id: str) -> "EntityRef":
        return cls(TEACHER, teacher_id)

    @classmethod
    def school_class(cls, class_id: str) -> "EntityRef":
        return cls(CLASS, class_id)

    @property
    def is_teacher(self) -> bool:
        return self.kind == TEACHER

    @property
    def label(self) -> str:
        return "Teacher" if self.is_teacher else "Class"


@dataclass(frozen=True)
class TimeConstraint:
    entity_type: str
    entity_id: str
    day: str
    period: str
    constraint_type: str

    @property
    def entity(self) -> EntityRef:
        return EntityRef(self.entity_type, self.entity_id)

    @classmethod
    def from_dict(cls, data) -> "TimeConstraint":
        return cls(
            entity_type=data.get("entityType", data.get("entity_type")),
            entity_id=str(data.get("entityId", data.get("entity_id"))),
            day=data["day"],
            period=str(data["period"]),
            constraint_type=data.get("constraintType", data.get("constraint_type")),
        )

    def to_dict(self):
        return {
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "day": self.day,
            "period": self.period,
            "constraintType": self.constraint_type,
        }


@dataclass(frozen=True)
class SlotAssessment:
    is_optimal: bool
    reason: str
    constraint_type: str


class ConstraintStore:
    """O(1) lookup of the effective constraint for (entity, day, period)."""

    def __init__(self, constraints: Iterable[TimeConstraint] = ()):
        self._effective: Dict[Tuple[str, str, str, str], str] = {}
        self._by_entity: Dict[EntityRef, List[Tuple[str, str]]] = {}
        for constraint in constraints:
            self.add(constraint)

    def add(self, constraint: TimeConstraint):
        if constraint.constraint_type not in _STRICTNESS:
            raise ValueError(
                f"Unknown constraint type '{constraint.constraint_type}' for "
                f"{constraint.entity_type} {constraint.entity_id}"
            )
        entity = constraint.entity
        key = (entity.kind, entity.id, constraint.day, str(constraint.period))
        current = self._effective.get(key)
        if current is None:
            self._by_entity.setdefault(entity, []).append((constraint.day, str(constraint.period)))
        if current is None or _STRICTNESS[constraint.constraint_type] > _STRICTNESS[current]:
            self._effective[key] = constraint.constraint_type

    def __len__(self):
        return len(self._effective)

    def constraint_type(self, entity: EntityRef, day: str, period: str) -> str:
        return self._effective.get((entity.kind, entity.id, day, str(period)), PREFERRED)

    def is_hard_blocked(self, entity: EntityRef, day: str, period: str) -> bool:
        return self.constraint_type(entity, day, period) == UNAVAILABLE

    def soft_penalty(self, entity: EntityRef, day: str, period: str) -> int:
        if self.constraint_type(entity, day, period) == RESTRICTED:
            return RESTRICTED_PENALTY
        return 0

    def assess_slot(self, entity: EntityRef, day: str, period: str) -> SlotAssessment:
        key = (entity.kind, entity.id, day, str(period))
        if key not in self._effective:
            return SlotAssessment(True, "Preferred time slot (default)", PREFERRED)
        constraint_type = self._effective[key]
        if constraint_type == UNAVAILABLE:
            return SlotAssessment(False, "Unavailable time slot - cannot be used", UNAVAILABLE)
        if constraint_type == RESTRICTED:
            return SlotAssessment(False, "Restricted time slot - use with care", RESTRICTED)
        return SlotAssessment(True, "Preferred time slot", PREFERRED)

    def recommendations(self, entity: EntityRef, periods: Iterable[str] = (),
                        days: Iterable[str] = DAYS) -> Dict[str, List[str]]:
        """Slot labels grouped as preferred / avoid / restricted.

        An entity without any record is available everywhere, so every slot of
        ``days`` x ``periods`` is listed as preferred.
        """
        result = {"preferred": [], "avoid": [], "restricted": []}
        slots = self._by_entity.get(entity)
        if not slots:
            for day in days:
                for period in periods:
                    result["preferred"].append(f"{day} period {period}")
            return result
        for day, period in slots:
            constraint_type = self._effective[(entity.kind, entity.id, day, period)]
            bucket = {PREFERRED: "preferred", UNAVAILABLE: "avoid", RESTRICTED: "restricted"}[constraint_type]
            result[bucket].append(f"{day} period {period}")
        return result

    def records_for(self, entity: EntityRef) -> List[TimeConstraint]:
        return [
            TimeConstraint(entity.kind, entity.id, day, period, self._effective[(entity.kind, entity.id, day, period)])
            for day, period in self._by_entity.get(entity, [])
        ]


def build_store(constraints: Optional[Iterable] = None) -> ConstraintStore:
    """Accepts TimeConstraint objects or their dict form."""
    items = []
    for constraint in constraints or ():
        if isinstance(constraint, TimeConstraint):
            items.append(constraint)
        else:
            items.append(TimeConstraint.from_dict(constraint))
    return ConstraintStore(items)
