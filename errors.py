"""
Error values produced while planning and generating a timetable.

Only StructuralError is raised. Everything else is collected and handed back
to the caller so that one bad lesson never aborts an otherwise usable run.
"""
from dataclasses import dataclass
from typing import Optional


class StructuralError(Exception):
    """Malformed input: unknown entity id, unknown education level, bad rules."""


@dataclass(frozen=True)
class ResolutionError:
    """No selected teacher can teach a requested (class, subject) pair."""

    class_id: str
    subject_id: str
    class_name: str
    subject_name: str

    @property
    def message(self) -> str:
        return (
            f"No suitable teacher found for subject '{self.subject_name}' in class "
            f"'{self.class_name}'. Select more teachers or check their branch/level competencies."
        )

    def to_dict(self):
        return {
            "class_id": self.class_id,
            "subject_id": self.subject_id,
            "class_name": self.class_name,
            "subject_name": self.subject_name,
            "message": self.message,
        }

    def __str__(self):
        return self.message


@dataclass(frozen=True)
class PlacementShortfall:
    """Hours of a resolved lesson demand that could not be placed."""

    class_id: str
    subject_id: str
    teacher_id: str
    missing_hours: int
    class_name: str = ""
    subject_name: str = ""
    teacher_name: str = ""

    @property
    def message(self) -> str:
        return (
            f"'{self.class_name or self.class_id}' > '{self.subject_name or self.subject_id}' "
            f"({self.teacher_name or self.teacher_id}): {self.missing_hours} hours missing"
        )

    def to_dict(self):
        return {
            "class_id": self.class_id,
            "subject_id": self.subject_id,
            "teacher_id": self.teacher_id,
            "class_name": self.class_name,
            "subject_name": self.subject_name,
            "teacher_name": self.teacher_name,
            "missing_hours": self.missing_hours,
            "message": self.message,
        }


@dataclass(frozen=True)
class ConflictRejection:
    """A candidate slot refused because of an entry persisted before this run."""

    entity_type: str
    entity_id: str
    day: str
    period: str
    message: Optional[str] = None
