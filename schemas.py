"""Request payloads of the HTTP API (Pydantic v2)."""
from typing import Annotated, Dict, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from constraints import TimeConstraint
from entities import SchoolClass, Subject, Teacher, TeacherSchedule
from mapping import Selection
from time_model import normalize_level

Id = Annotated[str, BeforeValidator(lambda v: str(v) if v is not None else v)]
Priority = Literal["high", "medium", "low"]


def _levels(values: List[str]) -> List[str]:
    levels = []
    for value in values:
        level = normalize_level(value)
        if level is None:
            raise ValueError(f"Unknown education level '{value}'")
        if level not in levels:
            levels.append(level)
    return levels


class Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LeveledPayload(Payload):
    @field_validator("levels", check_fields=False)
    @classmethod
    def normalize_levels(cls, v):
        return _levels(v)


class TeacherIn(LeveledPayload):
    id: Id
    name: str
    branches: List[str] = []
    levels: List[str] = []
    # explicit (branch, level) pairs, on top of branches x levels
    competencies: List[List[str]] = []

    @field_validator("competencies")
    @classmethod
    def check_pairs(cls, v):
        pairs = []
        for pair in v:
            if len(pair) != 2:
                raise ValueError("Competencies are [branch, level] pairs")
            pairs.append([pair[0], _levels([pair[1]])[0]])
        return pairs

    def to_entity(self) -> Teacher:
        teacher = Teacher.from_branches(self.id, self.name, self.branches, self.levels)
        extra = frozenset((branch, level) for branch, level in self.competencies)
        return Teacher(id=teacher.id, name=teacher.name, competencies=teacher.competencies | extra)


class ClassIn(LeveledPayload):
    id: Id
    name: str
    levels: List[str] = Field(min_length=1)
    homeroom_teacher_id: Optional[Id] = None
    co_teacher_ids: List[Id] = []

    def to_entity(self) -> SchoolClass:
        return SchoolClass(
            id=self.id,
            name=self.name,
            levels=tuple(self.levels),
            homeroom_teacher_id=self.homeroom_teacher_id,
            co_teacher_ids=tuple(self.co_teacher_ids),
        )


class SubjectIn(LeveledPayload):
    id: Id
    name: str
    branch: str
    levels: List[str] = Field(min_length=1)
    weekly_hours: int = Field(ge=0)

    def to_entity(self) -> Subject:
        return Subject(self.id, self.name, self.branch, tuple(self.levels), self.weekly_hours)


class ConstraintIn(Payload):
    entity_type: Literal["teacher", "class"]
    entity_id: Id
    day: str
    period: Id
    constraint_type: Literal["preferred", "restricted", "unavailable"]

    def to_entity(self) -> TimeConstraint:
        return TimeConstraint(self.entity_type, self.entity_id, self.day, self.period, self.constraint_type)


class ScheduleIn(Payload):
    teacher_id: Id
    schedule: Dict[str, Dict[str, Optional[dict]]] = {}

    def to_entity(self) -> TeacherSchedule:
        return TeacherSchedule.from_dict({"teacherId": self.teacher_id, "schedule": self.schedule})


class SelectionIn(Payload):
    class_ids: List[Id] = []
    subject_ids: List[Id] = []
    teacher_ids: List[Id] = []
    subject_hours: Dict[str, int] = {}
    subject_priorities: Dict[str, Priority] = {}

    def to_selection(self) -> Selection:
        return Selection(
            class_ids=list(self.class_ids),
            subject_ids=list(self.subject_ids),
            teacher_ids=list(self.teacher_ids),
            subject_hours=dict(self.subject_hours),
            subject_priorities=dict(self.subject_priorities),
        )


class SchoolData(Payload):
    teachers: List[TeacherIn] = []
    classes: List[ClassIn] = []
    subjects: List[SubjectIn] = []
    constraints: List[ConstraintIn] = []

    def entities(self):
        return (
            [t.to_entity() for t in self.teachers],
            [c.to_entity() for c in self.classes],
            [s.to_entity() for s in self.subjects],
            [c.to_entity() for c in self.constraints],
        )


class MappingRequest(SchoolData):
    selection: SelectionIn


class GenerateRequest(MappingRequest):
    rules: dict = {}
    settings: dict = {}
    allow_partial: bool = False
    persist: bool = False
    # Grids of teachers outside this run; loaded from the database when omitted
    existing_schedules: Optional[List[ScheduleIn]] = None


class ValidateRequest(SchoolData):
    mode: Literal["teacher", "class"]
    selected_id: Id
    grid: Dict[str, Dict[str, Optional[dict]]]
    all_schedules: List[ScheduleIn] = []
    rules: dict = {}


class ConflictRequest(SchoolData):
    mode: Literal["teacher", "class"]
    selected_id: Id
    counterpart_id: Id
    day: str
    period: Id
    subject_id: Optional[Id] = None
    schedules: List[ScheduleIn] = []
