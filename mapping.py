"""
Builds the lesson demand list ("task list") the scheduler works through.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from entities import PRIORITIES, LessonDemand, SchoolClass, Subject, Teacher, index_by_id
from errors import ResolutionError, StructuralError

logger = logging.getLogger(__name__)


@dataclass
class Selection:
    """What the user picked in the wizard, plus per-subject overrides."""

    class_ids: Sequence[str] = ()
    subject_ids: Sequence[str] = ()
    teacher_ids: Sequence[str] = ()
    subject_hours: Dict[str, int] = field(default_factory=dict)
    subject_priorities: Dict[str, str] = field(default_factory=dict)


@dataclass
class MappingOutcome:
    demands: List[LessonDemand]
    errors: List[ResolutionError]

    @property
    def ok(self) -> bool:
        return not self.errors

    def drop_unresolved(self) -> List[LessonDemand]:
        """Demands to schedule when the caller accepts a partial mapping."""
        if self.errors:
            logger.warning("[MAP] Proceeding without %d unresolved subject(s)", len(self.errors))
        return list(self.demands)


def _teacher_matches(teacher: Teacher, subject: Subject, shared_levels) -> bool:
    return teacher.can_teach(subject.branch, shared_levels)


def find_suitable_teacher(subject: Subject, school_class: SchoolClass,
                          teachers: Sequence[Teacher]) -> Optional[Teacher]:
    """Class-linked teachers first (homeroom, co-teachers), then any other candidate."""
    shared_levels = [level for level in school_class.levels if level in subject.levels]
    linked = set(school_class.linked_teacher_ids)

    for teacher in teachers:
        if teacher.id in linked and _teacher_matches(teacher, subject, shared_levels):
            return teacher
    for teacher in teachers:
        if _teacher_matches(teacher, subject, shared_levels):
            return teacher
    return None


def _select(kind: str, ids: Sequence[str], lookup: Dict[str, object]) -> list:
    missing = [i for i in ids if i not in lookup]
    if missing:
        raise StructuralError(f"Unknown {kind} id(s) in selection: {', '.join(map(str, missing))}")
    return [lookup[i] for i in ids]


def build_lesson_demands(selection: Selection, teachers: Sequence[Teacher],
                         classes: Sequence[SchoolClass], subjects: Sequence[Subject]) -> MappingOutcome:
    """Resolve a teacher for every selected (class, subject) pair sharing a level.

    Pairs without a shared level are skipped. Pairs without any eligible
    teacher become ResolutionErrors; nothing is dropped silently.
    """
    selected_classes = _select("class", selection.class_ids, index_by_id(classes))
    selected_subjects = _select("subject", selection.subject_ids, index_by_id(subjects))
    selected_teachers = _select("teacher", selection.teacher_ids, index_by_id(teachers))

    demands: List[LessonDemand] = []
    errors: List[ResolutionError] = []

    for school_class in selected_classes:
        for subject in selected_subjects:
            if not set(school_class.levels) & set(subject.levels):
                logger.debug(
                    "[MAP] Level mismatch: class '%s' (%s) and subject '%s' (%s), skipping",
                    school_class.name, ", ".join(school_class.levels), subject.name, ", ".join(subject.levels),
                )
                continue

            teacher = find_suitable_teacher(subject, school_class, selected_teachers)
            if teacher is None:
                errors.append(ResolutionError(school_class.id, subject.id, school_class.name, subject.name))
                continue

            # An hour override of 0 is an empty form field and falls back to the default
            hours = selection.subject_hours.get(subject.id) or subject.weekly_hours
            priority = selection.subject_priorities.get(subject.id) or "medium"
            if priority not in PRIORITIES:
                raise StructuralError(f"Unknown priority '{priority}' for subject '{subject.name}'")
            demands.append(LessonDemand(
                class_id=school_class.id,
                subject_id=subject.id,
                teacher_id=teacher.id,
                weekly_hours_required=int(hours),
                priority=priority,
            ))

    logger.info("[MAP] %d demand(s) built, %d unresolved", len(demands), len(errors))
    return MappingOutcome(demands=demands, errors=errors)
