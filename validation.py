"""
Re-checks a teacher or class grid against the rule set.

Used for hand-edited grids as well as scheduler output. Structural problems go
to ``errors``, broken hard rules to ``constraint_violations`` and soft rule
hits to ``warnings``.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from config import RuleSet
from conflicts import OccupancyIndex, Placement, check_slot_conflict
from constraints import CLASS, TEACHER, ConstraintStore, EntityRef, build_store
from entities import ScheduleEntry, TeacherSchedule, index_by_id
from time_model import DEFAULT_TIME_MODEL, TimeModel

logger = logging.getLogger(__name__)

MODES = (TEACHER, CLASS)


@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    constraint_violations: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "isValid": self.is_valid,
            "errors": list(self.errors),
            "constraintViolations": list(self.constraint_violations),
            "warnings": list(self.warnings),
        }


def _unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


def _entry(slot) -> Optional[ScheduleEntry]:
    if slot is None or isinstance(slot, ScheduleEntry):
        return slot
    return ScheduleEntry.from_dict(slot)


class _GridValidator:
    def __init__(self, mode, grid, selected_id, all_schedules, teachers, classes, subjects,
                 store: ConstraintStore, rules: RuleSet, time_model: TimeModel):
        self.mode = mode
        self.grid = grid
        self.selected_id = selected_id
        self.all_schedules = list(all_schedules or [])
        self.teacher_by_id = index_by_id(teachers)
        self.class_by_id = index_by_id(classes)
        self.subject_by_id = index_by_id(subjects)
        self.store = store
        self.rules = rules
        self.time_model = time_model
        self.labels = {}
        for lookup in (self.teacher_by_id, self.class_by_id, self.subject_by_id):
            self.labels.update({key: item.name for key, item in lookup.items()})

        self.errors: List[str] = []
        self.violations: List[str] = []
        self.warnings: List[str] = []

    def name(self, entity_id) -> str:
        return self.labels.get(entity_id, str(entity_id))

    # ------------------------------------------------------------------ #
    def run(self) -> ValidationResult:
        if self.mode not in MODES:
            self.errors.append(f"Unknown validation mode '{self.mode}'")
        if not self.selected_id:
            self.errors.append("No teacher or class selected")
        if not self.grid:
            self.errors.append("Schedule grid is empty")
        if self.errors:
            return self._result()

        lookup = self.teacher_by_id if self.mode == TEACHER else self.class_by_id
        if self.selected_id not in lookup:
            self.errors.append(f"Unknown {self.mode} id '{self.selected_id}'")
            return self._result()

        self.selected = EntityRef(self.mode, self.selected_id)
        lessons = self._collect_lessons()
        if not self.errors:
            self._check_lessons(lessons)
            self._check_caps(lessons)
        return self._result()

    def _result(self) -> ValidationResult:
        errors = _unique(self.errors)
        violations = _unique(self.violations)
        return ValidationResult(
            is_valid=not errors and not violations,
            errors=errors,
            constraint_violations=violations,
            warnings=_unique(self.warnings),
        )

    # ------------------------------------------------------------------ #
    # Structure
    # ------------------------------------------------------------------ #
    def _marker_levels(self, lessons):
        """Levels a fixed marker may come from, and the levels the grid's lessons are taught at.

        A teacher grid is laid out from the levels of a run, which may include
        levels whose lessons all stayed unplaced, so the teacher's own levels
        count as possible sources too.
        """
        if self.mode == CLASS:
            levels = list(self.class_by_id[self.selected_id].levels)
            return levels, levels
        taught = {level for _, _, p in lessons for level in self.class_by_id[p.class_id].levels}
        possible = taught | set(self.teacher_by_id[self.selected_id].levels)
        order = self.time_model.levels
        return [level for level in order if level in possible], [level for level in order if level in taught]

    def _marker_allowed(self, period, possible, taught) -> bool:
        for level in taught:
            definition = self.time_model.period_definition(level, period)
            if definition is not None and not definition.is_fixed:
                return False
        for level in possible:
            definition = self.time_model.period_definition(level, period)
            if definition is not None and definition.is_fixed:
                return True
        return False

    def _collect_lessons(self) -> List[tuple]:
        """(day, period, Placement) for every lesson cell that passes the structural checks."""
        known_periods = set(self.time_model.all_period_ids(self.time_model.levels))
        lessons = []
        markers = []

        for day, periods in self.grid.items():
            if day not in self.time_model.days:
                self.errors.append(f"Unknown day '{day}'")
                continue
            for period, slot in (periods or {}).items():
                period = str(period)
                if period not in known_periods:
                    self.errors.append(f"Unknown period '{period}' on {day}")
                    continue
                entry = _entry(slot)
                if entry is None:
                    continue
                if entry.is_fixed:
                    markers.append((day, period))
                    continue
                placement = self._placement(entry, day, period)
                if placement is None:
                    continue
                school_class = self.class_by_id[placement.class_id]
                if period not in self.time_model.teaching_periods_for_levels(school_class.levels):
                    self.errors.append(
                        f"{self.name(placement.subject_id)} for {school_class.name} is placed in fixed slot "
                        f"{day} period {period}"
                    )
                    continue
                lessons.append((day, period, placement))

        possible, taught = self._marker_levels(lessons)
        for day, period in markers:
            if not self._marker_allowed(period, possible, taught):
                self.errors.append(f"Fixed period marker at teaching period {day} period {period}")
        return lessons

    def _placement(self, entry: ScheduleEntry, day, period) -> Optional[Placement]:
        if self.mode == TEACHER:
            teacher_id, class_id = self.selected_id, entry.class_id
        else:
            teacher_id, class_id = entry.teacher_id, self.selected_id
            if not teacher_id:
                self.errors.append(f"Lesson on {day} period {period} has no teacher")
                return None
        if class_id not in self.class_by_id:
            self.errors.append(f"Unknown class id '{class_id}' on {day} period {period}")
            return None
        if entry.subject_id not in self.subject_by_id:
            self.errors.append(f"Unknown subject id '{entry.subject_id}' on {day} period {period}")
            return None
        if teacher_id not in self.teacher_by_id:
            self.errors.append(f"Unknown teacher id '{teacher_id}' on {day} period {period}")
            return None
        return Placement(teacher_id, class_id, entry.subject_id)

    # ------------------------------------------------------------------ #
    # Rules per lesson
    # ------------------------------------------------------------------ #
    def _others(self) -> OccupancyIndex:
        others = OccupancyIndex()
        if self.mode == TEACHER:
            others.add_schedules(self.all_schedules, skip_teacher_ids=[self.selected_id])
        else:
            others.add_schedules(self.all_schedules, skip_class_ids=[self.selected_id])
        return others

    def _check_lessons(self, lessons):
        others = self._others()
        for day, period, placement in lessons:
            teacher = EntityRef.teacher(placement.teacher_id)
            school_class = EntityRef.school_class(placement.class_id)
            what = f"{self.name(placement.subject_id)} ({self.name(placement.class_id)}, {self.name(placement.teacher_id)})"

            for entity in (teacher, school_class):
                constraint = self.store.constraint_type(entity, day, period)
                if constraint == "unavailable":
                    self.violations.append(
                        f"{entity.label} {self.name(entity.id)} is unavailable on {day} period {period}: {what}"
                    )
                elif constraint == "restricted":
                    self.warnings.append(
                        f"{entity.label} {self.name(entity.id)} is restricted on {day} period {period}: {what}"
                    )

            target, counterpart = (teacher, school_class) if self.mode == TEACHER else (school_class, teacher)
            check = check_slot_conflict(
                target, counterpart, day, period, others, subject_id=placement.subject_id, labels=self.labels
            )
            if check.has_conflict:
                self.violations.append(check.message)

            if self.rules.avoid_first_last_period:
                periods = self.time_model.teaching_periods_for_levels(self.class_by_id[placement.class_id].levels)
                if period in (periods[0], periods[-1]):
                    self.warnings.append(f"{what} is in the first or last period ({day} period {period})")

        # The checked grid wins over whatever the other grids held for the same cells
        self.combined = others
        for day, period, placement in lessons:
            self.combined.add(day, period, placement)

    # ------------------------------------------------------------------ #
    # Rules per day / week
    # ------------------------------------------------------------------ #
    def _check_caps(self, lessons):
        teacher_ids = list(dict.fromkeys(p.teacher_id for _, _, p in lessons))
        class_ids = list(dict.fromkeys(p.class_id for _, _, p in lessons))
        rules = self.rules

        for teacher_id in teacher_ids:
            ref = EntityRef.teacher(teacher_id)
            slots = self.combined.slots_for(ref)
            for day in self.time_model.days:
                count = sum(1 for d, _, _ in slots if d == day)
                if count > rules.max_daily_hours_teacher:
                    self.violations.append(
                        f"Teacher {self.name(teacher_id)} has {count} lessons on {day} "
                        f"(max {rules.max_daily_hours_teacher})"
                    )
            if rules.max_weekly_hours_teacher is not None and len(slots) > rules.max_weekly_hours_teacher:
                self.violations.append(
                    f"Teacher {self.name(teacher_id)} has {len(slots)} lessons this week "
                    f"(max {rules.max_weekly_hours_teacher})"
                )
            if rules.lunch_break_required:
                self._check_lunch(teacher_id, slots)

        for class_id in class_ids:
            slots = self.combined.slots_for(EntityRef.school_class(class_id))
            for day in self.time_model.days:
                count = sum(1 for d, _, _ in slots if d == day)
                if count > rules.max_daily_hours_class:
                    self.violations.append(
                        f"Class {self.name(class_id)} has {count} lessons on {day} "
                        f"(max {rules.max_daily_hours_class})"
                    )
            if rules.avoid_consecutive_same_subject:
                self._check_consecutive(class_id, slots)

    def _check_consecutive(self, class_id, slots):
        periods = self.time_model.teaching_periods_for_levels(self.class_by_id[class_id].levels)
        position = {period: index for index, period in enumerate(periods)}
        for day in self.time_model.days:
            by_position = {
                position[period]: placement.subject_id
                for d, period, placement in slots
                if d == day and period in position
            }
            run, previous = 0, None
            for index in range(len(periods)):
                subject_id = by_position.get(index)
                run = run + 1 if subject_id is not None and subject_id == previous else 1
                previous = subject_id
                if subject_id is not None and run == self.rules.max_consecutive_hours + 1:
                    self.violations.append(
                        f"{self.name(subject_id)} runs more than {self.rules.max_consecutive_hours} "
                        f"consecutive periods for {self.name(class_id)} on {day}"
                    )

    def _check_lunch(self, teacher_id, slots):
        levels = []
        for _, _, placement in slots:
            for level in self.class_by_id[placement.class_id].levels:
                if level not in levels:
                    levels.append(level)
        if not levels:
            return
        levels.sort(key=self.time_model.levels.index)
        window = self.time_model.lunch_window(levels)
        if not window:
            return
        for day in self.time_model.days:
            busy = {period for d, period, _ in slots if d == day}
            free = sum(1 for period in window if period not in busy)
            if free < self.rules.lunch_break_duration:
                self.violations.append(
                    f"Teacher {self.name(teacher_id)} has no lunch break on {day} "
                    f"(periods {', '.join(window)})"
                )


def validate_schedule(mode: str, grid: Dict, selected_id: str, all_schedules: Iterable[TeacherSchedule],
                      teachers, classes, subjects, constraints=(), rules: Optional[RuleSet] = None,
                      time_model: Optional[TimeModel] = None) -> ValidationResult:
    """Validate one grid. ``grid`` is day -> period -> entry (ScheduleEntry, dict or None)."""
    validator = _GridValidator(
        mode, grid, selected_id, all_schedules, teachers, classes, subjects,
        store=build_store(constraints),
        rules=rules or RuleSet.from_env(),
        time_model=time_model or DEFAULT_TIME_MODEL,
    )
    result = validator.run()
    logger.debug(
        "[VALIDATE] %s %s: %d error(s), %d violation(s), %d warning(s)",
        mode, selected_id, len(result.errors), len(result.constraint_violations), len(result.warnings),
    )
    return result


def validate_schedules(schedules: Iterable[TeacherSchedule], teachers, classes, subjects, constraints=(),
                       rules: Optional[RuleSet] = None, time_model: Optional[TimeModel] = None) -> ValidationResult:
    schedules = list(schedules)
    errors, violations, warnings = [], [], []
    for schedule in schedules:
        result = validate_schedule(
            TEACHER, schedule.grid, schedule.teacher_id, schedules,
            teachers, classes, subjects, constraints, rules, time_model,
        )
        errors.extend(result.errors)
        violations.extend(result.constraint_violations)
        warnings.extend(result.warnings)
    errors, violations = _unique(errors), _unique(violations)
    logger.info("[VALIDATE] %d grid(s): %d error(s), %d violation(s)", len(schedules), len(errors), len(violations))
    return ValidationResult(
        is_valid=not errors and not violations,
        errors=errors,
        constraint_violations=violations,
        warnings=_unique(warnings),
    )
