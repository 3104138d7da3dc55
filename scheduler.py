import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from config import GenerationSettings, RuleSet
from conflicts import OccupancyIndex, Placement, check_slot_conflict
from constraints import ConstraintStore, EntityRef, build_store
from entities import (
    PRIORITIES,
    PRIORITY_ORDER,
    LessonDemand,
    ScheduleEntry,
    ScheduleResult,
    SchoolClass,
    Statistics,
    Subject,
    Teacher,
    TeacherSchedule,
    UnassignedLesson,
    index_by_id,
)
from errors import ConflictRejection, StructuralError
from time_model import DEFAULT_TIME_MODEL, TimeModel

logger = logging.getLogger(__name__)

# Scoring weights, lower score wins. Restricted slots cost
# constraints.RESTRICTED_PENALTY per entity on top of these.
# Morning is the first floor(n/2) teaching periods of the class.
MORNING_BONUS = -2
FIRST_LAST_PENALTY = 5
COMPACT_ADJACENCY_BONUS = -3
DISTRIBUTED_SAME_DAY_PENALTY = 4
DISTRIBUTED_DAY_LOAD_PENALTY = 1
LOOKAHEAD_PENALTY = 50


@dataclass(frozen=True)
class Candidate:
    day_index: int
    day: str
    position: int
    period: str


@dataclass
class _RunContext:
    demands: List[LessonDemand]
    teacher_by_id: Dict[str, Teacher]
    class_by_id: Dict[str, SchoolClass]
    subject_by_id: Dict[str, Subject]
    store: ConstraintStore
    class_periods: Dict[str, List[str]]
    teacher_levels: Dict[str, List[str]]
    lunch_windows: Dict[str, List[str]]
    labels: Dict[str, str]


@dataclass
class _PlacementState:
    occupancy: OccupancyIndex
    teacher_day_count: Dict[Tuple[str, str], int] = field(default_factory=lambda: defaultdict(int))
    class_day_count: Dict[Tuple[str, str], int] = field(default_factory=lambda: defaultdict(int))
    teacher_week_count: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    # (class, subject, day) -> occupied positions in the class's teaching-period list
    subject_positions: Dict[Tuple[str, str, str], Set[int]] = field(default_factory=lambda: defaultdict(set))
    class_positions: Dict[Tuple[str, str], Set[int]] = field(default_factory=lambda: defaultdict(set))
    rejections: Dict[Tuple[str, str, str, str], ConflictRejection] = field(default_factory=dict)


class ScheduleArena:
    """The run's working grids, teacher id -> TeacherSchedule.

    Each teacher's grid is written only by demands naming that teacher.
    """

    def __init__(self):
        self._grids: Dict[str, TeacherSchedule] = {}

    def add(self, schedule: TeacherSchedule):
        self._grids[schedule.teacher_id] = schedule

    def __getitem__(self, teacher_id: str) -> TeacherSchedule:
        return self._grids[teacher_id]

    def __contains__(self, teacher_id: str) -> bool:
        return teacher_id in self._grids

    def teacher_ids(self) -> List[str]:
        return list(self._grids)

    def schedules(self) -> List[TeacherSchedule]:
        return list(self._grids.values())


def sort_demands(demands: Iterable[LessonDemand]) -> List[LessonDemand]:
    """Priority first (high, medium, low), then the largest quotas; stable otherwise."""
    return sorted(demands, key=lambda d: (PRIORITY_ORDER[d.priority], -d.weekly_hours_required))


class ScheduleGenerator:
    """
    Greedy lesson placement over teacher grids.

    Hard rules (slot excluded):
      - teacher or class marked unavailable
      - teacher/class daily maximum, optional teacher weekly maximum
      - run of the same subject longer than max_consecutive_hours
      - lunch window of teachers spanning levels
      - double booking against this run or persisted schedules
    Soft rules (score):
      - restricted slots, morning preference, first/last period avoidance
      - compact / distributed layout bias
    Placed hours are never undone; whatever does not fit is reported.
    """

    def __init__(self, rules: Optional[RuleSet] = None, settings: Optional[GenerationSettings] = None,
                 time_model: Optional[TimeModel] = None):
        self.rules = rules
        self.settings = settings
        self.time_model = time_model or DEFAULT_TIME_MODEL

    # --------------------------------------------------------------------- #
    # Public API
    # --------------------------------------------------------------------- #
    def generate(self, demands: Sequence[LessonDemand], teachers: Sequence[Teacher],
                 classes: Sequence[SchoolClass], subjects: Sequence[Subject],
                 constraints: Iterable = (), existing_schedules: Iterable[TeacherSchedule] = (),
                 should_cancel: Optional[Callable[[], bool]] = None) -> ScheduleResult:
        try:
            rules = (self.rules or RuleSet.from_env()).validate()
            settings = (self.settings or GenerationSettings.from_env()).validate()
            context = self._load_context(demands, teachers, classes, subjects, constraints)
        except (StructuralError, ValueError) as exc:
            logger.warning("[GEN] Generation aborted: %s", exc)
            return ScheduleResult(success=False, errors=[str(exc)])

        log = logger.info if settings.verbose else logger.debug
        log(
            "[GEN] Context: demands=%d, teachers=%d, classes=%d, constraints=%d, algorithm=%s, level=%s",
            len(context.demands), len(context.teacher_levels), len(context.class_periods),
            len(context.store), settings.algorithm, settings.optimization_level,
        )

        arena = self._build_arena(context)
        state = self._build_state(arena, existing_schedules)
        unassigned: List[UnassignedLesson] = []
        warnings: List[str] = []
        cancelled = False

        for index, demand in enumerate(context.demands):
            if should_cancel is not None and should_cancel():
                cancelled = True
                warnings.append(f"Generation cancelled after {index} of {len(context.demands)} lessons")
                for pending in context.demands[index:]:
                    unassigned.append(self._shortfall(pending, context))
                break

            self._place_demand(demand, context, arena, state, rules, settings)
            log(
                "[GEN] %s / %s / %s: %d of %d hours placed",
                context.labels[demand.class_id], context.labels[demand.subject_id],
                context.labels[demand.teacher_id], demand.assigned_hours, demand.weekly_hours_required,
            )
            if demand.remaining_hours > 0:
                unassigned.append(self._shortfall(demand, context))

        if not cancelled:
            warnings.extend(f"⚠️ Could not place all hours: {lesson.message}" for lesson in unassigned)
        warnings.extend(self._detect_overwork(state, context, rules))

        schedules = arena.schedules()
        statistics = Statistics(
            filled_slots=sum(sum(1 for _ in s.lessons()) for s in schedules),
            total_slots=sum(s.open_slot_count() for s in schedules),
            conflict_count=len(state.rejections),
            unassigned_lessons=unassigned,
        )
        log(
            "[GEN] Done: %d/%d slots filled, %d unassigned lesson(s), %d conflict(s) with saved schedules",
            statistics.filled_slots, statistics.total_slots, len(unassigned), statistics.conflict_count,
        )
        result = ScheduleResult(
            success=True,
            schedules=schedules,
            statistics=statistics,
            warnings=warnings,
            cancelled=cancelled,
            demands=context.demands,
        )
        return result

    # --------------------------------------------------------------------- #
    # Context Preparation
    # --------------------------------------------------------------------- #
    def _load_context(self, demands, teachers, classes, subjects, constraints) -> _RunContext:
        if not demands:
            raise StructuralError("No lessons to schedule. Select classes, subjects and teachers first.")

        teacher_by_id = index_by_id(teachers)
        class_by_id = index_by_id(classes)
        subject_by_id = index_by_id(subjects)

        fresh = []
        for demand in demands:
            if demand.teacher_id not in teacher_by_id:
                raise StructuralError(f"Lesson references unknown teacher id '{demand.teacher_id}'")
            if demand.class_id not in class_by_id:
                raise StructuralError(f"Lesson references unknown class id '{demand.class_id}'")
            if demand.subject_id not in subject_by_id:
                raise StructuralError(f"Lesson references unknown subject id '{demand.subject_id}'")
            if demand.priority not in PRIORITIES:
                raise StructuralError(f"Unknown priority '{demand.priority}' for lesson {demand.key}")
            if demand.weekly_hours_required < 0:
                raise StructuralError(f"Negative weekly hours for lesson {demand.key}")
            # Demands are rebuilt per run, assigned hours always start at zero
            fresh.append(replace(demand, assigned_hours=0))

        class_periods = {}
        for demand in fresh:
            if demand.class_id in class_periods:
                continue
            school_class = class_by_id[demand.class_id]
            periods = self.time_model.teaching_periods_for_levels(school_class.levels)
            if not periods:
                raise StructuralError(f"Class '{school_class.name}' has no teaching periods for its levels")
            class_periods[demand.class_id] = periods

        level_order = self.time_model.levels
        teacher_levels: Dict[str, List[str]] = {}
        for demand in fresh:
            levels = teacher_levels.setdefault(demand.teacher_id, [])
            for level in class_by_id[demand.class_id].levels:
                if level not in levels:
                    levels.append(level)
        for teacher_id, levels in teacher_levels.items():
            levels.sort(key=level_order.index)

        labels = {}
        for lookup in (teacher_by_id, class_by_id, subject_by_id):
            labels.update({key: item.name for key, item in lookup.items()})

        return _RunContext(
            demands=sort_demands(fresh),
            teacher_by_id=teacher_by_id,
            class_by_id=class_by_id,
            subject_by_id=subject_by_id,
            store=build_store(constraints),
            class_periods=class_periods,
            teacher_levels=teacher_levels,
            lunch_windows={t: self.time_model.lunch_window(levels) for t, levels in teacher_levels.items()},
            labels=labels,
        )

    def _build_arena(self, context: _RunContext) -> ScheduleArena:
        arena = ScheduleArena()
        for demand in context.demands:
            if demand.teacher_id in arena:
                continue
            period_ids, fixed = self.time_model.grid_layout(context.teacher_levels[demand.teacher_id])
            arena.add(TeacherSchedule.empty(demand.teacher_id, period_ids, fixed, days=self.time_model.days))
        return arena

    def _build_state(self, arena: ScheduleArena, existing_schedules) -> _PlacementState:
        # Persisted grids of teachers in this run are replaced, the rest stay authoritative
        occupancy = OccupancyIndex.from_schedules(
            existing_schedules, external=True, skip_teacher_ids=arena.teacher_ids()
        )
        state = _PlacementState(occupancy=occupancy)
        for (_, day, _), placement in occupancy.placements():
            state.class_day_count[(placement.class_id, day)] += 1
        return state

    # --------------------------------------------------------------------- #
    # Greedy placement
    # --------------------------------------------------------------------- #
    def _place_demand(self, demand: LessonDemand, context: _RunContext, arena: ScheduleArena,
                      state: _PlacementState, rules: RuleSet, settings: GenerationSettings):
        while demand.remaining_hours > 0:
            candidates = self._candidate_slots(demand, context, arena, state, rules)
            if not candidates:
                return
            if settings.optimization_level == "fast":
                chosen = candidates[0]
            else:
                chosen = min(
                    candidates,
                    key=lambda c: (
                        self._score(c, demand, candidates, context, state, rules, settings),
                        c.day_index,
                        c.position,
                    ),
                )
            self._commit(chosen, demand, arena, state)

    def _candidate_slots(self, demand: LessonDemand, context: _RunContext, arena: ScheduleArena,
                         state: _PlacementState, rules: RuleSet) -> List[Candidate]:
        teacher_ref = EntityRef.teacher(demand.teacher_id)
        class_ref = EntityRef.school_class(demand.class_id)
        grid = arena[demand.teacher_id]
        store = context.store
        periods = context.class_periods[demand.class_id]
        lunch_window = context.lunch_windows.get(demand.teacher_id, [])
        weekly_cap = rules.max_weekly_hours_teacher

        if weekly_cap is not None and state.teacher_week_count[demand.teacher_id] >= weekly_cap:
            return []

        candidates = []
        for day_index, day in enumerate(self.time_model.days):
            if state.teacher_day_count[(demand.teacher_id, day)] >= rules.max_daily_hours_teacher:
                continue
            if state.class_day_count[(demand.class_id, day)] >= rules.max_daily_hours_class:
                continue
            for position, period in enumerate(periods):
                # 1. slots already holding this teacher/class pair
                existing = grid.get(day, period)
                if existing is not None and existing.class_id == demand.class_id:
                    continue
                # 2. hard blocks
                if store.is_hard_blocked(teacher_ref, day, period) or store.is_hard_blocked(class_ref, day, period):
                    continue
                # 3. caps that depend on the slot itself
                if rules.avoid_consecutive_same_subject and self._run_length(
                    state.subject_positions[(demand.class_id, demand.subject_id, day)], position
                ) > rules.max_consecutive_hours:
                    continue
                if rules.lunch_break_required and period in lunch_window and not self._lunch_allows(
                    grid, day, lunch_window, rules.lunch_break_duration
                ):
                    continue
                # 4. double booking
                check = check_slot_conflict(
                    teacher_ref, class_ref, day, period, state.occupancy,
                    subject_id=demand.subject_id, labels=context.labels,
                )
                if check.has_conflict:
                    self._record_rejection(state, (teacher_ref, class_ref), day, period, check.message)
                    continue
                candidates.append(Candidate(day_index, day, position, period))
        return candidates

    @staticmethod
    def _run_length(taken: Set[int], position: int) -> int:
        length = 1
        step = position - 1
        while step in taken:
            length += 1
            step -= 1
        step = position + 1
        while step in taken:
            length += 1
            step += 1
        return length

    @staticmethod
    def _lunch_allows(grid: TeacherSchedule, day: str, window: List[str], duration: int) -> bool:
        free = sum(1 for period in window if grid.get(day, period) is None)
        return free - 1 >= duration

    @staticmethod
    def _record_rejection(state: _PlacementState, refs, day, period, message):
        for ref in refs:
            existing = state.occupancy.at(ref, day, period)
            if existing is not None and existing.external:
                key = (ref.kind, ref.id, day, period)
                state.rejections.setdefault(key, ConflictRejection(ref.kind, ref.id, day, period, message))

    def _score(self, candidate: Candidate, demand: LessonDemand, candidates: List[Candidate],
               context: _RunContext, state: _PlacementState, rules: RuleSet,
               settings: GenerationSettings) -> int:
        day, period, position = candidate.day, candidate.period, candidate.position
        periods = context.class_periods[demand.class_id]
        store = context.store

        score = store.soft_penalty(EntityRef.teacher(demand.teacher_id), day, period)
        score += store.soft_penalty(EntityRef.school_class(demand.class_id), day, period)

        if rules.prefer_morning_hours and (position + 1) * 2 <= len(periods):
            score += MORNING_BONUS
        if rules.avoid_first_last_period and position in (0, len(periods) - 1):
            score += FIRST_LAST_PENALTY

        if settings.algorithm == "compact":
            taken = state.class_positions[(demand.class_id, day)]
            if position - 1 in taken or position + 1 in taken:
                score += COMPACT_ADJACENCY_BONUS
        elif settings.algorithm == "distributed":
            same_subject = len(state.subject_positions[(demand.class_id, demand.subject_id, day)])
            score += DISTRIBUTED_SAME_DAY_PENALTY * same_subject
            score += DISTRIBUTED_DAY_LOAD_PENALTY * state.class_day_count[(demand.class_id, day)]

        if settings.optimization_level == "thorough":
            score += self._lookahead_penalty(candidate, demand, candidates, state, rules)
        return score

    @staticmethod
    def _lookahead_penalty(candidate: Candidate, demand: LessonDemand, candidates: List[Candidate],
                           state: _PlacementState, rules: RuleSet) -> int:
        """Penalise a slot that would leave this demand fewer slots than hours still needed."""
        still_needed = demand.remaining_hours - 1
        if still_needed <= 0:
            return 0
        teacher_full = state.teacher_day_count[(demand.teacher_id, candidate.day)] + 1 >= rules.max_daily_hours_teacher
        class_full = state.class_day_count[(demand.class_id, candidate.day)] + 1 >= rules.max_daily_hours_class
        remaining = sum(
            1 for other in candidates
            if other != candidate and not (other.day == candidate.day and (teacher_full or class_full))
        )
        return LOOKAHEAD_PENALTY if remaining < still_needed else 0

    def _commit(self, candidate: Candidate, demand: LessonDemand, arena: ScheduleArena, state: _PlacementState):
        day, period = candidate.day, candidate.period
        arena[demand.teacher_id].place(day, period, ScheduleEntry(subject_id=demand.subject_id, class_id=demand.class_id))
        state.occupancy.add(day, period, Placement(demand.teacher_id, demand.class_id, demand.subject_id))
        state.teacher_day_count[(demand.teacher_id, day)] += 1
        state.class_day_count[(demand.class_id, day)] += 1
        state.teacher_week_count[demand.teacher_id] += 1
        state.subject_positions[(demand.class_id, demand.subject_id, day)].add(candidate.position)
        state.class_positions[(demand.class_id, day)].add(candidate.position)
        demand.assign_hour()

    # --------------------------------------------------------------------- #
    # Reporting
    # --------------------------------------------------------------------- #
    @staticmethod
    def _shortfall(demand: LessonDemand, context: _RunContext) -> UnassignedLesson:
        return UnassignedLesson(
            class_id=demand.class_id,
            subject_id=demand.subject_id,
            teacher_id=demand.teacher_id,
            missing_hours=demand.remaining_hours,
            class_name=context.labels[demand.class_id],
            subject_name=context.labels[demand.subject_id],
            teacher_name=context.labels[demand.teacher_id],
        )

    @staticmethod
    def _detect_overwork(state: _PlacementState, context: _RunContext, rules: RuleSet) -> List[str]:
        if rules.overwork_threshold is None:
            return []
        warnings = []
        for teacher_id, hours in state.teacher_week_count.items():
            if hours >= rules.overwork_threshold:
                warnings.append(
                    f"🚨 OVERWORK ALERT: {context.labels[teacher_id]} assigned {hours} hours/week "
                    f"(threshold: {rules.overwork_threshold}h) - Review workload!"
                )
        return warnings
