"""
Unit tests for the greedy lesson scheduler
Covers placement rules, reporting of unplaced hours and run control
"""
import unittest

from config import GenerationSettings, RuleSet
from constraints import TimeConstraint
from entities import LessonDemand, ScheduleEntry, SchoolClass, Subject, Teacher, TeacherSchedule
from scheduler import ScheduleGenerator, sort_demands
from time_model import DAYS, DEFAULT_TIME_MODEL, MIDDLE, PRIMARY, simple_time_model


def math_teacher(teacher_id="t1", levels=(PRIMARY,)):
    return Teacher.from_branches(teacher_id, f"Teacher {teacher_id}", ["Math"], levels)


def primary_class(class_id="5A"):
    return SchoolClass(class_id, class_id, (PRIMARY,))


MATH = Subject("math", "Math", "Math", (PRIMARY,), 4)


def lessons_of(schedule):
    return [(day, period) for day, period, _ in schedule.lessons()]


class TestBasicPlacement(unittest.TestCase):

    def setUp(self):
        self.teacher = math_teacher()
        self.school_class = primary_class()
        self.generator = ScheduleGenerator(rules=RuleSet(), settings=GenerationSettings())

    def run_one(self, hours=4, constraints=(), generator=None):
        demand = LessonDemand("5A", "math", "t1", hours)
        return (generator or self.generator).generate(
            [demand], [self.teacher], [self.school_class], [MATH], constraints=constraints
        )

    def test_all_hours_placed(self):
        """A single demand with free slots is placed completely"""
        result = self.run_one()
        self.assertTrue(result.success)
        schedule = result.schedule_for("t1")
        self.assertEqual(len(lessons_of(schedule)), 4)
        self.assertEqual(result.statistics.unassigned_lessons, [])
        self.assertEqual(result.statistics.filled_slots, 4)
        self.assertEqual(result.demands[0].assigned_hours, 4)

    def test_total_slots_exclude_fixed_periods(self):
        """Primary grid has 9 teachable periods per day"""
        result = self.run_one()
        self.assertEqual(result.statistics.total_slots, 45)

    def test_unavailable_day_is_skipped(self):
        """Hours move to other days when the teacher is unavailable all Monday"""
        constraints = [
            TimeConstraint("teacher", "t1", "Monday", period, "unavailable")
            for period in DEFAULT_TIME_MODEL.teaching_periods(PRIMARY)
        ]
        result = self.run_one(constraints=constraints)
        placed = lessons_of(result.schedule_for("t1"))
        self.assertEqual(len(placed), 4)
        self.assertFalse([slot for slot in placed if slot[0] == "Monday"])

    def test_class_unavailable_slot_is_respected(self):
        """Class-side hard blocks exclude slots too"""
        constraints = [TimeConstraint("class", "5A", "Monday", "1", "unavailable")]
        result = self.run_one(constraints=constraints)
        self.assertNotIn(("Monday", "1"), lessons_of(result.schedule_for("t1")))

    def test_restricted_slot_is_avoided_when_possible(self):
        """Restricted slots cost more than free ones"""
        constraints = [TimeConstraint("teacher", "t1", "Monday", "1", "restricted")]
        result = self.run_one(hours=1, constraints=constraints)
        self.assertEqual(lessons_of(result.schedule_for("t1")), [("Monday", "2")])

    def test_fixed_slots_are_never_used(self):
        """Lunch and break periods stay fixed entries"""
        result = self.run_one(hours=20)
        schedule = result.schedule_for("t1")
        for day in DAYS:
            self.assertTrue(schedule.get(day, "5").is_fixed)
            self.assertTrue(schedule.get(day, "prep").is_fixed)
            self.assertTrue(schedule.get(day, "afternoon-breakfast").is_fixed)
        for _, period in lessons_of(schedule):
            self.assertIn(period, DEFAULT_TIME_MODEL.teaching_periods(PRIMARY))

    def test_consecutive_run_is_capped(self):
        """The fourth Monday hour skips the slot that would make a run of four"""
        result = self.run_one(generator=ScheduleGenerator(RuleSet(prefer_morning_hours=False), GenerationSettings()))
        self.assertEqual(lessons_of(result.schedule_for("t1")), [
            ("Monday", "1"), ("Monday", "2"), ("Monday", "3"), ("Monday", "6"),
        ])

    def test_deterministic(self):
        """Identical input gives identical output"""
        first = self.run_one(hours=7).to_dict()
        second = self.run_one(hours=7).to_dict()
        self.assertEqual(first, second)

    def test_input_demands_are_not_mutated(self):
        """Each run works on its own copy of the demands"""
        demand = LessonDemand("5A", "math", "t1", 4)
        self.generator.generate([demand], [self.teacher], [self.school_class], [MATH])
        self.assertEqual(demand.assigned_hours, 0)


class TestCapacity(unittest.TestCase):

    def test_shared_teacher_shortfall_goes_to_lower_priority(self):
        """12 hours into 10 weekly slots leaves 2 hours on the low priority demand"""
        model = simple_time_model([PRIMARY], periods_per_day=2)
        teacher = Teacher.from_branches("t1", "Ada", ["Math", "Science"], [PRIMARY])
        classes = [primary_class("5A"), primary_class("5B")]
        subjects = [
            Subject("math", "Math", "Math", (PRIMARY,), 6),
            Subject("sci", "Science", "Science", (PRIMARY,), 6),
        ]
        demands = [
            LessonDemand("5B", "sci", "t1", 6, priority="low"),
            LessonDemand("5A", "math", "t1", 6, priority="high"),
        ]
        result = ScheduleGenerator(RuleSet(), GenerationSettings(), model).generate(
            demands, [teacher], classes, subjects
        )
        self.assertTrue(result.success)
        unassigned = result.statistics.unassigned_lessons
        self.assertEqual(len(unassigned), 1)
        self.assertEqual(unassigned[0].class_id, "5B")
        self.assertEqual(unassigned[0].missing_hours, 2)
        self.assertEqual(result.statistics.filled_slots, 10)
        self.assertIn("hours missing", result.warnings[0])

    def test_hour_conservation(self):
        """assigned + missing always equals the requested hours"""
        model = simple_time_model([PRIMARY], periods_per_day=3, days=["Monday", "Tuesday"])
        teacher = math_teacher()
        demands = [LessonDemand("5A", "math", "t1", 9)]
        result = ScheduleGenerator(RuleSet(max_consecutive_hours=2), GenerationSettings(), model).generate(
            demands, [teacher], [primary_class()], [MATH]
        )
        missing = sum(u.missing_hours for u in result.statistics.unassigned_lessons)
        self.assertEqual(result.demands[0].assigned_hours + missing, 9)
        self.assertEqual(result.statistics.filled_slots, result.demands[0].assigned_hours)

    def test_consecutive_limit_on_single_day(self):
        """Only two hours fit when runs are capped at two in a three-period day"""
        model = simple_time_model([PRIMARY], periods_per_day=3, days=["Monday"])
        rules = RuleSet(max_consecutive_hours=2)
        result = ScheduleGenerator(rules, GenerationSettings(), model).generate(
            [LessonDemand("5A", "math", "t1", 5)], [math_teacher()], [primary_class()], [MATH]
        )
        self.assertEqual(result.statistics.unassigned_lessons[0].missing_hours, 3)

        rules = RuleSet(max_consecutive_hours=2, avoid_consecutive_same_subject=False)
        result = ScheduleGenerator(rules, GenerationSettings(), model).generate(
            [LessonDemand("5A", "math", "t1", 5)], [math_teacher()], [primary_class()], [MATH]
        )
        self.assertEqual(result.statistics.unassigned_lessons[0].missing_hours, 2)

    def test_teacher_daily_cap(self):
        """A daily cap of one spreads hours over the week"""
        rules = RuleSet(max_daily_hours_teacher=1)
        result = ScheduleGenerator(rules, GenerationSettings()).generate(
            [LessonDemand("5A", "math", "t1", 6)], [math_teacher()], [primary_class()], [MATH]
        )
        days = [day for day, _ in lessons_of(result.schedule_for("t1"))]
        self.assertEqual(sorted(days), sorted(DAYS))
        self.assertEqual(result.statistics.unassigned_lessons[0].missing_hours, 1)

    def test_class_daily_cap(self):
        """Two teachers together cannot exceed the class's daily cap"""
        art = Subject("art", "Art", "Art", (PRIMARY,), 5)
        artist = Teacher.from_branches("t2", "Frida", ["Art"], [PRIMARY])
        rules = RuleSet(max_daily_hours_class=2)
        model = simple_time_model([PRIMARY], periods_per_day=4, days=["Monday", "Tuesday"])
        result = ScheduleGenerator(rules, GenerationSettings(), model).generate(
            [LessonDemand("5A", "math", "t1", 4), LessonDemand("5A", "art", "t2", 4)],
            [math_teacher(), artist], [primary_class()], [MATH, art],
        )
        per_day = {}
        for schedule in result.schedules:
            for day, _, _ in schedule.lessons():
                per_day[day] = per_day.get(day, 0) + 1
        self.assertTrue(all(count <= 2 for count in per_day.values()))
        self.assertEqual(result.statistics.filled_slots, 4)

    def test_weekly_cap(self):
        """Optional weekly maximum stops placement"""
        rules = RuleSet(max_weekly_hours_teacher=3)
        result = ScheduleGenerator(rules, GenerationSettings()).generate(
            [LessonDemand("5A", "math", "t1", 5)], [math_teacher()], [primary_class()], [MATH]
        )
        self.assertEqual(result.statistics.filled_slots, 3)
        self.assertEqual(result.statistics.unassigned_lessons[0].missing_hours, 2)

    def test_overwork_warning(self):
        """Teachers reaching the threshold get an alert"""
        rules = RuleSet(overwork_threshold=4)
        result = ScheduleGenerator(rules, GenerationSettings()).generate(
            [LessonDemand("5A", "math", "t1", 4)], [math_teacher()], [primary_class()], [MATH]
        )
        self.assertTrue(any("OVERWORK" in w for w in result.warnings))

    def test_lunch_window_for_two_levels(self):
        """A teacher spanning primary and middle keeps period 5 or 6 free every day"""
        teacher = Teacher.from_branches("t1", "Ada", ["Math"], [PRIMARY, MIDDLE])
        classes = [SchoolClass("4A", "4A", (PRIMARY,)), SchoolClass("7A", "7A", (MIDDLE,))]
        subjects = [
            Subject("pm", "Math P", "Math", (PRIMARY,), 45),
            Subject("mm", "Math M", "Math", (MIDDLE,), 45),
        ]
        rules = RuleSet(max_daily_hours_teacher=10, avoid_consecutive_same_subject=False)
        result = ScheduleGenerator(rules, GenerationSettings()).generate(
            [LessonDemand("4A", "pm", "t1", 45), LessonDemand("7A", "mm", "t1", 45)],
            [teacher], classes, subjects,
        )
        schedule = result.schedule_for("t1")
        for day in DAYS:
            self.assertTrue(schedule.get(day, "5") is None or schedule.get(day, "6") is None)
            self.assertEqual(sum(1 for d, _ in lessons_of(schedule) if d == day), 9)


class TestDoubleBooking(unittest.TestCase):

    def test_no_double_booking_between_teachers(self):
        """Two teachers of one class never share a slot"""
        art = Subject("art", "Art", "Art", (PRIMARY,), 6)
        artist = Teacher.from_branches("t2", "Frida", ["Art"], [PRIMARY])
        result = ScheduleGenerator(RuleSet(), GenerationSettings()).generate(
            [LessonDemand("5A", "math", "t1", 6), LessonDemand("5A", "art", "t2", 6)],
            [math_teacher(), artist], [primary_class()], [MATH, art],
        )
        slots = [slot for schedule in result.schedules for slot in lessons_of(schedule)]
        self.assertEqual(len(slots), len(set(slots)))
        self.assertEqual(len(slots), 12)

    def test_saved_schedules_block_slots_and_count_conflicts(self):
        """Persisted lessons of other teachers are respected and counted"""
        other = TeacherSchedule.empty("t9", ["1", "2"])
        other.place("Monday", "1", ScheduleEntry("art", "5A"))
        model = simple_time_model([PRIMARY], periods_per_day=2)
        rules = RuleSet(prefer_morning_hours=False)
        result = ScheduleGenerator(rules, GenerationSettings(), model).generate(
            [LessonDemand("5A", "math", "t1", 1)], [math_teacher()], [primary_class()], [MATH],
            existing_schedules=[other],
        )
        self.assertEqual(lessons_of(result.schedule_for("t1")), [("Monday", "2")])
        self.assertEqual(result.statistics.conflict_count, 1)

    def test_saved_grid_of_scheduled_teacher_is_replaced(self):
        """The teacher's own saved grid does not block the new run"""
        old = TeacherSchedule.empty("t1", ["1", "2"])
        old.place("Monday", "1", ScheduleEntry("math", "5B"))
        model = simple_time_model([PRIMARY], periods_per_day=2)
        result = ScheduleGenerator(RuleSet(), GenerationSettings(), model).generate(
            [LessonDemand("5A", "math", "t1", 1)], [math_teacher()], [primary_class()], [MATH],
            existing_schedules=[old],
        )
        self.assertEqual(lessons_of(result.schedule_for("t1")), [("Monday", "1")])
        self.assertEqual(result.statistics.conflict_count, 0)


class TestModes(unittest.TestCase):

    def run_mode(self, algorithm, level, hours=5):
        settings = GenerationSettings(algorithm=algorithm, optimization_level=level)
        return ScheduleGenerator(RuleSet(), settings).generate(
            [LessonDemand("5A", "math", "t1", hours)], [math_teacher()], [primary_class()], [MATH]
        )

    def test_every_combination_places_all_hours(self):
        for algorithm in ("balanced", "compact", "distributed"):
            for level in ("fast", "balanced", "thorough"):
                with self.subTest(algorithm=algorithm, level=level):
                    result = self.run_mode(algorithm, level)
                    self.assertTrue(result.success)
                    self.assertEqual(result.statistics.filled_slots, 5)

    def test_distributed_spreads_over_days(self):
        """One hour per day for a five hour subject"""
        result = self.run_mode("distributed", "balanced")
        days = [day for day, _ in lessons_of(result.schedule_for("t1"))]
        self.assertEqual(sorted(days), sorted(DAYS))

    def test_fast_takes_first_free_slot(self):
        result = self.run_mode("balanced", "fast", hours=4)
        self.assertEqual(lessons_of(result.schedule_for("t1")), [
            ("Monday", "1"), ("Monday", "2"), ("Monday", "3"), ("Monday", "6"),
        ])

class TestScoring(unittest.TestCase):

    def place(self, demands, rules, settings=None, teachers=None, subjects=None, constraints=(),
              model=None, existing=()):
        generator = ScheduleGenerator(rules, settings or GenerationSettings(), model)
        return generator.generate(
            demands, teachers or [math_teacher()], [primary_class()], subjects or [MATH],
            constraints=constraints, existing_schedules=existing,
        )

    def test_morning_preference(self):
        """With Monday morning blocked the bonus moves the lesson to Tuesday morning, not Monday 12:30"""
        constraints = [TimeConstraint("teacher", "t1", "Monday", p, "unavailable") for p in ("1", "2", "3", "4")]
        demand = [LessonDemand("5A", "math", "t1", 1)]
        result = self.place(demand, RuleSet(), constraints=constraints)
        self.assertEqual(lessons_of(result.schedule_for("t1")), [("Tuesday", "1")])

        result = self.place(demand, RuleSet(prefer_morning_hours=False), constraints=constraints)
        self.assertEqual(lessons_of(result.schedule_for("t1")), [("Monday", "6")])

    def test_first_and_last_period_are_avoided(self):
        demand = [LessonDemand("5A", "math", "t1", 1)]
        result = self.place(demand, RuleSet(prefer_morning_hours=False))
        self.assertEqual(lessons_of(result.schedule_for("t1")), [("Monday", "1")])

        result = self.place(demand, RuleSet(prefer_morning_hours=False, avoid_first_last_period=True))
        self.assertEqual(lessons_of(result.schedule_for("t1")), [("Monday", "2")])

    def test_compact_places_next_to_existing_lesson(self):
        """Art lands beside the Monday 4 math lesson instead of at Monday 1"""
        art = Subject("art", "Art", "Art", (PRIMARY,), 1)
        artist = Teacher.from_branches("t2", "Frida", ["Art"], [PRIMARY])
        constraints = [TimeConstraint("teacher", "t1", "Monday", p, "unavailable") for p in ("1", "2", "3")]
        demands = [LessonDemand("5A", "math", "t1", 1), LessonDemand("5A", "art", "t2", 1)]
        rules = RuleSet(prefer_morning_hours=False)

        def art_slots(algorithm):
            result = self.place(
                demands, rules, GenerationSettings(algorithm=algorithm),
                teachers=[math_teacher(), artist], subjects=[MATH, art], constraints=constraints,
            )
            self.assertEqual(lessons_of(result.schedule_for("t1")), [("Monday", "4")])
            return lessons_of(result.schedule_for("t2"))

        self.assertEqual(art_slots("balanced"), [("Monday", "1")])
        self.assertEqual(art_slots("compact"), [("Monday", "3")])

    def test_thorough_keeps_room_for_remaining_hours(self):
        """Taking a Monday slot would fill the class's day while Tuesday offers a single slot"""
        model = simple_time_model([PRIMARY], periods_per_day=3, days=["Monday", "Tuesday"])
        other = TeacherSchedule.empty("t9", ["1", "2", "3"])
        other.place("Monday", "1", ScheduleEntry("art", "5A"))
        constraints = [TimeConstraint("teacher", "t1", "Tuesday", p, "unavailable") for p in ("2", "3")]
        # The weekly cap stops the run after the first choice
        rules = RuleSet(max_daily_hours_class=2, max_weekly_hours_teacher=1, prefer_morning_hours=False)
        demand = [LessonDemand("5A", "math", "t1", 3)]

        def first_choice(level):
            result = self.place(
                demand, rules, GenerationSettings(optimization_level=level),
                constraints=constraints, model=model, existing=[other],
            )
            return lessons_of(result.schedule_for("t1"))

        self.assertEqual(first_choice("balanced"), [("Monday", "2")])
        self.assertEqual(first_choice("thorough"), [("Tuesday", "1")])



class TestRunControl(unittest.TestCase):

    def test_empty_demands_fail(self):
        result = ScheduleGenerator(RuleSet(), GenerationSettings()).generate([], [], [], [])
        self.assertFalse(result.success)
        self.assertEqual(result.schedules, [])
        self.assertTrue(result.errors)

    def test_unknown_teacher_fails(self):
        result = ScheduleGenerator(RuleSet(), GenerationSettings()).generate(
            [LessonDemand("5A", "math", "ghost", 2)], [math_teacher()], [primary_class()], [MATH]
        )
        self.assertFalse(result.success)
        self.assertIn("ghost", result.errors[0])

    def test_unknown_level_fails(self):
        school_class = SchoolClass("5A", "5A", ("college",))
        result = ScheduleGenerator(RuleSet(), GenerationSettings()).generate(
            [LessonDemand("5A", "math", "t1", 2)], [math_teacher()], [school_class], [MATH]
        )
        self.assertFalse(result.success)
        self.assertIn("college", result.errors[0])

    def test_invalid_rules_fail(self):
        result = ScheduleGenerator(RuleSet(max_daily_hours_teacher=0), GenerationSettings()).generate(
            [LessonDemand("5A", "math", "t1", 2)], [math_teacher()], [primary_class()], [MATH]
        )
        self.assertFalse(result.success)

    def test_invalid_algorithm_fails(self):
        result = ScheduleGenerator(RuleSet(), GenerationSettings(algorithm="random")).generate(
            [LessonDemand("5A", "math", "t1", 2)], [math_teacher()], [primary_class()], [MATH]
        )
        self.assertFalse(result.success)

    def test_cancellation_keeps_placements(self):
        """Cancelling after the first demand reports the rest as unassigned"""
        art = Subject("art", "Art", "Art", (PRIMARY,), 3)
        artist = Teacher.from_branches("t2", "Frida", ["Art"], [PRIMARY])
        calls = []

        def should_cancel():
            calls.append(1)
            return len(calls) > 1

        result = ScheduleGenerator(RuleSet(), GenerationSettings()).generate(
            [LessonDemand("5A", "math", "t1", 4), LessonDemand("5A", "art", "t2", 3)],
            [math_teacher(), artist], [primary_class()], [MATH, art],
            should_cancel=should_cancel,
        )
        self.assertTrue(result.cancelled)
        self.assertEqual(result.statistics.filled_slots, 4)
        unassigned = result.statistics.unassigned_lessons
        self.assertEqual([(u.subject_id, u.missing_hours) for u in unassigned], [("art", 3)])

    def test_priority_order(self):
        demands = [
            LessonDemand("a", "s", "t", 2, priority="low"),
            LessonDemand("b", "s", "t", 1, priority="high"),
            LessonDemand("c", "s", "t", 5, priority="medium"),
            LessonDemand("d", "s", "t", 3, priority="high"),
        ]
        self.assertEqual([d.class_id for d in sort_demands(demands)], ["d", "b", "c", "a"])


if __name__ == '__main__':
    unittest.main()
