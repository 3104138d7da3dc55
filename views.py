"""Read-only projections of teacher grids."""
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from entities import Grid, ScheduleEntry, TeacherSchedule
from time_model import DEFAULT_TIME_MODEL, TimeModel


def class_view(schedules: Iterable[TeacherSchedule], class_id: str, levels: Optional[Iterable[str]] = None,
               time_model: Optional[TimeModel] = None) -> Grid:
    """Class grid built by scanning teacher grids.

    With ``levels`` the grid covers the class's whole day, fixed periods
    included; without them only the periods holding lessons appear.
    """
    time_model = time_model or DEFAULT_TIME_MODEL
    grid: Grid = {day: {} for day in time_model.days}
    if levels:
        period_ids, fixed = time_model.grid_layout(levels)
        for day in time_model.days:
            for period in period_ids:
                subject = fixed.get(period)
                grid[day][period] = ScheduleEntry.fixed(subject) if subject else None

    for schedule in schedules:
        for day, period, entry in schedule.lessons():
            if entry.class_id != class_id:
                continue
            grid.setdefault(day, {})[period] = ScheduleEntry(
                subject_id=entry.subject_id,
                class_id=class_id,
                teacher_id=schedule.teacher_id,
            )
    return grid


def daily_agenda(schedule: TeacherSchedule, time_model: Optional[TimeModel] = None,
                 level: Optional[str] = None) -> Dict[str, List[dict]]:
    """Lessons per day with their clock times, sorted by period."""
    time_model = time_model or DEFAULT_TIME_MODEL
    levels = [level] if level else time_model.levels
    order = {period: index for index, period in enumerate(time_model.all_period_ids(levels))}

    agenda = defaultdict(list)
    for day, period, entry in schedule.lessons():
        definition = None
        for candidate in levels:
            definition = time_model.period_definition(candidate, period)
            if definition is not None:
                break
        agenda[day].append({
            "period": period,
            "time": definition.time_range if definition else None,
            "subjectId": entry.subject_id,
            "classId": entry.class_id,
        })

    for day in agenda:
        agenda[day].sort(key=lambda item: order.get(item["period"], len(order)))
    return {day: agenda[day] for day in time_model.days if day in agenda}
