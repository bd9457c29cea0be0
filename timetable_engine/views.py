# timetable_engine/views.py
from typing import Any, Dict, Optional

import pandas as pd

from .domains import Domain
from .model import Assignment

Grid = Dict[int, Dict[int, Optional[Dict[str, Any]]]]


def _empty_grid(days: int, hours: int) -> Grid:
    return {d: {h: None for h in range(hours)} for d in range(days)}


def class_timetables(assignment: Assignment, domain: Domain) -> Dict[str, Grid]:
    """class id -> day -> hour -> cell (None when the class is free)."""
    out = {
        cid: _empty_grid(cls.days_per_week, domain.hours_per_day)
        for cid, cls in domain.classes.items()
    }
    for p in assignment.placements:
        combo = domain.combos[p.combo_id]
        subject = domain.subjects[combo.subject_id]
        faculty = domain.faculties[combo.faculty_id]
        for day, hour in p.cells():
            out[combo.class_id][day][hour] = {
                "combo_id": combo.id,
                "subject_id": subject.id,
                "subject_name": subject.name,
                "faculty_id": faculty.id,
                "faculty_name": faculty.name,
                "fixed": p.fixed,
            }
    return out


def faculty_timetables(assignment: Assignment, domain: Domain) -> Dict[str, Grid]:
    """faculty id -> day -> hour -> cell, derived from the same placements."""
    out = {
        fid: _empty_grid(domain.days_per_week, domain.hours_per_day)
        for fid in domain.faculties
    }
    for p in assignment.placements:
        combo = domain.combos[p.combo_id]
        subject = domain.subjects[combo.subject_id]
        cls = domain.classes[combo.class_id]
        for day, hour in p.cells():
            out[combo.faculty_id][day][hour] = {
                "combo_id": combo.id,
                "subject_id": subject.id,
                "subject_name": subject.name,
                "class_id": cls.id,
                "class_name": cls.name,
                "fixed": p.fixed,
            }
    return out


def timetables_to_frame(views: Dict[str, Grid], owner_column: str) -> pd.DataFrame:
    rows = []
    for owner, grid in views.items():
        for day, hours in grid.items():
            for hour, cell in hours.items():
                if cell is None:
                    continue
                rows.append({owner_column: owner, "day": day, "hour": hour, **cell})
    columns = [owner_column, "day", "hour"]
    df = pd.DataFrame(rows)
    if df.empty:
        return pd.DataFrame(columns=columns)
    return df.sort_values(columns).reset_index(drop=True)
