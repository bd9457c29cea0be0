# timetable_engine/evaluation.py
from collections import defaultdict
from dataclasses import dataclass
from typing import DefaultDict, Dict, List, Optional, Tuple

import numpy as np

from .config import EngineConfig
from .domains import Domain
from .model import Assignment


@dataclass
class EvaluationResult:
    score: float
    penalty: int
    spread: int
    idle_gaps: int
    back_to_back_labs: int
    faculty_gaps: Dict[str, int]
    violations: List[str]


def evaluate(assignment: Assignment, domain: Domain, cfg: Optional[EngineConfig] = None) -> EvaluationResult:
    """
    Soft-constraint penalties of a complete assignment. The score is the
    negated weighted penalty, so 0.0 is the best attainable value.
    """
    cfg = cfg or EngineConfig()
    n_days, n_hours = domain.days_per_week, domain.hours_per_day
    fac_ids = sorted(domain.faculties)
    fac_index = {fid: i for i, fid in enumerate(fac_ids)}

    # Matrices [faculty][day][hour] and [combo] -> sessions per day
    fac_occ = np.zeros((len(fac_ids), n_days, n_hours), dtype=int)
    sessions: DefaultDict[str, np.ndarray] = defaultdict(lambda: np.zeros(n_days, dtype=int))
    lab_blocks: DefaultDict[Tuple[str, int], List[Tuple[int, int]]] = defaultdict(list)
    violations: List[str] = []

    for p in assignment.placements:
        combo = domain.combos[p.combo_id]
        fac_occ[fac_index[combo.faculty_id], p.day, p.start:p.end] += 1
        sessions[p.combo_id][p.day] += 1
        if domain.subjects[combo.subject_id].is_lab:
            lab_blocks[(combo.class_id, p.day)].append((p.start, p.end))

    # Uneven spread: sessions of one combo beyond its fair share of a day
    spread = 0
    for combo_id in sorted(sessions):
        per_day = sessions[combo_id]
        days = domain.classes[domain.combos[combo_id].class_id].days_per_week
        fair = -(-int(per_day.sum()) // days)
        excess = int(np.clip(per_day - fair, 0, None).sum())
        if excess:
            spread += excess
            violations.append(f"Combo {combo_id}: {excess} session(s) above {fair} per day")

    # Faculty idle hours between the first and last teaching hour of a day
    faculty_gaps: Dict[str, int] = {}
    for fid, i in fac_index.items():
        gaps = 0
        for day in range(n_days):
            taught = np.flatnonzero(fac_occ[i, day])
            if len(taught) >= 2:
                gaps += int(taught[-1] - taught[0] + 1 - len(taught))
        if gaps:
            faculty_gaps[fid] = gaps
            violations.append(f"Faculty {fid}: {gaps} idle hour(s)")
    idle_gaps = sum(faculty_gaps.values())

    # Labs of the same class directly after one another
    back_to_back = 0
    for (class_id, day), blocks in sorted(lab_blocks.items()):
        blocks.sort()
        for (_, end), (start, _) in zip(blocks, blocks[1:]):
            if start == end:
                back_to_back += 1
                violations.append(f"Class {class_id}: back-to-back labs on day {day} at hour {start}")

    penalty = (
        cfg.weight_spread * spread
        + cfg.weight_idle_gap * idle_gaps
        + cfg.weight_back_to_back_lab * back_to_back
    )
    return EvaluationResult(
        score=float(-penalty),
        penalty=int(penalty),
        spread=spread,
        idle_gaps=idle_gaps,
        back_to_back_labs=back_to_back,
        faculty_gaps=faculty_gaps,
        violations=violations,
    )
