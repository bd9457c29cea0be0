# timetable_engine/constraints.py
from collections import defaultdict
from typing import DefaultDict, Dict, List, Tuple

from .domains import ComboDemand, Domain
from .errors import InvariantViolation
from .model import Assignment, Placement


class Occupancy:
    """
    Mutable per-trial state: which class and which faculty holds every cell,
    how many hours each combo has, and the log of committed placements.
    Fixed placements are committed on construction and can never be released.
    """

    def __init__(self, domain: Domain):
        self.domain = domain
        self.class_cells: Dict[Tuple[str, int, int], str] = {}
        self.faculty_cells: Dict[Tuple[str, int, int], str] = {}
        self.combo_hours: DefaultDict[str, int] = defaultdict(int)
        self.combo_day_hours: DefaultDict[Tuple[str, int], int] = defaultdict(int)
        self.class_day_load: DefaultDict[Tuple[str, int], int] = defaultdict(int)
        self.log: List[Placement] = []
        for p in domain.fixed:
            if not self.can_place(p.combo_id, p.day, p.start, p.length):
                raise InvariantViolation(f"fixed placement {p} overlaps another fixed placement")
            self.commit(p)

    def can_place(self, combo_id: str, day: int, start: int, length: int) -> bool:
        combo = self.domain.combos[combo_id]
        cls = self.domain.classes[combo.class_id]
        if day < 0 or day >= cls.days_per_week:
            return False
        if start < 0 or start + length > self.domain.hours_per_day:
            return False
        for h in range(start, start + length):
            if (combo.class_id, day, h) in self.class_cells:
                return False
            if (combo.faculty_id, day, h) in self.faculty_cells:
                return False
        return True

    def commit(self, p: Placement) -> None:
        combo = self.domain.combos[p.combo_id]
        for day, h in p.cells():
            self.class_cells[(combo.class_id, day, h)] = p.combo_id
            self.faculty_cells[(combo.faculty_id, day, h)] = p.combo_id
        self.combo_hours[p.combo_id] += p.length
        self.combo_day_hours[(p.combo_id, p.day)] += p.length
        self.class_day_load[(combo.class_id, p.day)] += p.length
        self.log.append(p)

    def release(self, p: Placement) -> None:
        if p.fixed:
            raise InvariantViolation(f"attempt to release fixed placement {p}")
        if not self.log or self.log[-1] != p:
            raise InvariantViolation(f"release out of order: {p}")
        combo = self.domain.combos[p.combo_id]
        for day, h in p.cells():
            del self.class_cells[(combo.class_id, day, h)]
            del self.faculty_cells[(combo.faculty_id, day, h)]
        self.combo_hours[p.combo_id] -= p.length
        self.combo_day_hours[(p.combo_id, p.day)] -= p.length
        self.class_day_load[(combo.class_id, p.day)] -= p.length
        self.log.pop()

    def to_assignment(self) -> Assignment:
        return Assignment(
            placements=tuple(self.log),
            class_cells=dict(self.class_cells),
            faculty_cells=dict(self.faculty_cells),
        )


def candidate_starts(domain: Domain, demand: ComboDemand, length: int) -> List[Tuple[int, int]]:
    """Every (day, start) a block of `length` could use within the class's days."""
    days = domain.classes[demand.class_id].days_per_week
    return [
        (day, start)
        for day in range(days)
        for start in range(domain.hours_per_day - length + 1)
    ]


def verify_assignment(domain: Domain, assignment: Assignment) -> List[str]:
    violations: List[str] = []
    class_seen: Dict[Tuple[str, int, int], str] = {}
    faculty_seen: Dict[Tuple[str, int, int], str] = {}

    for p in assignment.placements:
        combo = domain.combos[p.combo_id]
        cls = domain.classes[combo.class_id]
        if p.day >= cls.days_per_week or p.start < 0 or p.end > domain.hours_per_day:
            violations.append(f"{p.combo_id}: placement {p.day}/{p.start}+{p.length} outside the grid")
        for day, h in p.cells():
            ckey, fkey = (combo.class_id, day, h), (combo.faculty_id, day, h)
            if ckey in class_seen:
                violations.append(f"class {combo.class_id} double-booked at {day}/{h}")
            if fkey in faculty_seen:
                violations.append(f"faculty {combo.faculty_id} double-booked at {day}/{h}")
            class_seen[ckey] = p.combo_id
            faculty_seen[fkey] = p.combo_id

    for combo_id, demand in domain.demands.items():
        placed = assignment.placements_for(combo_id)
        hours = sum(p.length for p in placed)
        if hours != demand.weekly_hours:
            violations.append(f"{combo_id}: {hours} hours placed, {demand.weekly_hours} required")
        if demand.is_lab and domain.lab_block_size > 1:
            short = [p for p in placed if p.length < domain.lab_block_size]
            allowed = 1 if demand.weekly_hours % domain.lab_block_size else 0
            if len(short) > allowed:
                violations.append(f"{combo_id}: lab hours split into {len(short)} partial blocks")

    placed_set = set(assignment.placements)
    for p in domain.fixed:
        if p not in placed_set:
            violations.append(f"fixed placement {p} missing from the assignment")
    return violations


def ensure_valid(domain: Domain, assignment: Assignment) -> None:
    violations = verify_assignment(domain, assignment)
    if violations:
        raise InvariantViolation(
            f"assignment breaks {len(violations)} hard constraint(s)",
            details=violations,
        )
