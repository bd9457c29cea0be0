# timetable_engine/model.py
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Tuple

DayIdx = int
HourIdx = int
Cell = Tuple[DayIdx, HourIdx]

THEORY = "theory"
LAB = "lab"


@dataclass(frozen=True)
class Faculty:
    id: str
    name: str


@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    semester: Optional[int]
    weekly_hours: int
    kind: str           # "theory" | "lab"

    @property
    def is_lab(self) -> bool:
        return self.kind == LAB


@dataclass(frozen=True)
class ClassSection:
    id: str
    name: str
    semester: Optional[int]
    section: str
    days_per_week: int
    combo_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Combo:
    # A combo = "this faculty teaches this subject to this class"
    id: str
    faculty_id: str
    subject_id: str
    class_id: str
    name: str = ""


@dataclass(frozen=True)
class Placement:
    """One contiguous block of a combo on a single day."""
    combo_id: str
    day: DayIdx
    start: HourIdx
    length: int = 1
    fixed: bool = False

    @property
    def end(self) -> HourIdx:
        return self.start + self.length

    def cells(self) -> Iterator[Cell]:
        for h in range(self.start, self.end):
            yield (self.day, h)


@dataclass(frozen=True)
class Assignment:
    placements: Tuple[Placement, ...]
    # (class_id, day, hour) -> combo_id
    class_cells: Dict[Tuple[str, DayIdx, HourIdx], str] = field(default_factory=dict)
    # (faculty_id, day, hour) -> combo_id
    faculty_cells: Dict[Tuple[str, DayIdx, HourIdx], str] = field(default_factory=dict)

    def hours_for(self, combo_id: str) -> int:
        return sum(p.length for p in self.placements if p.combo_id == combo_id)

    def placements_for(self, combo_id: str) -> Tuple[Placement, ...]:
        return tuple(p for p in self.placements if p.combo_id == combo_id)
