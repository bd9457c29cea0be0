# timetable_engine/domains.py
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .config import EngineConfig
from .errors import CapacityError, DomainValidationError
from .model import ClassSection, Combo, Faculty, Placement, Subject
from .schema import (
    ClassRecord,
    ComboRecord,
    FacultyRecord,
    FixedSlotRecord,
    SubjectRecord,
    parse_records,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComboDemand:
    combo_id: str
    class_id: str
    faculty_id: str
    is_lab: bool
    weekly_hours: int
    blocks: Tuple[int, ...]     # still to place, largest first

    @property
    def remaining_hours(self) -> int:
        return sum(self.blocks)


@dataclass(frozen=True)
class Domain:
    days_per_week: int
    hours_per_day: int
    faculties: Dict[str, Faculty]
    subjects: Dict[str, Subject]
    classes: Dict[str, ClassSection]
    combos: Dict[str, Combo]
    demands: Dict[str, ComboDemand]
    fixed: Tuple[Placement, ...]
    lab_block_size: int = 2

    def class_demand(self, class_id: str) -> int:
        return sum(d.remaining_hours for d in self.demands.values() if d.class_id == class_id)

    def total_demand(self) -> int:
        return sum(d.remaining_hours for d in self.demands.values())


def block_shape(weekly_hours: int, is_lab: bool, lab_block_size: int = 2) -> Tuple[int, ...]:
    """
    Theory hours are single-slot units. Lab hours are full contiguous blocks,
    plus one shorter block for the leftover when the hours do not divide
    evenly (e.g. 5 lab hours with pairs -> (2, 2, 1)).
    """
    if not is_lab or lab_block_size <= 1:
        return (1,) * weekly_hours
    full, rest = divmod(weekly_hours, lab_block_size)
    return (lab_block_size,) * full + ((rest,) if rest else ())


def _unique(records: Iterable[Any], what: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for rec in records:
        if rec.id in out:
            raise DomainValidationError(f"duplicate {what} id '{rec.id}'", reason="invalid_input")
        out[rec.id] = rec
    return out


def _lab_runs(cells: List[Tuple[int, int]], size: int) -> List[Tuple[int, int, int]]:
    # Consecutive pinned hours on the same day, chunked to at most `size`.
    runs: List[Tuple[int, int, int]] = []
    for day, hour in sorted(cells):
        if runs:
            d, s, n = runs[-1]
            if d == day and s + n == hour and n < size:
                runs[-1] = (d, s, n + 1)
                continue
        runs.append((day, hour, 1))
    return runs


class _PinBoard:
    """Cells claimed by fixed slots, per class and per faculty."""

    def __init__(self):
        self.by_class: Dict[Tuple[str, int, int], str] = {}
        self.by_faculty: Dict[Tuple[str, int, int], str] = {}

    def is_free(self, combo: Combo, day: int, hour: int) -> bool:
        return ((combo.class_id, day, hour) not in self.by_class
                and (combo.faculty_id, day, hour) not in self.by_faculty)

    def claim(self, combo: Combo, day: int, hour: int) -> None:
        ckey = (combo.class_id, day, hour)
        fkey = (combo.faculty_id, day, hour)
        other = self.by_class.get(ckey) or self.by_faculty.get(fkey)
        if other is not None:
            raise DomainValidationError(
                f"fixed slot ({day}, {hour}) of combo '{combo.id}' is already claimed by combo '{other}'",
                reason="conflicting_fixed_slots",
                details={"combo_id": combo.id, "day": day, "hour": hour, "claimed_by": other},
            )
        self.by_class[ckey] = combo.id
        self.by_faculty[fkey] = combo.id


def _pin_fixed_slots(
    records: List[FixedSlotRecord],
    combos: Dict[str, Combo],
    subjects: Dict[str, Subject],
    classes: Dict[str, ClassSection],
    blocks: Dict[str, List[int]],
    hours_per_day: int,
    lab_block_size: int,
) -> List[Placement]:
    board = _PinBoard()
    requested: Dict[str, List[Tuple[int, int]]] = defaultdict(list)

    # Pass 1: every supplied cell, exactly as given.
    for rec in records:
        combo = combos.get(rec.combo_id)
        if combo is None:
            raise DomainValidationError(
                f"fixed slot references unknown combo '{rec.combo_id}'",
                reason="unknown_reference",
                details={"combo_id": rec.combo_id},
            )
        if rec.class_id is not None and rec.class_id != combo.class_id:
            raise DomainValidationError(
                f"fixed slot names class '{rec.class_id}' but combo '{combo.id}' belongs to '{combo.class_id}'",
                reason="invalid_fixed_slot",
                details={"combo_id": combo.id, "class_id": rec.class_id},
            )
        cls = classes[combo.class_id]
        if rec.day >= cls.days_per_week or rec.hour >= hours_per_day:
            raise DomainValidationError(
                f"fixed slot ({rec.day}, {rec.hour}) of combo '{combo.id}' is outside the grid of class '{cls.id}'",
                reason="invalid_fixed_slot",
                details={"combo_id": combo.id, "day": rec.day, "hour": rec.hour},
            )
        board.claim(combo, rec.day, rec.hour)
        requested[combo.id].append((rec.day, rec.hour))

    # Pass 2: turn the pinned cells into placements that consume demand.
    placements: List[Placement] = []
    for combo_id, cells in requested.items():
        combo = combos[combo_id]
        subject = subjects[combo.subject_id]
        remaining = blocks[combo_id]
        if len(cells) > sum(remaining):
            raise DomainValidationError(
                f"combo '{combo_id}' has {len(cells)} fixed hours but needs only {subject.weekly_hours}",
                reason="fixed_slot_exceeds_demand",
                details={"combo_id": combo_id, "fixed": len(cells), "weekly_hours": subject.weekly_hours},
            )

        if not subject.is_lab or lab_block_size <= 1:
            for day, hour in cells:
                remaining.remove(1)
                placements.append(Placement(combo_id, day, hour, 1, fixed=True))
            continue

        for day, start, length in _lab_runs(cells, lab_block_size):
            lo, hi = start, start + length
            # Extend forward first, then backward, over cells nobody pinned.
            while hi - lo < lab_block_size and hi < hours_per_day and board.is_free(combo, day, hi):
                hi += 1
            while hi - lo < lab_block_size and lo > 0 and board.is_free(combo, day, lo - 1):
                lo -= 1
            if hi - lo == lab_block_size and lab_block_size in remaining:
                for h in list(range(lo, start)) + list(range(start + length, hi)):
                    board.claim(combo, day, h)
                remaining.remove(lab_block_size)
                placements.append(Placement(combo_id, day, lo, lab_block_size, fixed=True))
            elif length in remaining:
                remaining.remove(length)
                placements.append(Placement(combo_id, day, start, length, fixed=True))
            else:
                raise DomainValidationError(
                    f"fixed lab hours of combo '{combo_id}' at day {day}, hour {start} "
                    f"cannot form a contiguous block",
                    reason="invalid_fixed_slot",
                    details={"combo_id": combo_id, "day": day, "hour": start},
                )
    return placements


def build_domain(
    faculties: Iterable[Any],
    subjects: Iterable[Any],
    classes: Iterable[Any],
    combos: Iterable[Any],
    fixed_slots: Optional[Iterable[Any]] = None,
    cfg: Optional[EngineConfig] = None,
    days_per_week: Optional[int] = None,
    hours_per_day: Optional[int] = None,
) -> Domain:
    """
    Validates the raw entity collections and derives the scheduling domain:
    per-combo demand, the pinned placements and the capacity check. Nothing
    is searched here; any problem is raised before a trial starts.
    """
    cfg = cfg or EngineConfig()
    n_days = int(days_per_week or cfg.days_per_week)
    n_hours = int(hours_per_day or cfg.hours_per_day)
    if n_days < 1 or n_hours < 1:
        raise DomainValidationError("grid must have at least one day and one hour", reason="invalid_input")

    fac_recs = _unique(parse_records(FacultyRecord, faculties), "faculty")
    subj_recs = _unique(parse_records(SubjectRecord, subjects), "subject")
    class_recs = _unique(parse_records(ClassRecord, classes), "class")
    combo_recs = _unique(parse_records(ComboRecord, combos), "combo")
    fixed_recs = parse_records(FixedSlotRecord, fixed_slots)

    fac_map = {fid: Faculty(id=fid, name=r.name or fid) for fid, r in fac_recs.items()}
    subj_map = {
        sid: Subject(id=sid, name=r.name or sid, semester=r.semester,
                     weekly_hours=r.weekly_hours, kind=r.kind)
        for sid, r in subj_recs.items()
    }

    class_map: Dict[str, ClassSection] = {}
    for cid, r in class_recs.items():
        days = n_days if r.days_per_week is None else int(r.days_per_week)
        if days < 1 or days > n_days:
            raise DomainValidationError(
                f"class '{cid}' has days_per_week={days}, grid has {n_days} days",
                reason="invalid_days_per_week",
                details={"class_id": cid, "days_per_week": days, "grid_days": n_days},
            )
        class_map[cid] = ClassSection(
            id=cid, name=r.name or cid, semester=r.semester, section=r.section,
            days_per_week=days, combo_ids=tuple(r.combo_ids),
        )

    combo_map: Dict[str, Combo] = {}
    subject_seen: Dict[Tuple[str, str], str] = {}
    for cid, r in combo_recs.items():
        for ref, pool, what in ((r.faculty_id, fac_map, "faculty"),
                                (r.subject_id, subj_map, "subject"),
                                (r.class_id, class_map, "class")):
            if ref not in pool:
                raise DomainValidationError(
                    f"combo '{cid}' references unknown {what} '{ref}'",
                    reason="unknown_reference",
                    details={"combo_id": cid, what + "_id": ref},
                )
        subj, cls = subj_map[r.subject_id], class_map[r.class_id]
        if subj.semester is not None and cls.semester is not None and subj.semester != cls.semester:
            raise DomainValidationError(
                f"combo '{cid}': subject semester ({subj.semester}) does not match class semester ({cls.semester})",
                reason="semester_mismatch",
                details={"combo_id": cid},
            )
        key = (r.class_id, r.subject_id)
        if key in subject_seen:
            raise DomainValidationError(
                f"class '{r.class_id}' has more than one combo for subject '{r.subject_id}'",
                reason="duplicate_subject_for_class",
                details={"class_id": r.class_id, "subject_id": r.subject_id,
                         "combo_ids": [subject_seen[key], cid]},
            )
        subject_seen[key] = cid
        combo_map[cid] = Combo(id=cid, faculty_id=r.faculty_id, subject_id=r.subject_id,
                               class_id=r.class_id, name=r.name)

    for cls in class_map.values():
        for combo_id in cls.combo_ids:
            combo = combo_map.get(combo_id)
            if combo is None or combo.class_id != cls.id:
                raise DomainValidationError(
                    f"class '{cls.id}' lists combo '{combo_id}' which is not one of its combos",
                    reason="unknown_reference",
                    details={"class_id": cls.id, "combo_id": combo_id},
                )

    blocks: Dict[str, List[int]] = {
        cid: list(block_shape(subj_map[c.subject_id].weekly_hours,
                              subj_map[c.subject_id].is_lab, cfg.lab_block_size))
        for cid, c in combo_map.items()
    }
    fixed = _pin_fixed_slots(fixed_recs, combo_map, subj_map, class_map,
                             blocks, n_hours, cfg.lab_block_size)

    demands = {
        cid: ComboDemand(
            combo_id=cid,
            class_id=c.class_id,
            faculty_id=c.faculty_id,
            is_lab=subj_map[c.subject_id].is_lab,
            weekly_hours=subj_map[c.subject_id].weekly_hours,
            blocks=tuple(sorted(blocks[cid], reverse=True)),
        )
        for cid, c in combo_map.items()
    }

    pinned_per_class: Dict[str, int] = defaultdict(int)
    for p in fixed:
        pinned_per_class[combo_map[p.combo_id].class_id] += p.length
    short = []
    for cls in class_map.values():
        demand = sum(d.remaining_hours for d in demands.values() if d.class_id == cls.id)
        capacity = cls.days_per_week * n_hours - pinned_per_class[cls.id]
        if demand > capacity:
            short.append({"class_id": cls.id, "demand": demand, "capacity": capacity})
    if short:
        logger.warning("Insufficient capacity for %d class(es): %s", len(short), short)
        raise CapacityError(
            "weekly demand exceeds the available slots of "
            + ", ".join(f"class '{s['class_id']}'" for s in short),
            details=short,
        )

    domain = Domain(
        days_per_week=n_days,
        hours_per_day=n_hours,
        faculties=fac_map,
        subjects=subj_map,
        classes=class_map,
        combos=combo_map,
        demands=demands,
        fixed=tuple(fixed),
        lab_block_size=cfg.lab_block_size,
    )
    logger.info(
        "Domain: %d classes, %d faculties, %d combos, %d fixed placements, %d hours to place on a %dx%d grid",
        len(class_map), len(fac_map), len(combo_map), len(fixed), domain.total_demand(), n_days, n_hours,
    )
    return domain
