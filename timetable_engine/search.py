# timetable_engine/search.py
import logging
import random
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .config import EngineConfig
from .constraints import Occupancy, candidate_starts
from .domains import ComboDemand, Domain
from .model import Assignment, Placement

logger = logging.getLogger(__name__)

COMPLETE = "complete"
INFEASIBLE = "infeasible"


@dataclass(frozen=True)
class Unit:
    """One block of demand: `length` contiguous hours of a combo."""
    combo_id: str
    length: int


@dataclass
class _Frame:
    unit: Unit
    candidates: List[Tuple[int, int]]
    cursor: int = 0
    placement: Optional[Placement] = None


@dataclass
class TrialResult:
    trial: int
    seed: int
    status: str
    assignment: Optional[Assignment]
    backtracks: int
    attempts: int
    exhausted: bool
    elapsed_s: float
    timed_out: bool = False

    @property
    def complete(self) -> bool:
        return self.status == COMPLETE


class SlotSearch:
    """
    Places every demand unit of a domain into the day/hour grid.

    Units are taken one class at a time, hardest first, and each unit scans
    its candidate starts in a seed-permuted order. When a unit has no valid
    candidate left, the most recent placement is released and its unit
    resumes from its next candidate. Repeated blocks of one combo are
    interchangeable, so each takes a later start than the one before it.
    The frames live on an explicit stack, so the backtrack budget is a
    plain counter.
    """

    def __init__(self, domain: Domain, cfg: EngineConfig, seed: int):
        self.domain = domain
        self.cfg = cfg
        self.seed = seed
        self.rng = random.Random(seed)

    def work_queue(self) -> List[Unit]:
        by_class: Dict[str, List[ComboDemand]] = defaultdict(list)
        for d in self.domain.demands.values():
            if d.blocks:
                by_class[d.class_id].append(d)

        class_rank = {cid: self.rng.random() for cid in sorted(by_class)}
        class_order = sorted(
            by_class,
            key=lambda cid: (-sum(d.remaining_hours for d in by_class[cid]), class_rank[cid]),
        )

        units: List[Unit] = []
        for cid in class_order:
            demands = sorted(by_class[cid], key=lambda d: d.combo_id)
            rank = {d.combo_id: self.rng.random() for d in demands}
            # largest remaining demand first, lab before theory
            demands.sort(key=lambda d: (-d.remaining_hours, not d.is_lab, rank[d.combo_id]))
            for d in demands:
                units.extend(Unit(d.combo_id, n) for n in d.blocks)
        return units

    def candidates(self, unit: Unit, occ: Occupancy,
                   after: Optional[Tuple[int, int]] = None) -> List[Tuple[int, int]]:
        demand = self.domain.demands[unit.combo_id]
        starts = candidate_starts(self.domain, demand, unit.length)
        if after is not None:
            # identical units of one combo are placed in increasing (day, start) order
            starts = [c for c in starts if c > after]
        self.rng.shuffle(starts)
        if self.cfg.spread_heuristic:
            # stable sort: the permutation still breaks ties
            starts.sort(key=lambda c: (
                occ.combo_day_hours.get((unit.combo_id, c[0]), 0),
                occ.class_day_load.get((demand.class_id, c[0]), 0),
            ))
        return starts

    def run(self, trial: int = 0, deadline: Optional[float] = None) -> TrialResult:
        """
        `deadline` is a `time.perf_counter()` value; once it has passed the
        trial stops at its next backtrack, like an exhausted budget.
        """
        started = time.perf_counter()
        occ = Occupancy(self.domain)
        units = self.work_queue()
        budget = self.cfg.backtrack_budget

        stack: List[_Frame] = []
        backtracks = attempts = 0
        status, exhausted, timed_out = INFEASIBLE, False, False

        while True:
            if stack and stack[-1].placement is None:
                frame = stack[-1]
            elif len(stack) == len(units):
                status = COMPLETE
                break
            else:
                unit = units[len(stack)]
                after = None
                if stack and stack[-1].unit == unit:
                    last = stack[-1].placement
                    after = (last.day, last.start)
                frame = _Frame(unit, self.candidates(unit, occ, after))
                stack.append(frame)

            unit = frame.unit
            while frame.cursor < len(frame.candidates):
                day, start = frame.candidates[frame.cursor]
                frame.cursor += 1
                attempts += 1
                if occ.can_place(unit.combo_id, day, start, unit.length):
                    frame.placement = Placement(unit.combo_id, day, start, unit.length)
                    occ.commit(frame.placement)
                    break
            if frame.placement is not None:
                continue

            # No candidate left for this unit: undo the previous placement.
            stack.pop()
            if not stack:
                exhausted = True
                break
            backtracks += 1
            if backtracks > budget:
                break
            if deadline is not None and time.perf_counter() > deadline:
                timed_out = True
                break
            prev = stack[-1]
            occ.release(prev.placement)
            prev.placement = None

        elapsed = time.perf_counter() - started
        result = TrialResult(
            trial=trial,
            seed=self.seed,
            status=status,
            assignment=occ.to_assignment() if status == COMPLETE else None,
            backtracks=backtracks,
            attempts=attempts,
            exhausted=exhausted,
            elapsed_s=elapsed,
            timed_out=timed_out,
        )
        logger.debug(
            "Trial %d (seed %d): %s after %d backtracks, %d attempts, %.3fs",
            trial, self.seed, status, backtracks, attempts, elapsed,
        )
        return result
