# timetable_engine/optimizer.py
import logging
import time
from concurrent import futures
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from .config import EngineConfig
from .constraints import ensure_valid
from .domains import Domain
from .evaluation import EvaluationResult, evaluate
from .search import SlotSearch, TrialResult

logger = logging.getLogger(__name__)

Scored = Tuple[TrialResult, Optional[EvaluationResult]]


@dataclass
class OptimizationResult:
    best: Optional[TrialResult]
    evaluation: Optional[EvaluationResult]
    history: List[Dict] = field(default_factory=list)
    timed_out: bool = False
    elapsed_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.best is not None

    @property
    def trials_run(self) -> int:
        return len(self.history)

    @property
    def trials_complete(self) -> int:
        return sum(1 for row in self.history if row["status"] == "complete")


def trial_seeds(seed: int, n: int) -> List[int]:
    """Independent per-trial seeds derived from one master seed."""
    return [int(child.generate_state(1)[0]) for child in np.random.SeedSequence(seed).spawn(n)]


def _better(candidate: Scored, incumbent: Optional[Scored]) -> bool:
    if incumbent is None:
        return True
    (c_res, c_eval), (i_res, i_eval) = candidate, incumbent
    # Lower trial index wins ties so completion order never matters.
    return (c_eval.score, -c_res.trial) > (i_eval.score, -i_res.trial)


class TrialOptimizer:
    def __init__(self, domain: Domain, cfg: EngineConfig):
        self.domain = domain
        self.cfg = cfg
        self.history: List[Dict] = []

    def _deadline(self, started: float) -> Optional[float]:
        return None if self.cfg.time_limit_s is None else started + self.cfg.time_limit_s

    def run_trial(self, trial: int, seed: int, deadline: Optional[float] = None) -> Scored:
        result = SlotSearch(self.domain, self.cfg, seed).run(trial, deadline)
        if not result.complete:
            return result, None
        ensure_valid(self.domain, result.assignment)
        return result, evaluate(result.assignment, self.domain, self.cfg)

    def _record(self, result: TrialResult, evaluation: Optional[EvaluationResult]) -> None:
        self.history.append({
            "trial": result.trial,
            "seed": result.seed,
            "status": result.status,
            "score": evaluation.score if evaluation else None,
            "backtracks": result.backtracks,
            "attempts": result.attempts,
            "exhausted": result.exhausted,
            "timed_out": result.timed_out,
            "elapsed_s": round(result.elapsed_s, 4),
        })

    def run(self, trial_count: Optional[int] = None, seed: Optional[int] = None) -> OptimizationResult:
        """
        Runs independent trials on a thread pool and keeps the best-scoring
        complete one. Trials share only the read-only domain. When the
        wall-clock ceiling expires, unfinished trials are dropped and the best
        result found so far is returned.
        """
        n = trial_count or self.cfg.trial_count
        seeds = trial_seeds(self.cfg.seed if seed is None else seed, n)
        self.history = []
        best: Optional[Scored] = None
        timed_out = False
        started = time.perf_counter()
        deadline = self._deadline(started)

        pool = futures.ThreadPoolExecutor(max_workers=min(self.cfg.max_workers, n))
        try:
            pending = [pool.submit(self.run_trial, i, s, deadline) for i, s in enumerate(seeds)]
            for fut in futures.as_completed(pending, timeout=self.cfg.time_limit_s):
                scored = fut.result()
                self._record(*scored)
                if scored[1] is not None and _better(scored, best):
                    best = scored
        except futures.TimeoutError:
            timed_out = True
            logger.warning("Time limit of %.1fs reached after %d of %d trials",
                           self.cfg.time_limit_s, len(self.history), n)
        finally:
            # trials still running stop at their next backtrack past the deadline
            pool.shutdown(wait=not timed_out, cancel_futures=True)

        self.history.sort(key=lambda row: row["trial"])
        timed_out = timed_out or any(row["timed_out"] for row in self.history)
        elapsed = time.perf_counter() - started
        out = OptimizationResult(
            best=best[0] if best else None,
            evaluation=best[1] if best else None,
            history=list(self.history),
            timed_out=timed_out,
            elapsed_s=elapsed,
        )
        logger.info(
            "Optimizer: %d/%d trials complete, best score %s, %.2fs",
            out.trials_complete, n, out.evaluation.score if out.evaluation else None, elapsed,
        )
        return out

    def first_feasible(self, attempts: Optional[int] = None, seed: Optional[int] = None) -> OptimizationResult:
        """Runs trials one after another and stops at the first complete one."""
        n = attempts or self.cfg.generate_attempts
        self.history = []
        started = time.perf_counter()
        deadline = self._deadline(started)
        found: Optional[Scored] = None
        timed_out = False
        for i, s in enumerate(trial_seeds(self.cfg.seed if seed is None else seed, n)):
            if deadline is not None and time.perf_counter() > deadline:
                timed_out = True
                logger.warning("Time limit of %.1fs reached after %d of %d attempts",
                               self.cfg.time_limit_s, i, n)
                break
            scored = self.run_trial(i, s, deadline)
            self._record(*scored)
            if scored[1] is not None:
                found = scored
                break
            if scored[0].timed_out:
                timed_out = True
                break
        return OptimizationResult(
            best=found[0] if found else None,
            evaluation=found[1] if found else None,
            history=list(self.history),
            timed_out=timed_out,
            elapsed_s=time.perf_counter() - started,
        )
