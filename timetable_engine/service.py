"""
Entry points used by the web layer.

Both functions take the raw entity collections of one owner and return a
plain mapping. Domain-level failures (bad input, not enough capacity, no
feasible schedule, engine defects) come back as ``{"ok": False, ...}`` with a
machine-readable ``reason``; they are never raised to the caller.
"""
import logging
from typing import Any, Dict, Iterable, Optional

from .config import EngineConfig
from .domains import build_domain
from .errors import DomainValidationError, InfeasibleError, InvariantViolation, SchedulingError
from .optimizer import OptimizationResult, TrialOptimizer
from .views import class_timetables, faculty_timetables

logger = logging.getLogger(__name__)


def _failure(err: SchedulingError) -> Dict[str, Any]:
    if isinstance(err, InvariantViolation):
        logger.error("Engine invariant violated: %s %s", err.message, err.details)
    else:
        logger.warning("Generation failed (%s): %s", err.reason, err.message)
    return err.to_payload()


def _resolve_config(config: Optional[EngineConfig], **overrides: Any) -> EngineConfig:
    try:
        return (config or EngineConfig()).with_overrides(**overrides)
    except ValueError as err:
        raise DomainValidationError(str(err), reason="invalid_input", details=overrides) from err


def _infeasible(result: OptimizationResult) -> InfeasibleError:
    return InfeasibleError(
        f"no feasible assignment found in {result.trials_run} trial(s)",
        details={
            "trials_run": result.trials_run,
            "timed_out": result.timed_out,
            "exhausted": sum(1 for row in result.history if row["exhausted"]),
        },
    )


def generate(
    faculties: Iterable[Any],
    subjects: Iterable[Any],
    classes: Iterable[Any],
    combos: Iterable[Any],
    days_per_week: Optional[int] = None,
    hours_per_day: Optional[int] = None,
    fixed_slots: Optional[Iterable[Any]] = None,
    config: Optional[EngineConfig] = None,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Single-schedule generation: runs the search sequentially, up to
    ``generate_attempts`` seeds, and returns the first complete assignment.
    """
    try:
        cfg = _resolve_config(config, days_per_week=days_per_week, hours_per_day=hours_per_day, seed=seed)
        domain = build_domain(faculties, subjects, classes, combos, fixed_slots, cfg)
        result = TrialOptimizer(domain, cfg).first_feasible()
        if not result.ok:
            raise _infeasible(result)
    except SchedulingError as err:
        return _failure(err)

    return {
        "ok": True,
        "class_timetables": class_timetables(result.best.assignment, domain),
        "faculty_timetables": faculty_timetables(result.best.assignment, domain),
        "score": result.evaluation.score,
        "trial": result.best.trial,
    }


def optimize(
    faculties: Iterable[Any],
    subjects: Iterable[Any],
    classes: Iterable[Any],
    combos: Iterable[Any],
    fixed_slots: Optional[Iterable[Any]] = None,
    trial_count: Optional[int] = None,
    config: Optional[EngineConfig] = None,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """Best of ``trial_count`` independent trials, ranked by score."""
    try:
        cfg = _resolve_config(config, trial_count=trial_count, seed=seed)
        domain = build_domain(faculties, subjects, classes, combos, fixed_slots, cfg)
        result = TrialOptimizer(domain, cfg).run()
        if not result.ok:
            raise _infeasible(result)
    except SchedulingError as err:
        return _failure(err)

    return {
        "ok": True,
        "best_class_timetables": class_timetables(result.best.assignment, domain),
        "best_faculty_timetables": faculty_timetables(result.best.assignment, domain),
        "best_score": result.evaluation.score,
        "trials_run": result.trials_run,
        "trials_complete": result.trials_complete,
        "timed_out": result.timed_out,
        "history": result.history,
    }
