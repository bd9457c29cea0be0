import dataclasses
import tempfile
import time
import unittest
from pathlib import Path
from unittest import mock

from timetable_engine.config import EngineConfig, load_config
from timetable_engine.constraints import verify_assignment
from timetable_engine.domains import build_domain
from timetable_engine.model import Placement
from timetable_engine.optimizer import TrialOptimizer, trial_seeds
from timetable_engine.search import SlotSearch
from timetable_engine.service import generate, optimize
from timetable_engine.views import class_timetables, faculty_timetables, timetables_to_frame

CFG = EngineConfig(time_limit_s=None, max_workers=2)


def payload():
    return {
        "faculties": [{"_id": "F1", "name": "Rao"}, {"_id": "F2", "name": "Iyer"}],
        "subjects": [
            {"_id": "MATH", "name": "Maths", "no_of_hours_per_week": 4, "type": "theory"},
            {"_id": "PHY", "name": "Physics", "no_of_hours_per_week": 3, "type": "theory"},
            {"_id": "PHYL", "name": "Physics Lab", "no_of_hours_per_week": 2, "type": "lab"},
        ],
        "classes": [{"_id": "A", "name": "1A"}, {"_id": "B", "name": "1B"}],
        "combos": [
            {"_id": "A-MATH", "faculty_id": "F1", "subject_id": "MATH", "class_id": "A"},
            {"_id": "A-PHY", "faculty_id": "F2", "subject_id": "PHY", "class_id": "A"},
            {"_id": "A-PHYL", "faculty_id": "F2", "subject_id": "PHYL", "class_id": "A"},
            {"_id": "B-MATH", "faculty_id": "F1", "subject_id": "MATH", "class_id": "B"},
            {"_id": "B-PHY", "faculty_id": "F2", "subject_id": "PHY", "class_id": "B"},
        ],
    }


def occupied(grid):
    return [(d, h, cell) for d, hours in grid.items() for h, cell in hours.items() if cell is not None]


real_run_trial = TrialOptimizer.run_trial


def stall_after_first(self, trial, seed, deadline=None):
    if trial > 0:
        time.sleep(1.0)
    return real_run_trial(self, trial, seed, deadline)


def stall_all(self, trial, seed, deadline=None):
    time.sleep(1.0)
    return real_run_trial(self, trial, seed, deadline)


def overlapping_pins(*args, **kwargs):
    dom = build_domain(*args, **kwargs)
    pin = Placement("A-MATH", 0, 0, 1, fixed=True)
    return dataclasses.replace(dom, fixed=(pin, pin))


class GenerateTests(unittest.TestCase):
    def test_single_theory_combo_completes(self):
        res = generate(
            [{"_id": "F1", "name": "Rao"}],
            [{"_id": "S1", "name": "Maths", "no_of_hours_per_week": 3}],
            [{"_id": "A", "name": "1A"}],
            [{"_id": "C1", "faculty_id": "F1", "subject_id": "S1", "class_id": "A"}],
            days_per_week=5,
            hours_per_day=6,
        )
        self.assertTrue(res["ok"])
        grid = res["class_timetables"]["A"]
        self.assertEqual(len(grid), 5)
        self.assertEqual(len(grid[0]), 6)
        self.assertEqual(len(occupied(grid)), 3)
        self.assertEqual(len(occupied(res["faculty_timetables"]["F1"])), 3)

    def test_capacity_error_is_reported_without_search(self):
        res = generate(
            [{"_id": "F1"}],
            [{"_id": "S1", "no_of_hours_per_week": 11}],
            [{"_id": "A"}],
            [{"_id": "C1", "faculty_id": "F1", "subject_id": "S1", "class_id": "A"}],
            days_per_week=2,
            hours_per_day=5,
        )
        self.assertFalse(res["ok"])
        self.assertEqual(res["reason"], "insufficient_capacity")

    def test_shared_faculty_overlap_is_infeasible(self):
        res = generate(
            [{"_id": "F1"}],
            [{"_id": "S1", "no_of_hours_per_week": 2}, {"_id": "S2", "no_of_hours_per_week": 2}],
            [{"_id": "A"}, {"_id": "B"}],
            [{"_id": "CA", "faculty_id": "F1", "subject_id": "S1", "class_id": "A"},
             {"_id": "CB", "faculty_id": "F1", "subject_id": "S2", "class_id": "B"}],
            days_per_week=1,
            hours_per_day=3,
        )
        self.assertFalse(res["ok"])
        self.assertEqual(res["reason"], "no_feasible_assignment")
        self.assertNotIn("class_timetables", res)

    def test_conflicting_fixed_slots(self):
        p = payload()
        res = generate(**p, fixed_slots=[("A-MATH", 0, 0), ("B-MATH", 0, 0)])
        self.assertFalse(res["ok"])
        self.assertEqual(res["reason"], "conflicting_fixed_slots")

    def test_invalid_input(self):
        p = payload()
        p["combos"].append({"_id": "BAD", "subject_id": "MATH", "class_id": "A"})
        res = generate(**p)
        self.assertFalse(res["ok"])
        self.assertEqual(res["reason"], "invalid_input")
        self.assertTrue(res["details"])

    def test_fixed_slots_survive_verbatim(self):
        res = generate(**payload(), fixed_slots=[("A-MATH", 1, 4), ("A-PHYL", 3, 0)], config=CFG)
        self.assertTrue(res["ok"])
        grid = res["class_timetables"]["A"]
        self.assertEqual(grid[1][4]["combo_id"], "A-MATH")
        self.assertTrue(grid[1][4]["fixed"])
        self.assertEqual(grid[3][0]["combo_id"], "A-PHYL")
        self.assertEqual(grid[3][1]["combo_id"], "A-PHYL")
        self.assertEqual(res["faculty_timetables"]["F1"][1][4]["class_id"], "A")

    def test_bad_grid_arguments_are_reported(self):
        res = generate(**payload(), days_per_week=0, hours_per_day=6)
        self.assertFalse(res["ok"])
        self.assertEqual(res["reason"], "invalid_input")
        self.assertIn("days_per_week", res["message"])

        res = generate(**payload(), seed=-1)
        self.assertFalse(res["ok"])
        self.assertEqual(res["reason"], "invalid_input")


class OptimizeTests(unittest.TestCase):
    def test_returns_best_of_trials(self):
        res = optimize(**payload(), trial_count=6, config=CFG, seed=5)
        self.assertTrue(res["ok"])
        self.assertEqual(res["trials_run"], 6)
        scores = [row["score"] for row in res["history"] if row["status"] == "complete"]
        self.assertEqual(res["trials_complete"], len(scores))
        self.assertEqual(res["best_score"], max(scores))
        self.assertLessEqual(res["best_score"], 0.0)

    def test_fixed_seed_is_reproducible(self):
        a = optimize(**payload(), trial_count=5, config=CFG, seed=123)
        b = optimize(**payload(), trial_count=5, config=CFG.with_overrides(max_workers=4), seed=123)
        self.assertEqual(a["best_score"], b["best_score"])
        self.assertEqual(a["best_class_timetables"], b["best_class_timetables"])
        self.assertEqual(a["best_faculty_timetables"], b["best_faculty_timetables"])

    def test_no_feasible_trial_is_a_failure(self):
        res = optimize(
            [{"_id": "F1"}],
            [{"_id": "S1", "no_of_hours_per_week": 1}, {"_id": "S2", "no_of_hours_per_week": 1}],
            [{"_id": "A", "days_per_week": 1}, {"_id": "B", "days_per_week": 1}],
            [{"_id": "CA", "faculty_id": "F1", "subject_id": "S1", "class_id": "A"},
             {"_id": "CB", "faculty_id": "F1", "subject_id": "S2", "class_id": "B"}],
            trial_count=3,
            config=CFG.with_overrides(hours_per_day=1),
        )
        self.assertFalse(res["ok"])
        self.assertEqual(res["reason"], "no_feasible_assignment")
        self.assertEqual(res["details"]["trials_run"], 3)

    def test_bad_trial_count_is_reported(self):
        res = optimize(**payload(), trial_count=0, config=CFG)
        self.assertFalse(res["ok"])
        self.assertEqual(res["reason"], "invalid_input")
        self.assertEqual(res["details"]["trial_count"], 0)

    def test_trial_seeds_are_derived_deterministically(self):
        self.assertEqual(trial_seeds(42, 4), trial_seeds(42, 4))
        self.assertEqual(len(set(trial_seeds(42, 4))), 4)

    def test_optimizer_result_is_valid(self):
        dom = build_domain(**payload(), cfg=CFG)
        out = TrialOptimizer(dom, CFG).run(trial_count=4)
        self.assertTrue(out.ok)
        self.assertFalse(out.timed_out)
        self.assertEqual(verify_assignment(dom, out.best.assignment), [])
        self.assertEqual([row["trial"] for row in out.history], [0, 1, 2, 3])


class FailureReportingTests(unittest.TestCase):
    def test_time_limit_returns_best_so_far(self):
        cfg = CFG.with_overrides(time_limit_s=0.3, max_workers=4)
        with mock.patch.object(TrialOptimizer, "run_trial", stall_after_first):
            started = time.perf_counter()
            res = optimize(**payload(), trial_count=4, config=cfg)
            elapsed = time.perf_counter() - started
        self.assertTrue(res["ok"])
        self.assertTrue(res["timed_out"])
        self.assertEqual(res["trials_run"], 1)
        self.assertEqual(res["history"][0]["trial"], 0)
        self.assertLess(elapsed, 0.9)

    def test_time_limit_without_complete_trial(self):
        cfg = CFG.with_overrides(time_limit_s=0.2, max_workers=2)
        with mock.patch.object(TrialOptimizer, "run_trial", stall_all):
            res = optimize(**payload(), trial_count=4, config=cfg)
        self.assertFalse(res["ok"])
        self.assertEqual(res["reason"], "no_feasible_assignment")
        self.assertTrue(res["details"]["timed_out"])
        self.assertEqual(res["details"]["trials_run"], 0)

    def test_deadline_cuts_a_trial_short(self):
        dom = build_domain(
            [{"id": "F1"}],
            [{"id": "S1", "weekly_hours": 2}, {"id": "S2", "weekly_hours": 1}],
            [{"id": "A"}, {"id": "B"}],
            [{"id": "CA", "faculty_id": "F1", "subject_id": "S1", "class_id": "A"},
             {"id": "CB", "faculty_id": "F1", "subject_id": "S2", "class_id": "B"}],
            days_per_week=1,
            hours_per_day=2,
        )
        out = TrialOptimizer(dom, CFG).first_feasible(attempts=3)
        self.assertFalse(out.ok)
        self.assertFalse(out.timed_out)
        self.assertEqual(out.trials_run, 3)

        result, evaluation = TrialOptimizer(dom, CFG).run_trial(0, 1, deadline=0.0)
        self.assertIsNone(evaluation)
        self.assertTrue(result.timed_out)

    def test_broken_invariant_is_an_internal_error(self):
        with mock.patch("timetable_engine.service.build_domain", overlapping_pins):
            with self.assertLogs("timetable_engine.service", level="ERROR"):
                res = optimize(**payload(), trial_count=3, config=CFG)
        self.assertFalse(res["ok"])
        self.assertEqual(res["reason"], "internal_error")

        with mock.patch("timetable_engine.service.build_domain", overlapping_pins):
            res = generate(**payload(), config=CFG)
        self.assertEqual(res["reason"], "internal_error")


class ViewTests(unittest.TestCase):
    def setUp(self):
        self.domain = build_domain(**payload(), days_per_week=5, hours_per_day=6)
        self.assignment = SlotSearch(self.domain, CFG, seed=9).run().assignment

    def test_projection_is_idempotent(self):
        self.assertEqual(class_timetables(self.assignment, self.domain),
                         class_timetables(self.assignment, self.domain))
        self.assertEqual(faculty_timetables(self.assignment, self.domain),
                         faculty_timetables(self.assignment, self.domain))

    def test_class_and_faculty_views_agree(self):
        classes = class_timetables(self.assignment, self.domain)
        faculties = faculty_timetables(self.assignment, self.domain)
        for class_id, grid in classes.items():
            for day, hour, cell in occupied(grid):
                mirror = faculties[cell["faculty_id"]][day][hour]
                self.assertEqual(mirror["class_id"], class_id)
                self.assertEqual(mirror["combo_id"], cell["combo_id"])
        total = sum(len(occupied(g)) for g in classes.values())
        self.assertEqual(total, 4 + 3 + 2 + 4 + 3)
        self.assertEqual(total, sum(len(occupied(g)) for g in faculties.values()))

    def test_frame_has_one_row_per_occupied_cell(self):
        df = timetables_to_frame(class_timetables(self.assignment, self.domain), "class_id")
        self.assertEqual(len(df), 16)
        self.assertEqual(list(df.columns[:3]), ["class_id", "day", "hour"])


class ConfigTests(unittest.TestCase):
    def test_missing_file_gives_defaults(self):
        self.assertEqual(load_config("does/not/exist.yaml"), EngineConfig())

    def test_yaml_overrides_and_unknown_keys(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.yaml"
            path.write_text("trial_count: 3\nhours_per_day: 6\nunknown: 1\n", encoding="utf-8")
            cfg = load_config(str(path))
        self.assertEqual(cfg.trial_count, 3)
        self.assertEqual(cfg.hours_per_day, 6)
        self.assertEqual(cfg.days_per_week, 5)

    def test_non_mapping_is_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.yaml"
            path.write_text("- 1\n- 2\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_config(str(path))

    def test_invalid_values(self):
        with self.assertRaises(ValueError):
            EngineConfig(hours_per_day=0)
        with self.assertRaises(ValueError):
            EngineConfig(weight_spread=-1)

    def test_with_overrides_skips_none(self):
        cfg = EngineConfig().with_overrides(trial_count=None, seed=7)
        self.assertEqual(cfg.seed, 7)
        self.assertEqual(cfg.trial_count, EngineConfig().trial_count)


if __name__ == "__main__":
    unittest.main()
