import argparse
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict

import pandas as pd

from timetable_engine.config import load_config
from timetable_engine.service import generate, optimize
from timetable_engine.views import timetables_to_frame


def load_payload(path: str) -> Dict[str, Any]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    data.setdefault("fixed_slots", data.pop("fixedSlots", []))
    return data


def print_class_grid(class_id: str, grid: Dict[int, Dict[int, Any]], width: int = 10) -> None:
    print(f"\n{class_id}")
    days = sorted(grid)
    print("hour " + "".join(f"D{d:<{width - 1}}" for d in days))
    hours = sorted(grid[days[0]]) if days else []
    for h in hours:
        cells = []
        for d in days:
            cell = grid[d][h]
            label = "-" if cell is None else cell["subject_name"][: width - 2]
            if cell is not None and cell["fixed"]:
                label += "*"
            cells.append(f"{label:<{width}}")
        print(f"{h:<5}" + "".join(cells))


def export_outputs(result: Dict[str, Any], out_dir: Path, elapsed: float) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    classes = result.get("best_class_timetables") or result.get("class_timetables")
    faculties = result.get("best_faculty_timetables") or result.get("faculty_timetables")
    timetables_to_frame(classes, "class_id").to_csv(out_dir / "class_timetables.csv", index=False)
    timetables_to_frame(faculties, "faculty_id").to_csv(out_dir / "faculty_timetables.csv", index=False)
    if result.get("history"):
        pd.DataFrame(result["history"]).to_csv(out_dir / "trials.csv", index=False)
    metrics = {
        "score": result.get("best_score", result.get("score")),
        "trials_run": result.get("trials_run", 1),
        "trials_complete": result.get("trials_complete", 1),
        "timed_out": result.get("timed_out", False),
        "time_sec": elapsed,
    }
    pd.DataFrame([metrics]).to_csv(out_dir / "metrics.csv", index=False)
    (out_dir / "result.json").write_text(json.dumps(result, indent=2, ensure_ascii=False), encoding="utf-8")


def main() -> int:
    parser = argparse.ArgumentParser(description="Weekly timetable generation")
    parser.add_argument("--input", default="data/sample_input.json", help="JSON payload with the entities")
    parser.add_argument("--config", default="config.yaml", help="Path to the configuration file")
    parser.add_argument("--mode", choices=["optimize", "generate"], default="optimize")
    parser.add_argument("--trials", type=int, default=None, help="Number of optimizer trials")
    parser.add_argument("--seed", type=int, default=None, help="Master seed (defaults to the config seed)")
    parser.add_argument("--out", default="outputs", help="Output directory")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = load_config(args.config)
    payload = load_payload(args.input)
    entities = {k: payload.get(k, []) for k in ("faculties", "subjects", "classes", "combos")}

    print(f"Mode: {args.mode} | Grid: {payload.get('days_per_week', cfg.days_per_week)}"
          f"x{payload.get('hours_per_day', cfg.hours_per_day)}")
    start = time.perf_counter()
    if args.mode == "generate":
        result = generate(
            **entities,
            days_per_week=payload.get("days_per_week"),
            hours_per_day=payload.get("hours_per_day"),
            fixed_slots=payload["fixed_slots"],
            config=cfg,
            seed=args.seed,
        )
    else:
        try:
            cfg = cfg.with_overrides(days_per_week=payload.get("days_per_week"),
                                     hours_per_day=payload.get("hours_per_day"))
        except ValueError as err:
            print(f"\nFAILED (invalid_input): {err}")
            return 1
        result = optimize(
            **entities,
            fixed_slots=payload["fixed_slots"],
            trial_count=args.trials,
            config=cfg,
            seed=args.seed,
        )
    elapsed = time.perf_counter() - start

    if not result["ok"]:
        print(f"\nFAILED ({result['reason']}): {result['message']}")
        if result.get("details"):
            print(json.dumps(result["details"], indent=2))
        return 1

    score = result.get("best_score", result.get("score"))
    print("\n--- BEST TIMETABLE ---")
    print(f"Score: {score:.1f} | Time: {elapsed:.2f}s"
          + (f" | Trials: {result['trials_complete']}/{result['trials_run']} complete" if "trials_run" in result else ""))
    classes = result.get("best_class_timetables") or result.get("class_timetables")
    for i, (class_id, grid) in enumerate(classes.items()):
        if i >= 10:
            break
        print_class_grid(class_id, grid)

    out_dir = Path(args.out)
    export_outputs(result, out_dir, elapsed)
    print(f"\nResults written to {out_dir}/")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
