import argparse
import json
import os
import sys

from catalog.backend import load_snapshot_file
from catalog.config import CATALOG_PATH
from elimination_engine import EliminationEngine
from engine_config import load_engine_config
from evaluation.experiment_manager import prepare_managed_run
from evaluation.reporting import (
    STEP_FIELDS,
    TRIAL_FIELDS,
    aggregate_summary,
    ensure_dir,
    plot_metrics,
    step_rows,
    summary_fieldnames,
    trial_rows,
    write_csv,
)
from evaluation.simulation import NoiseRates, run_batch, save_batch_result
from observability.runtime import RuntimeObservability


def _load_config(path):
    if not path:
        return {}
    ext = os.path.splitext(path)[1].lower()
    with open(path, "r", encoding="utf-8") as f:
        if ext in {".yaml", ".yml"}:
            import yaml

            data = yaml.safe_load(f) or {}
        else:
            data = json.load(f) or {}
    return data if isinstance(data, dict) else {}


def _parse_targets(value):
    if not value:
        return None
    if isinstance(value, (list, tuple)):
        return [str(token) for token in value]
    return [token.strip() for token in str(value).split(",") if token.strip()]


def run(
    catalog_path,
    out_dir,
    target_ids=None,
    sample_size=None,
    trials_per_work=1,
    noise=None,
    ai_gate_choice="DONT_CARE",
    seed=0,
    max_workers=None,
    engine_config_path="",
    label="batch",
    make_plots=True,
):
    ensure_dir(out_dir)

    catalog = load_snapshot_file(catalog_path)
    config = load_engine_config(engine_config_path or None)
    observability = RuntimeObservability()
    engine = EliminationEngine(catalog, config=config, observer=observability)

    batch = run_batch(
        engine,
        target_ids=target_ids,
        sample_size=sample_size,
        trials_per_work=trials_per_work,
        noise=noise,
        ai_gate_choice=ai_gate_choice,
        seed=seed,
        max_workers=max_workers,
    )

    trials = trial_rows(batch, label=label)
    steps = step_rows(batch, label=label)
    summary = aggregate_summary(trials)

    batch_path = save_batch_result(batch, out_dir)
    write_csv(os.path.join(out_dir, "trials.csv"), trials, TRIAL_FIELDS)
    write_csv(os.path.join(out_dir, "steps.csv"), steps, STEP_FIELDS)
    write_csv(os.path.join(out_dir, "summary.csv"), summary, summary_fieldnames(summary))
    with open(os.path.join(out_dir, "observability_summary.json"), "w", encoding="utf-8") as f:
        json.dump(observability.summary(), f, indent=2)

    if make_plots:
        plot_metrics(out_dir, trials, steps)

    print(
        f"[DONE] {batch['total_trials']} trials, success_rate={batch['success_rate']:.3f}, "
        f"avg_questions={batch['avg_questions']:.2f}, errors={batch['error_count']} -> {out_dir}"
    )
    return {"batch": batch, "batch_path": batch_path, "summary": summary}


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run offline elimination-engine simulations.")
    parser.add_argument("--catalog", default=CATALOG_PATH or os.path.join("data", "catalog.json"))
    parser.add_argument("--targets", default="", help="Comma-separated item ids (default: every item)")
    parser.add_argument("--sample-size", type=int, default=0)
    parser.add_argument("--trials", type=int, default=1, help="Trials per target item")
    parser.add_argument("--noise-explore", type=float, default=0.0)
    parser.add_argument("--noise-soft", type=float, default=0.0)
    parser.add_argument("--noise-hard", type=float, default=0.0)
    parser.add_argument("--ai-gate", default="DONT_CARE", help="AI, HAND, DONT_CARE or MATCH_TARGET")
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--workers", type=int, default=0)
    parser.add_argument("--out", default=os.path.join("evaluation", "results"))
    parser.add_argument("--config", default="", help="Path to JSON/YAML experiment config")
    parser.add_argument("--engine-config", default="", help="Path to JSON/YAML engine config")
    parser.add_argument("--managed", action="store_true", help="Write into a timestamped run directory with a manifest")
    parser.add_argument("--run-name", default="")
    parser.add_argument("--no-plots", action="store_true")
    args = parser.parse_args(argv)

    config = _load_config(args.config)
    noise_config = config.get("noise", {})
    settings = {
        "catalog": config.get("catalog", args.catalog),
        "targets": _parse_targets(config.get("targets", args.targets)),
        "sample_size": int(config.get("sample_size", args.sample_size)) or None,
        "trials_per_work": int(config.get("trials_per_work", args.trials)),
        "noise": NoiseRates(
            explore=float(noise_config.get("explore", args.noise_explore)),
            soft=float(noise_config.get("soft", args.noise_soft)),
            hard=float(noise_config.get("hard", args.noise_hard)),
        ),
        "ai_gate_choice": config.get("ai_gate", args.ai_gate),
        "seed": int(config.get("seed", args.seed)),
        "max_workers": int(config.get("workers", args.workers)) or None,
        "engine_config_path": config.get("engine_config", args.engine_config),
    }
    out_dir = config.get("out", args.out)

    if args.managed:
        manifest_settings = dict(settings, noise=settings["noise"].as_dict())
        out_dir, _ = prepare_managed_run(
            base_out_dir=out_dir,
            catalog_path=settings["catalog"],
            run_settings=manifest_settings,
            engine_config_path=settings["engine_config_path"],
            argv=sys.argv if argv is None else ["run_simulation.py", *argv],
            run_name=args.run_name,
        )

    run(
        settings["catalog"],
        out_dir,
        target_ids=settings["targets"],
        sample_size=settings["sample_size"],
        trials_per_work=settings["trials_per_work"],
        noise=settings["noise"],
        ai_gate_choice=settings["ai_gate_choice"],
        seed=settings["seed"],
        max_workers=settings["max_workers"],
        engine_config_path=settings["engine_config_path"],
        label=args.run_name or "batch",
        make_plots=not args.no_plots,
    )


if __name__ == "__main__":
    main()
