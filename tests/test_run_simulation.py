import json

from evaluation import run_simulation


GHOST_PAYLOAD = {
    "version": "test",
    "tags": [
        {"tagKey": "ghost", "displayName": "Ghost"},
        {"tagKey": "common", "displayName": "Common"},
    ],
    "items": [
        {"itemId": item_id, "title": f"Item {item_id}", "author": f"author-{item_id}",
         "tags": ["ghost", "common"] if item_id == "A" else ["common"]}
        for item_id in ("A", "B", "C", "D")
    ],
}


def _write_catalog(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(GHOST_PAYLOAD), encoding="utf-8")
    return str(path)


def test_main_writes_reports(tmp_path, capsys):
    catalog_path = _write_catalog(tmp_path)
    out_dir = tmp_path / "results"

    run_simulation.main(
        ["--catalog", catalog_path, "--targets", "A,B", "--trials", "2", "--out", str(out_dir), "--no-plots"]
    )

    for name in ("trials.csv", "steps.csv", "summary.csv", "observability_summary.json"):
        assert (out_dir / name).exists()
    assert list(out_dir.glob("sim-*.json"))

    observed = json.loads((out_dir / "observability_summary.json").read_text())
    assert observed["sessions_total"] == 4
    assert "[DONE] 4 trials" in capsys.readouterr().out


def test_managed_run_uses_config_file(tmp_path):
    catalog_path = _write_catalog(tmp_path)
    config_path = tmp_path / "experiment.json"
    config_path.write_text(
        json.dumps({"catalog": catalog_path, "targets": ["A"], "noise": {"explore": 0.5}, "seed": 3}),
        encoding="utf-8",
    )
    base = tmp_path / "managed"

    run_simulation.main(["--config", str(config_path), "--out", str(base), "--managed", "--run-name", "cfg", "--no-plots"])

    latest = json.loads((base / "latest_managed_run.json").read_text())
    manifest = json.loads((base / latest["run_id"] / "run_manifest.json").read_text())
    assert manifest["settings"]["noise"]["explore"] == 0.5
    assert manifest["settings"]["targets"] == ["A"]
    assert len(manifest["catalog_sha256"]) == 64
    assert manifest["engine_config_sha256"] == ""
    assert (base / latest["run_id"] / "trials.csv").exists()
