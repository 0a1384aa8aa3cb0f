import hashlib
import json
import os
import platform
import socket
import sys
from datetime import datetime, timezone

from evaluation.reporting import ensure_dir


def _file_digest(path):
    if not path or not os.path.exists(path):
        return ""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _write_json(path, payload):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)


def prepare_managed_run(base_out_dir, catalog_path, run_settings, engine_config_path, argv, run_name=""):
    """
    Create a timestamped run directory under `base_out_dir`.

    The manifest pins the catalog and engine config by sha256 so two runs can
    be compared without trusting file names; latest_managed_run.json points
    at the newest run.
    """
    ensure_dir(base_out_dir)

    started = datetime.now(timezone.utc)
    label = (run_name or "managed").strip().replace(" ", "_")
    run_id = f"{started:%Y%m%d_%H%M%S}_{label}"
    run_dir = os.path.join(base_out_dir, run_id)
    ensure_dir(run_dir)

    manifest = {
        "run_id": run_id,
        "created_at_utc": started.isoformat(),
        "run_dir": run_dir,
        "catalog": catalog_path,
        "catalog_sha256": _file_digest(catalog_path),
        "engine_config": engine_config_path or "",
        "engine_config_sha256": _file_digest(engine_config_path),
        "settings": dict(run_settings),
        "argv": list(argv),
        "environment": {
            "python_version": sys.version,
            "platform": platform.platform(),
            "hostname": socket.gethostname(),
        },
    }
    manifest_path = os.path.join(run_dir, "run_manifest.json")
    _write_json(manifest_path, manifest)
    _write_json(os.path.join(base_out_dir, "latest_managed_run.json"), {"run_id": run_id, "run_dir": run_dir})
    return run_dir, manifest_path
