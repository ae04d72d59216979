# tensorbundle/config.py
import json
from pathlib import Path

import yaml

DEFAULT_CONFIG = {
    "models_dir": "./models",
    "model_id": None,
    "bundle": None,
    "device": "auto",
    "top_n": 5,
    "thresh": 0.0,
    "crop_size": None,
    "warmup": False,
    "log_level": "INFO",
    "log_to_file": False,
}


def load_config(path: str = None):
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    if p.suffix.lower() in {".yml", ".yaml"}:
        return yaml.safe_load(p.read_text()) or {}
    if p.suffix.lower() == ".json":
        return json.loads(p.read_text())
    raise ValueError("Config must be .yml/.yaml or .json")


def with_defaults(config: dict) -> dict:
    merged = dict(DEFAULT_CONFIG)
    merged.update({k: v for k, v in (config or {}).items() if v is not None})
    return merged


def _shape(v):
    if v is None:
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, (list, tuple)):
        if len(v) == 0:
            return None
        if len(v) == 1:
            return int(v[0])
        if len(v) == 2:
            return (int(v[0]), int(v[1]))
    raise ValueError("crop_size must be int, [int], [h,w], or None")
