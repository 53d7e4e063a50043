from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

DEFAULT_SEED_PATH = Path(__file__).resolve().parent / "data" / "mock_patients.json"

DEFAULT_CONFIG: Dict[str, Any] = {
    "host": "0.0.0.0",
    "port": 3000,
    "seed_path": str(DEFAULT_SEED_PATH),
    "activity_interval": 5.0,
    "activity_probability": 0.3,
    "log_capacity": 20,
    "subscriber_queue_size": 256,
    "log_level": "info",
    "stats_seed": {},
    "cors_origins": ["*"],
}


def _split_csv(raw: str) -> List[str]:
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_ENV_KEYS = {
    "PORT": ("port", int),
    "HOST": ("host", str),
    "AROGYA_SEED_PATH": ("seed_path", str),
    "AROGYA_ACTIVITY_INTERVAL": ("activity_interval", float),
    "AROGYA_LOG_LEVEL": ("log_level", str),
    "AROGYA_CORS_ORIGINS": ("cors_origins", _split_csv),
}


def load_config(
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Defaults, then environment, then explicit overrides."""
    config = dict(DEFAULT_CONFIG)
    env = os.environ if environ is None else environ
    for env_key, (config_key, cast) in _ENV_KEYS.items():
        raw = env.get(env_key)
        if raw is None or not str(raw).strip():
            continue
        try:
            config[config_key] = cast(raw)
        except ValueError:
            raise ValueError(f"Invalid value for {env_key}: {raw!r}") from None
    for key, value in (overrides or {}).items():
        if value is not None:
            config[key] = value
    return config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the Arogya ledger dashboard backend.")
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--seed-path", type=str, default=None)
    parser.add_argument("--activity-interval", type=float, default=None)
    parser.add_argument("--activity-probability", type=float, default=None)
    parser.add_argument("--log-level", type=str, default=None)
    return parser


def config_from_args(args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    return load_config(
        {
            "host": args.host,
            "port": args.port,
            "seed_path": args.seed_path,
            "activity_interval": args.activity_interval,
            "activity_probability": args.activity_probability,
            "log_level": args.log_level,
        },
        environ=environ,
    )


def configure_logging(level: str = "info") -> None:
    root = logging.getLogger("arogya")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        root.addHandler(handler)
