"""
Config loader for the CustomGPT console.
Reads config.yaml once at startup. All other modules import from here.
Values may reference ${ENV_VAR}; .env is loaded first via python-dotenv.
Anything missing from the file falls back to DEFAULTS.
"""

import copy
import logging
import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

_config: dict | None = None

DEFAULTS: dict = {
    "server": {"host": "127.0.0.1", "port": 3000},
    "proxy": {"timeout": 60},
    "storage": {"sqlite_path": "./data/chats.db"},
    "logging": {"level": "INFO", "file": ""},
    "wiretap": {"enabled": True, "path": "./data/wire.jsonl"},
    "console": {"server_url": "http://localhost:3000", "timeout": 90},
}


def _resolve_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with actual environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return re.sub(r"\$\{(\w+)\}", replacer, value)


def resolve_env_refs(obj):
    """Recursively resolve env vars in all string values."""
    if isinstance(obj, dict):
        return {k: resolve_env_refs(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [resolve_env_refs(v) for v in obj]
    elif isinstance(obj, str):
        return _resolve_env_vars(obj)
    return obj


def _merge(base: dict, override: dict) -> dict:
    """Deep-merge override onto a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None) -> dict:
    """Load and cache config from YAML file, layered over DEFAULTS."""
    global _config

    config_path = Path(path) if path else _CONFIG_PATH
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    elif path is not None:
        raise FileNotFoundError(f"Config not found: {config_path}")
    else:
        raw = {}

    _config = _merge(DEFAULTS, resolve_env_refs(raw))
    return _config


def get_config() -> dict:
    """Return cached config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config


def set_config(cfg: dict) -> None:
    """Replace the cached config (CLI overrides, tests)."""
    global _config
    _config = _merge(DEFAULTS, cfg)


def setup_logging(cfg: dict, stream: bool = True):
    """
    Configure root logging from the `logging` block.
    stream=False keeps stderr clean for the TUI (file handler only).
    """
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()] if stream else []
    if not handlers and not log_file:
        handlers.append(logging.NullHandler())
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
