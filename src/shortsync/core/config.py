from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError
from .models import MANAGED_TAG
from .shortio_client import DEFAULT_BASE_URL


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False
    concurrency: int = 4


@dataclass
class ShortioSection:
    api_key: str = ""        # secret, never logged in clear text
    base_url: str = DEFAULT_BASE_URL
    timeout_sec: int = 30
    retries: int = 3
    backoff_factor: float = 0.5


@dataclass
class SyncSection:
    config_path: str = "shortio.yaml"
    managed_tag: str = MANAGED_TAG
    page_size: int = 150


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    shortio: ShortioSection
    sync: SyncSection
    logging: LoggingSection

    @property
    def run_id(self) -> str:
        """
        Return a stable run identifier for this process.
        Generated lazily when first accessed if not provided.
        """
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


# ---------- Defaults ----------

_DEFAULT_FILES: Tuple[str, ...] = (
    "./shortsync.yml",
    os.path.expanduser("~/.config/shortsync/config.yml"),
)

_DEFAULTS: Dict[str, Any] = {
    "app": {"run_id": None, "dry_run": False, "concurrency": 4},
    "shortio": {
        "api_key": "",
        "base_url": DEFAULT_BASE_URL,
        "timeout_sec": 30,
        "retries": 3,
        "backoff_factor": 0.5,
    },
    "sync": {"config_path": "shortio.yaml", "managed_tag": MANAGED_TAG, "page_size": 150},
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
}

# Plain variables honoured as fallbacks (GitHub Actions inputs, conventional names)
_FALLBACK_ENV: Dict[Tuple[str, str], Tuple[str, ...]] = {
    ("shortio", "api_key"): ("SHORTIO_API_KEY", "INPUT_API_KEY"),
    ("sync", "config_path"): ("INPUT_CONFIG_PATH",),
    ("app", "dry_run"): ("INPUT_DRY_RUN",),
}


# ---------- Utilities ----------

def _deep_merge(base: Dict[str, Any], ext: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Deep-merge for dicts: maps merge recursively, lists/scalars override.
    `ext` wins over `base`. Returns a new dict.
    """
    if not ext:
        return dict(base)
    out: Dict[str, Any] = dict(base)
    for k, v in ext.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _drop_empty(d: Dict[str, Any]) -> Dict[str, Any]:
    """Remove None/"" leaves so unset CLI flags do not mask lower layers."""
    out: Dict[str, Any] = {}
    for k, v in d.items():
        if isinstance(v, dict):
            sub = _drop_empty(v)
            if sub:
                out[k] = sub
        elif v is not None and v != "":
            out[k] = v
    return out


def _read_yaml_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _load_first_existing(files: Tuple[str, ...]) -> Dict[str, Any]:
    for p in files:
        if os.path.exists(p):
            return _read_yaml_file(p)
    return {}


def _env_to_dict(prefix: str = "SHORTSYNC_") -> Dict[str, Any]:
    """
    Convert SHORTSYNC_FOO__BAR=val to {"foo": {"bar": "val"}} (lowercased keys).
    """
    out: Dict[str, Any] = {}
    plen = len(prefix)
    for key, val in os.environ.items():
        if not key.startswith(prefix):
            continue
        path = key[plen:].lower().split("__")
        cursor = out
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = val
    return out


def _fallback_env() -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for (section, key), names in _FALLBACK_ENV.items():
        for name in names:
            val = os.environ.get(name)
            if val:
                out.setdefault(section, {})[key] = val
                break
    return out


def _interpolate_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Replace values like "${VAR}" with os.environ["VAR"] when present.
    """
    def repl(v: Any) -> Any:
        if isinstance(v, str) and v.startswith("${") and v.endswith("}"):
            return os.environ.get(v[2:-1], "")
        return v

    def walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: walk(repl(v)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(x) for x in obj]
        return repl(obj)

    return walk(cfg)


def _coerce_types(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Minimal type coercion for booleans and numbers in known keys.
    """
    def to_bool(x: Any) -> bool:
        return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}

    def to_num(x: Any, kind: type, key: str) -> Any:
        try:
            return kind(x)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for {key}: {x!r}") from e

    def walk(obj: Any, key_path: Tuple[str, ...] = ()) -> Any:
        if isinstance(obj, dict):
            return {k: walk(v, key_path + (k,)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(v, key_path) for v in obj]
        leaf = key_path[-1] if key_path else ""
        if leaf in ("dry_run",):
            return to_bool(obj)
        if leaf in ("timeout_sec", "retries", "concurrency", "page_size"):
            return to_num(obj, int, ".".join(key_path))
        if leaf in ("backoff_factor",):
            return to_num(obj, float, ".".join(key_path))
        return obj

    return walk(cfg)


def _validate(cfg: Dict[str, Any]) -> None:
    """
    Validate required fields. Dry runs read remote state too, so the API key
    is always required.
    """
    missing = []
    if not cfg.get("shortio", {}).get("api_key"):
        missing.append("shortio.api_key")
    if not cfg.get("sync", {}).get("config_path"):
        missing.append("sync.config_path")
    if not cfg.get("sync", {}).get("managed_tag"):
        missing.append("sync.managed_tag")
    if missing:
        raise ConfigError("Missing required configuration: " + ", ".join(missing))

    page_size = cfg["sync"].get("page_size", 150)
    if not 1 <= page_size <= 150:
        raise ConfigError(f"sync.page_size must be between 1 and 150, got {page_size}")
    if cfg.get("app", {}).get("concurrency", 1) < 1:
        raise ConfigError("app.concurrency must be >= 1")


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "SHORTSYNC_",
    *,
    use_dotenv: bool = True,
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides (None/"" values ignored)
      2) Environment variables (prefix SHORTSYNC_, nested via __)
      3) Fallback variables (SHORTIO_API_KEY, GitHub Actions INPUT_*)
      4) YAML file (first existing)
      5) Built-in defaults

    A `.env` file found from the working directory is loaded first
    (without overriding variables already set).

    Also performs:
      - ${ENV_VAR} interpolation
      - basic type coercion (bool/int/float)
      - validation of required fields

    Raises:
        ConfigError: If the configuration is incomplete or invalid.
    """
    if use_dotenv:
        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path, override=False)

    file_cfg = _load_first_existing(files)

    merged = _deep_merge(_DEFAULTS, file_cfg)
    merged = _deep_merge(merged, _fallback_env())
    merged = _deep_merge(merged, _env_to_dict(env_prefix))
    merged = _deep_merge(merged, _drop_empty(cli_overrides or {}))

    merged = _interpolate_env(merged)
    merged = _coerce_types(merged)

    _validate(merged)

    try:
        return AppConfig(
            app=AppSection(**merged.get("app", {})),
            shortio=ShortioSection(**merged.get("shortio", {})),
            sync=SyncSection(**merged.get("sync", {})),
            logging=LoggingSection(**merged.get("logging", {})),
        )
    except TypeError as e:
        # unknown key in a section
        raise ConfigError(f"Invalid configuration: {e}") from e
