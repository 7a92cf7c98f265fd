"""
Rendering Configuration

Builds the single immutable RenderingConfig used by the compilation pipeline,
the process runner calls, and the compilation queue. The value is constructed
once at startup and passed explicitly; nothing reads configuration from the
environment mid-run.

Layering (later overrides earlier):
    1. RenderingConfig defaults
    2. YAML file (config_path argument, else TEXVIEW_CONFIG), loaded with OmegaConf
    3. TEXVIEW_<FIELD> environment variables (a .env file is honoured)
    4. Explicit overrides mapping

Examples:
    >>> config = load_config()
    >>> config = load_config(Path("configs/rendering.yaml"))
    >>> config = load_config(overrides={"process_timeout_s": 5})
"""

import dataclasses
import functools
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv
from omegaconf import OmegaConf
from omegaconf.errors import OmegaConfBaseException

from texview.contexts.rendering.exceptions import ConfigError
from texview.utils.environment import probe_sandbox

ENV_PREFIX = "TEXVIEW_"
CONFIG_PATH_ENV = "TEXVIEW_CONFIG"

# Maximum allowed document size in bytes (10 MB)
MAX_INPUT_BYTES = 10 * 1024 * 1024

# Per-process wall-clock budget for pdflatex, biber/bibtex and pdftocairo
PROCESS_TIMEOUT_S = 30.0

PROCESS_POLL_INTERVAL_S = 0.1

MAX_PRIMARY_PASSES = 3


@functools.lru_cache(maxsize=None)
def _default_output_dir() -> Path:
    """Private (0700) page directory, created once per process."""
    return Path(tempfile.mkdtemp(prefix="texview-pages-"))


@dataclass(frozen=True)
class RenderingConfig:
    """
    Immutable configuration for the rendering core.

    Attributes:
        latex_compiler: Primary compiler executable
        biber_tool: Bibliography tool for biblatex documents (.bcf trigger)
        bibtex_tool: Bibliography tool for classic \\bibliography documents (\\bibdata trigger)
        rasterizer: PDF to per-page SVG converter
        max_input_bytes: Documents larger than this (UTF-8 encoded) are rejected
        process_timeout_s: Budget for each primary compiler and rasterizer invocation
        bibliography_timeout_s: Budget for the bibliography tool
        max_primary_passes: Cap on primary compiler passes per run (one fold-in pass is always allowed)
        poll_interval_s: Liveness polling interval for timeout enforcement
        termination_grace_s: Wait after terminate()/kill() before giving up on a child
        output_dir: Where rendered pages are kept after the working area is removed
            (default: a private directory created once per process)
        retained_runs: Number of its own most recent run directories each pipeline keeps
        max_log_chars: Tail of the compiler log included in failure diagnostics
        allow_source_inputs: Let \\input search the request's source directory
        shutdown_timeout_s: How long CompilationQueue.shutdown() waits for the worker
        sandbox_disabled: Host lacks namespace sandboxing (probed once at startup)
    """

    latex_compiler: str = "pdflatex"
    biber_tool: str = "biber"
    bibtex_tool: str = "bibtex"
    rasterizer: str = "pdftocairo"
    max_input_bytes: int = MAX_INPUT_BYTES
    process_timeout_s: float = PROCESS_TIMEOUT_S
    bibliography_timeout_s: float = PROCESS_TIMEOUT_S
    max_primary_passes: int = MAX_PRIMARY_PASSES
    poll_interval_s: float = PROCESS_POLL_INTERVAL_S
    termination_grace_s: float = 2.0
    output_dir: Path = field(default_factory=_default_output_dir)
    retained_runs: int = 2
    max_log_chars: int = 20000
    allow_source_inputs: bool = False
    shutdown_timeout_s: float = 120.0
    sandbox_disabled: bool = False

    def __post_init__(self):
        positive = [
            "max_input_bytes",
            "process_timeout_s",
            "bibliography_timeout_s",
            "poll_interval_s",
            "max_log_chars",
            "shutdown_timeout_s",
        ]
        for name in positive:
            if getattr(self, name) <= 0:
                raise ConfigError(f"must be positive, got {getattr(self, name)!r}", key=name)
        if self.termination_grace_s < 0:
            raise ConfigError("must not be negative", key="termination_grace_s")
        if self.max_primary_passes < 1:
            raise ConfigError("at least one primary pass is required", key="max_primary_passes")
        if self.retained_runs < 1:
            raise ConfigError("at least one run must be retained", key="retained_runs")
        for name in ["latex_compiler", "biber_tool", "bibtex_tool", "rasterizer"]:
            if not getattr(self, name):
                raise ConfigError("executable name must not be empty", key=name)


FIELD_TYPES: Dict[str, type] = {
    "latex_compiler": str,
    "biber_tool": str,
    "bibtex_tool": str,
    "rasterizer": str,
    "max_input_bytes": int,
    "process_timeout_s": float,
    "bibliography_timeout_s": float,
    "max_primary_passes": int,
    "poll_interval_s": float,
    "termination_grace_s": float,
    "output_dir": Path,
    "retained_runs": int,
    "max_log_chars": int,
    "allow_source_inputs": bool,
    "shutdown_timeout_s": float,
    "sandbox_disabled": bool,
}


def _coerce(key: str, value: Any) -> Any:
    """Convert a raw YAML/env value to the field's type."""
    target = FIELD_TYPES[key]
    try:
        if target is bool:
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in ("1", "true", "yes", "on"):
                return True
            if text in ("0", "false", "no", "off"):
                return False
            raise ValueError(f"not a boolean: {value!r}")
        if target is Path:
            return Path(os.path.expanduser(str(value)))
        if target is int and isinstance(value, float) and not value.is_integer():
            raise ValueError(f"not an integer: {value!r}")
        return target(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(str(e), key=key) from e


def load_config_file(config_path: Path) -> Dict[str, Any]:
    """
    Load a YAML configuration file into a plain dict.

    Accepts either top-level keys or a single top-level "rendering" section.

    Raises:
        ConfigError: If the file is missing, unparsable, or not a mapping
    """
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        loaded = OmegaConf.to_container(OmegaConf.load(config_path), resolve=True)
    except (OmegaConfBaseException, ValueError) as e:
        raise ConfigError(f"Could not parse {config_path}: {e}") from e

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Top level of {config_path} must be a mapping")
    if set(loaded) == {"rendering"}:
        loaded = loaded["rendering"] or {}
    return loaded


def _env_values(environ: Mapping[str, str]) -> Dict[str, str]:
    return {
        key: environ[f"{ENV_PREFIX}{key.upper()}"]
        for key in FIELD_TYPES
        if f"{ENV_PREFIX}{key.upper()}" in environ
    }


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RenderingConfig:
    """
    Build the rendering configuration once at startup.

    Args:
        config_path: Optional YAML file (defaults to TEXVIEW_CONFIG if set)
        overrides: Highest-precedence values (e.g., from CLI options or tests)
        environ: Environment to read TEXVIEW_* values from (default: os.environ after load_dotenv)

    Returns:
        Frozen RenderingConfig

    Raises:
        ConfigError: On unknown keys or invalid values
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    if config_path is None and environ.get(CONFIG_PATH_ENV):
        config_path = Path(environ[CONFIG_PATH_ENV])

    layers = []
    if config_path is not None:
        layers.append(load_config_file(Path(config_path)))
    layers.append(_env_values(environ))
    layers.append(dict(overrides or {}))

    values: Dict[str, Any] = {}
    for layer in layers:
        for key, value in layer.items():
            if key not in FIELD_TYPES:
                available = sorted(FIELD_TYPES)
                raise ConfigError(f"Unknown setting. Available settings: {available}", key=key)
            values[key] = _coerce(key, value)

    # Probe the host exactly once; the frozen result is what the pipeline consults
    if "sandbox_disabled" not in values:
        values["sandbox_disabled"] = probe_sandbox().disabled

    return RenderingConfig(**values)


def with_overrides(config: RenderingConfig, **changes: Any) -> RenderingConfig:
    """Return a copy of config with selected fields replaced (validated like load_config)."""
    for key in changes:
        if key not in FIELD_TYPES:
            raise ConfigError("Unknown setting", key=key)
    return dataclasses.replace(config, **{k: _coerce(k, v) for k, v in changes.items()})
