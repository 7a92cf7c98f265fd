"""
Host environment probing.

The sandbox probe runs once at startup (from load_config) and its answer is
frozen into the rendering configuration. Nothing in the compilation path
re-probes the host.
"""

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from loguru import logger

WSL_INTEROP_ENV = "WSL_INTEROP"
WEBKIT_SANDBOX_DISABLE_VAR = "WEBKIT_DISABLE_SANDBOX_THIS_IS_DANGEROUS"
WEBKIT_SANDBOX_DISABLE_VAR_MODERN = "WEBKIT_DISABLE_SANDBOX"

CONTAINER_MARKERS = ["run/.containerenv", ".dockerenv", ".flatpak-info"]
CONTAINER_CGROUP_HINTS = ["docker", "kubepods", "lxc"]


@dataclass(frozen=True)
class SandboxProbe:
    """Outcome of sandbox capability detection."""

    disabled: bool
    reason: Optional[str] = None


def _read(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None


def detect_sandbox_restrictions(
    environ: Optional[Mapping[str, str]] = None,
    proc_root: Path = Path("/"),
) -> SandboxProbe:
    """
    Decide whether namespace sandboxing is unavailable on this host.

    Returns disabled=True for WSL, containers, Flatpak/Snap, hosts without
    unprivileged user namespaces, or when the user forces it via environment.

    Args:
        environ: Environment to inspect (default: os.environ)
        proc_root: Filesystem root to inspect (tests point this at tmp_path)

    Returns:
        SandboxProbe with the first matching reason
    """
    environ = os.environ if environ is None else environ

    if WSL_INTEROP_ENV in environ:
        return SandboxProbe(True, "WSL detected")

    for marker in CONTAINER_MARKERS:
        if (proc_root / marker).exists():
            return SandboxProbe(True, f"Container marker file detected: /{marker}")

    if "SNAP" in environ:
        return SandboxProbe(True, "Snap environment detected")

    if WEBKIT_SANDBOX_DISABLE_VAR in environ:
        return SandboxProbe(True, "Sandbox explicitly disabled by environment variable")

    version = _read(proc_root / "proc" / "version")
    if version and ("microsoft" in version.lower() or "wsl" in version.lower()):
        return SandboxProbe(True, "/proc/version indicates WSL")

    userns = _read(proc_root / "proc" / "sys" / "kernel" / "unprivileged_userns_clone")
    if userns is not None and userns.strip() == "0":
        return SandboxProbe(True, "Unprivileged user namespaces are disabled")

    apparmor = _read(
        proc_root / "proc" / "sys" / "kernel" / "apparmor_restrict_unprivileged_userns"
    )
    if apparmor is not None and apparmor.strip() == "1":
        return SandboxProbe(True, "AppArmor user namespace restrictions detected")

    cgroups = _read(proc_root / "proc" / "1" / "cgroup")
    if cgroups and any(hint in cgroups for hint in CONTAINER_CGROUP_HINTS):
        return SandboxProbe(True, "Cgroups indicate container environment")

    return SandboxProbe(False)


def probe_sandbox() -> SandboxProbe:
    """Run detection against the live host and log the outcome."""
    probe = detect_sandbox_restrictions()
    if probe.disabled:
        logger.warning(f"Sandbox disabled: {probe.reason}")
    else:
        logger.debug("Sandbox available")
    return probe


def sandbox_environment(sandbox_disabled: bool) -> Dict[str, str]:
    """Environment variables a display host must export when sandboxing is unavailable."""
    if not sandbox_disabled:
        return {}
    return {WEBKIT_SANDBOX_DISABLE_VAR: "1", WEBKIT_SANDBOX_DISABLE_VAR_MODERN: "1"}


def check_dependencies(
    latex_compiler: str = "pdflatex",
    rasterizer: str = "pdftocairo",
    biber_tool: str = "biber",
) -> List[str]:
    """
    List toolchain binaries that cannot be found on PATH.

    Returns:
        Human-readable names of missing tools (empty if all present)
    """
    required = {
        latex_compiler: f"{latex_compiler} (texlive-latex-base)",
        rasterizer: f"{rasterizer} (poppler-utils)",
        biber_tool: f"{biber_tool} (biber)",
    }
    return [label for binary, label in required.items() if shutil.which(binary) is None]
