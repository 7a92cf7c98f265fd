"""
Logger setup for texview entry points.

Library modules only emit through loguru; sinks are configured once, by
whichever entry point owns the process (the CLI or an embedding host).
Context-specific wrappers live in contexts/{context}/logger.py.
"""

import platform
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

import texview

# Console colours per level; loguru defaults for the rest
LEVEL_COLORS = {
    "WARNING": "<yellow>",
    "ERROR": "<red>",
    "CRITICAL": "<bold><red>",
}

# Compilations run on the queue worker, so every line names its thread
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <7} | {thread.name: <22} | {message}"
CONSOLE_FORMAT = "{time:HH:mm:ss} | <level>{level: <7}</level> | <level>{message}</level>"


def setup_logger(
    context_name: str,
    log_dir: Path,
    extra_provenance: Optional[dict] = None,
    console_level: str = "INFO",
    rotation: Optional[str] = "10 MB",
) -> Path:
    """
    Configure loguru sinks for one session and write a provenance header.

    The file sink records DEBUG and above (raw compiler logs included); the
    console sink shows console_level and above. A long-running preview host
    keeps appending to the same file, so it is rotated by size.

    Args:
        context_name: Context identifier, used as the log file name (e.g., "render")
        log_dir: Directory for this logging session
        extra_provenance: Additional key-value pairs for the provenance header
        console_level: Minimum level echoed to stdout
        rotation: loguru rotation condition for the file sink (None disables it)

    Returns:
        Path to log file

    Example:
        from texview.utils.logger import setup_logger

        log_file = setup_logger(
            context_name="render",
            log_dir=Path("outs/logs/render_20251114_123456"),
            extra_provenance={"LaTeX compiler": "pdflatex"}
        )
    """
    log_dir.mkdir(exist_ok=True, parents=True)
    log_file = log_dir / f"{context_name}.log"

    logger.remove()

    for level_name, color in LEVEL_COLORS.items():
        logger.level(level_name, color=color)

    logger.add(log_file, format=FILE_FORMAT, level="DEBUG", rotation=rotation, retention=3)
    logger.add(sys.stdout, format=CONSOLE_FORMAT, level=console_level, colorize=True)

    log_provenance(extra_provenance)

    return log_file


def log_provenance(extra_context: Optional[dict] = None) -> None:
    """Log who ran what, where: command line, host, interpreter and texview version."""
    logger.info("=" * 80)
    logger.info(f"Command: {' '.join(sys.argv)}")
    logger.info(f"Working directory: {Path.cwd()}")
    logger.info(f"Host: {platform.node()} ({platform.platform()})")
    logger.info(f"Python: {sys.version.split()[0]}, texview {texview.__version__}")

    for key, value in (extra_context or {}).items():
        logger.info(f"{key}: {value}")

    logger.info("=" * 80)
