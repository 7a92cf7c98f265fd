"""
Diagnostic path sanitization.

Every piece of compiler output that leaves the rendering core is passed
through sanitize() so that no absolute location of a working area (or any
other path under the host temporary directory) reaches a caller.
"""

import html
import os
import re
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, Optional, Union

PLACEHOLDER = "[TEMP_DIR]"

# Characters that terminate a path inside compiler logs and error messages
_PATH_TAIL = r"[^\s'\"()<>\[\]{},;]*"


@lru_cache(maxsize=1)
def _temp_roots() -> List[str]:
    """Host temporary-directory prefixes, longest first."""
    candidates = {tempfile.gettempdir(), "/tmp", "/var/tmp"}
    candidates |= {os.path.realpath(c) for c in list(candidates)}
    roots = (c.rstrip(os.sep) for c in candidates if c and c != os.sep)
    return sorted(roots, key=len, reverse=True)


def _root_variants(known_root: Union[str, Path]) -> List[str]:
    """Spellings of known_root a tool may print (as given and symlink-resolved)."""
    root = str(known_root).rstrip(os.sep)
    variants = {root, os.path.realpath(root)}
    return sorted((v for v in variants if v and v != os.sep), key=len, reverse=True)


def sanitize(
    text: str,
    known_root: Optional[Union[str, Path]] = None,
    extra_roots: Iterable[Union[str, Path]] = (),
) -> str:
    """
    Replace absolute filesystem paths in diagnostic text with PLACEHOLDER.

    Every occurrence of known_root (the working area) is replaced first, keeping
    the relative remainder so "/tmp/texview-x/doc.tex" reads "[TEMP_DIR]/doc.tex".
    Any remaining path under the host temporary directory is then collapsed to
    the bare placeholder.

    Args:
        text: Diagnostic text (compiler log, stderr, error message)
        known_root: Absolute path of the working area for this run
        extra_roots: Additional absolute paths to hide (e.g., the page output directory)

    Returns:
        Sanitized text

    Example:
        >>> sanitize("Error in /tmp/xyz123/doc.tex: missing package", "/tmp/xyz123")
        'Error in [TEMP_DIR]/doc.tex: missing package'
    """
    if not text:
        return text

    roots: List[str] = []
    if known_root is not None:
        roots.extend(_root_variants(known_root))
    for extra in extra_roots:
        roots.extend(_root_variants(extra))

    for root in sorted(set(roots), key=len, reverse=True):
        text = text.replace(root, PLACEHOLDER)

    for temp_root in _temp_roots():
        pattern = re.escape(temp_root) + r"(?=[/\\])" + _PATH_TAIL
        text = re.sub(pattern, PLACEHOLDER, text)

    return text


def escape_markup(text: str) -> str:
    """Escape text so a markup renderer shows it literally."""
    return html.escape(text, quote=True)
