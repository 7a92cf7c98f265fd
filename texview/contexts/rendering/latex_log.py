"""
LaTeX log scanning.

Decides, from the compiler's own log, whether another pass is warranted and
whether the run hit a non-recoverable error. The document itself is never
interpreted; only the log text and exit status are.
"""

import re
from typing import List, Tuple

# Markers that mean cross-references, labels, or the table of contents are stale
RERUN_PATTERNS = [
    re.compile(r"Rerun to get"),
    re.compile(r"There were undefined references"),
    re.compile(r"Label\(s\) may have changed"),
    re.compile(r"Please rerun LaTeX"),
    re.compile(r"No file [^\s]+\.toc\."),
]

# Markers for errors the compiler could not recover from
FATAL_PATTERNS = [
    re.compile(r"Emergency stop"),
    re.compile(r"Fatal error occurred"),
    re.compile(r"==> Fatal error"),
]

NO_PAGES_MARKER = "No pages of output"

ERROR_LINE = re.compile(r"^! (.+)$", re.MULTILINE)
FILE_LINE_ERROR = re.compile(r"^[^\s:]+\.tex:\d+: (.+)$", re.MULTILINE)

WARNING_PATTERNS = [
    re.compile(r"LaTeX Warning: (.+)"),
    re.compile(r"Package \w+ Warning: (.+)"),
    re.compile(r"Overfull \\hbox \((.+)\)"),
    re.compile(r"Underfull \\hbox \((.+)\)"),
]


def needs_rerun(log_text: str) -> bool:
    """True if the log asks for another pass to settle references or the TOC."""
    return any(pattern.search(log_text) for pattern in RERUN_PATTERNS)


def is_fatal(log_text: str) -> bool:
    """True if the log reports an error that stopped the compiler."""
    return any(pattern.search(log_text) for pattern in FATAL_PATTERNS)


def has_no_pages(log_text: str) -> bool:
    return NO_PAGES_MARKER in log_text


def parse_latex_log(log_content: str) -> Tuple[List[str], List[str]]:
    """
    Parse LaTeX log file for errors and warnings.

    Args:
        log_content: Content of the .log file

    Returns:
        Tuple of (errors, warnings), each de-duplicated in order of appearance
    """
    errors: List[str] = []
    warnings: List[str] = []

    # With -file-line-error the same error appears as "doc.tex:12: msg" instead of "! msg"
    for pattern in (ERROR_LINE, FILE_LINE_ERROR):
        for match in pattern.finditer(log_content):
            message = match.group(1).strip()
            if message not in errors:
                errors.append(message)

    for pattern in WARNING_PATTERNS:
        for match in pattern.finditer(log_content):
            message = match.group(1).strip()
            if message not in warnings:
                warnings.append(message)

    return errors, warnings


def tail(text: str, max_chars: int) -> str:
    """Last max_chars characters of text, starting at a line boundary when possible."""
    if len(text) <= max_chars:
        return text
    clipped = text[-max_chars:]
    newline = clipped.find("\n")
    if 0 <= newline < len(clipped) - 1:
        clipped = clipped[newline + 1 :]
    return f"[... {len(text) - len(clipped)} earlier characters omitted ...]\n{clipped}"
