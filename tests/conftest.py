"""
Shared fixtures: a fake TeX toolchain.

One Python script sits behind sh wrappers named pdflatex, biber, bibtex and
pdftocairo. Its behaviour is selected through FAKE_* environment variables,
which child processes inherit from the test process. Every invocation is
appended to calls.jsonl so tests can count passes.
"""

import json
import stat
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from texview.contexts.rendering.config import RenderingConfig

FAKE_TOOL = r'''
import json
import os
import sys
import time

tool = os.environ["FAKE_TOOL_NAME"]
args = sys.argv[1:]
state_dir = os.environ["FAKE_STATE_DIR"]
with open(os.path.join(state_dir, "calls.jsonl"), "a", encoding="utf-8") as f:
    f.write(json.dumps({
        "tool": tool,
        "args": args,
        "cwd": os.getcwd(),
        "env": {k: os.environ.get(k) for k in ("shell_escape", "openin_any", "openout_any", "TEXINPUTS")},
    }) + "\n")


def write(name, text):
    with open(name, "w", encoding="utf-8") as fh:
        fh.write(text)


def next_pass():
    count = 1
    if os.path.exists("fake_pass_count"):
        with open("fake_pass_count", encoding="utf-8") as fh:
            count = int(fh.read()) + 1
    write("fake_pass_count", str(count))
    return count


def emit_pdf(log_lines):
    pages = int(os.environ.get("FAKE_PAGES", "1"))
    write("doc.pdf", "FAKEPDF pages=%d" % pages)
    log_lines.append("Output written on doc.pdf (%d pages, 1234 bytes)." % pages)
    write("doc.log", "\n".join(log_lines) + "\n")


if tool == "pdflatex":
    mode = os.environ.get("FAKE_TEX_MODE", "clean")
    n = next_pass()
    log = ["This is fake pdfTeX, pass %d" % n, "(./doc.tex"]
    if mode == "clean":
        emit_pdf(log)
    elif mode == "warnings":
        log.append("LaTeX Warning: Reference `sec:x' on page 1 undefined on input line 3.")
        log.append("doc.tex:7: Undefined control sequence.")
        emit_pdf(log)
    elif mode == "rerun-once":
        if n == 1:
            log.append("LaTeX Warning: Label(s) may have changed. Rerun to get cross-references right.")
        emit_pdf(log)
    elif mode == "never-stable":
        log.append("LaTeX Warning: Label(s) may have changed. Rerun to get cross-references right.")
        emit_pdf(log)
    elif mode == "toc":
        if n == 1:
            log.append("No file doc.toc.")
        emit_pdf(log)
    elif mode == "hard-fail":
        log += ["! Undefined control sequence.", "l.3 \\foo", "! Emergency stop."]
        write("doc.log", "\n".join(log) + "\n")
        sys.stdout.write("! Emergency stop.\n")
        sys.exit(1)
    elif mode == "fail-on-pass-2":
        if n >= 2:
            log.append("! Emergency stop.")
            write("doc.log", "\n".join(log) + "\n")
            sys.exit(1)
        log.append("LaTeX Warning: There were undefined references.")
        emit_pdf(log)
    elif mode == "leak-path":
        here = os.getcwd()
        log.append("! LaTeX Error: File `%s/missing.sty' not found." % here)
        write("doc.log", "\n".join(log) + "\n")
        sys.stderr.write("cannot open %s/doc.tex\n" % here)
        sys.exit(1)
    elif mode == "no-pages":
        log.append("No pages of output.")
        write("doc.log", "\n".join(log) + "\n")
    elif mode in ("biber", "biber-unstable"):
        write("doc.bcf", "<bcf:controlfile/>")
        if not os.path.exists("doc.bbl"):
            log.append("Package biblatex Warning: Please (re)run Biber on the file:")
            log.append("(biblatex)                doc")
            log.append("LaTeX Warning: Citation `knuth' on page 1 undefined on input line 5.")
            log.append("LaTeX Warning: There were undefined references.")
        if mode == "biber-unstable":
            log.append("LaTeX Warning: Label(s) may have changed. Rerun to get cross-references right.")
        emit_pdf(log)
    elif mode == "bibtex":
        # bibtex output needs two passes: one writes \bibcite, the next resolves it
        write("doc.aux", "\\citation{knuth}\n\\bibdata{refs}\n")
        if not os.path.exists("doc.bbl"):
            log.append("LaTeX Warning: Citation `knuth' on page 1 undefined on input line 5.")
            log.append("LaTeX Warning: There were undefined references.")
        elif not os.path.exists("fake_bibcite"):
            write("fake_bibcite", "1")
            log.append("LaTeX Warning: Citation `knuth' on page 1 undefined on input line 5.")
            log.append("LaTeX Warning: There were undefined references.")
            log.append("LaTeX Warning: Label(s) may have changed. Rerun to get cross-references right.")
        emit_pdf(log)
    elif mode == "aux-dir":
        # An unreadable doc.aux: a directory where the compiler's file should be
        if not os.path.isdir("doc.aux"):
            os.mkdir("doc.aux")
        emit_pdf(log)
    elif mode == "sleep":
        sys.stdout.write("started\n")
        sys.stdout.flush()
        time.sleep(60)
    sys.exit(0)

if tool in ("biber", "bibtex"):
    mode = os.environ.get("FAKE_BIB_MODE", "ok")
    if mode == "ok":
        write("doc.bbl", "\\begin{thebibliography}{1}\\end{thebibliography}")
        sys.exit(0)
    if mode == "sleep":
        time.sleep(60)
    sys.stdout.write("ERROR - Cannot find 'refs.bib'!\n")
    sys.exit(2)

if tool == "pdftocairo":
    mode = os.environ.get("FAKE_CAIRO_MODE", "pages")
    if mode == "fail":
        sys.stderr.write("Syntax Error: Couldn't read xref table\n")
        sys.exit(1)
    if mode == "empty":
        sys.exit(0)
    with open(args[1], encoding="utf-8") as fh:
        pages = int(fh.read().split("=")[1])
    prefix = args[2]
    if mode == "single":
        write(prefix + ".svg", "<svg>page 1</svg>")
    else:
        for i in range(1, pages + 1):
            write("%s-%d.svg" % (prefix, i), "<svg>page %d</svg>" % i)
    sys.exit(0)

sys.exit(99)
'''

TOOL_NAMES = ["pdflatex", "biber", "bibtex", "pdftocairo"]


class FakeToolchain:
    """Handle on the fake toolchain installed for one test."""

    def __init__(self, bin_dir: Path, state_dir: Path, config: RenderingConfig, work_root: Path):
        self.bin_dir = bin_dir
        self.state_dir = state_dir
        self.config = config
        self.work_root = work_root

    def calls(self, tool: Optional[str] = None) -> List[Dict]:
        calls_file = self.state_dir / "calls.jsonl"
        if not calls_file.exists():
            return []
        records = [json.loads(line) for line in calls_file.read_text().splitlines() if line]
        return [r for r in records if tool is None or r["tool"] == tool]

    def working_areas(self) -> List[Path]:
        if not self.work_root.exists():
            return []
        return list(self.work_root.iterdir())


@pytest.fixture
def fake_toolchain(tmp_path, monkeypatch) -> FakeToolchain:
    """Install the fake toolchain and return a matching RenderingConfig."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    state_dir = tmp_path / "state"
    state_dir.mkdir()

    tool_script = bin_dir / "fake_tool.py"
    tool_script.write_text(FAKE_TOOL, encoding="utf-8")
    for name in TOOL_NAMES:
        script = bin_dir / name
        script.write_text(
            f"#!/bin/sh\nFAKE_TOOL_NAME={name} exec \"{sys.executable}\" \"{tool_script}\" \"$@\"\n",
            encoding="utf-8",
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    monkeypatch.setenv("FAKE_STATE_DIR", str(state_dir))
    for var in ("FAKE_TEX_MODE", "FAKE_BIB_MODE", "FAKE_CAIRO_MODE", "FAKE_PAGES"):
        monkeypatch.delenv(var, raising=False)

    config = RenderingConfig(
        latex_compiler=str(bin_dir / "pdflatex"),
        biber_tool=str(bin_dir / "biber"),
        bibtex_tool=str(bin_dir / "bibtex"),
        rasterizer=str(bin_dir / "pdftocairo"),
        process_timeout_s=10,
        bibliography_timeout_s=10,
        poll_interval_s=0.01,
        termination_grace_s=1,
        output_dir=tmp_path / "pages",
        sandbox_disabled=False,
    )
    return FakeToolchain(bin_dir, state_dir, config, tmp_path / "work")


SIMPLE_DOCUMENT = r"""
\documentclass{article}
\begin{document}
Hello World
\end{document}
"""


@pytest.fixture
def simple_document() -> str:
    return SIMPLE_DOCUMENT

