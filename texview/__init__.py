"""
texview - Safe, serialized LaTeX preview rendering

Turns author-supplied LaTeX source into per-page SVG images by driving the
external TeX toolchain (pdflatex, biber/bibtex, pdftocairo) one run at a time.

Architecture:
- Rendering Context: compilation pipeline, single-slot compilation queue
- Utilities: process runner, path sanitizer, environment probing, logging
"""

__version__ = "0.1.0"
