"""Pytest configuration for the executable pages under docs/."""

from __future__ import annotations

import os
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any

import numpy as np
from sybil import Sybil
from sybil.parsers.markdown import PythonCodeBlockParser, SkipParser

_DOCS_DIR = Path(__file__).parent / "docs"


def documentation_setup(namespace: dict[str, Any]) -> None:
    """Run each page from its own scratch directory with numpy preloaded."""
    scratch = TemporaryDirectory()
    namespace["_scratch"] = scratch
    namespace["_cwd"] = Path.cwd()
    namespace["np"] = np
    os.chdir(scratch.name)


def documentation_teardown(namespace: dict[str, Any]) -> None:
    """Return to the original directory and remove the scratch directory."""
    os.chdir(namespace.pop("_cwd"))
    namespace.pop("_scratch").cleanup()


pytest_collect_file = Sybil(
    parsers=[
        PythonCodeBlockParser(),
        SkipParser(),
    ],
    path=str(_DOCS_DIR),
    pattern="*.md",
    setup=documentation_setup,
    teardown=documentation_teardown,
).pytest()
