"""Pytest configuration for the ode_engine documentation examples."""

from os import chdir, getcwd
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any

from sybil import Sybil
from sybil.parsers.markdown import PythonCodeBlockParser, SkipParser


def documentation_setup(namespace: dict[str, Any]) -> None:
    """Run each documentation file from a fresh temporary directory."""
    tmp = TemporaryDirectory()
    namespace["_doc_tmpdir"] = tmp
    namespace["_doc_cwd"] = getcwd()
    chdir(tmp.name)


def documentation_teardown(namespace: dict[str, Any]) -> None:
    """Return to the original working directory and drop the temporary one."""
    chdir(namespace.pop("_doc_cwd"))
    namespace.pop("_doc_tmpdir").cleanup()


pytest_collect_file = Sybil(
    parsers=[
        PythonCodeBlockParser(),
        SkipParser(),
    ],
    path=str(Path(__file__).parent / "docs"),
    pattern="**/*.md",
    setup=documentation_setup,
    teardown=documentation_teardown,
).pytest()
