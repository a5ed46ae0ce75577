"""Command-line interface for coder-lifecycle.

Example:
    $ coder-lifecycle --help
    $ coder-lifecycle --version
    $ coder-lifecycle setup --env=dev

Exit Codes:
    0: Success or clean cancellation
    1: Validation or execution failure
    2: Usage error (invalid arguments)
    3: Teardown incomplete (resources remain or could not be verified)
"""

from __future__ import annotations

from coder_lifecycle.cli.main import cli, main
from coder_lifecycle.cli.utils import ExitCode, error, error_exit, success, warn

__all__: list[str] = [
    # Entry points
    "main",
    "cli",
    # Utilities
    "ExitCode",
    "error",
    "error_exit",
    "warn",
    "success",
]
