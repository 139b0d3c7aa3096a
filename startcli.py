"""Small wrapper to run the PersonaRank CLI with `python startcli.py ...`.

This forwards all command-line arguments to the `personarank.cli.main`
entry point so you can run the CLI from the repository root without
installing the package or using `python -m`.
"""
from __future__ import annotations

import sys

from personarank.cli import main


if __name__ == "__main__":
    main(sys.argv[1:])
