"""Module entrypoint for running Bookbridge as ``python -m bookbridge``."""

from __future__ import annotations

from bookbridge.cli import main


if __name__ == "__main__":
    main()
