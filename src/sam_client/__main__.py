"""Thin runnable wrapper for ``python -m sam_client``."""

from sam_client.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
