"""Module entrypoint for `python -m sessionmux`."""

from sessionmux.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
