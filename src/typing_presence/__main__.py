"""Runnable wrapper so ``python -m typing_presence`` reaches the CLI."""

from typing_presence.cli import main as cli_main


def main() -> int:
    return cli_main()


if __name__ == "__main__":
    raise SystemExit(main())
