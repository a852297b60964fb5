#!/usr/bin/env python3

from __future__ import annotations

import argparse
import sys

from src.cli.commands.normalize import build_parser as build_normalize_parser
from src.cli.commands.normalize import normalize_cli, register_commands


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Document normalization toolkit.",
        prog="python -m main",
    )
    subparsers = parser.add_subparsers(dest="area", required=True)
    register_commands(subparsers)
    return parser


def main(argv: list[str] | None = None) -> int:
    raw_args = sys.argv[1:] if argv is None else argv

    if raw_args and raw_args[0] == "normalize":
        parser = build_normalize_parser(prog="python -m main normalize")
        try:
            args = parser.parse_args(raw_args[1:])
        except argparse.ArgumentError as exc:
            parser.error(str(exc))
        return normalize_cli(args)

    parser = build_parser()
    args = parser.parse_args(raw_args)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
