# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Prefixed progress output on stderr."""

from __future__ import annotations

import sys

PREFIX = "[pg-test]"


def info(message: str) -> None:
    print(f"{PREFIX} {message}", file=sys.stderr, flush=True)


def error(message: str) -> None:
    print(f"{PREFIX} ERROR: {message}", file=sys.stderr, flush=True)


def dump(title: str, text: str) -> None:
    """Print a block of captured output (container logs, command output)."""
    print(f"{PREFIX} --- {title} ---", file=sys.stderr)
    if text:
        print(text.rstrip("\n"), file=sys.stderr)
    print(f"{PREFIX} --- end of {title} ---", file=sys.stderr, flush=True)
