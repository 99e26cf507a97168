# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Harness settings read from the environment and optional env files."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

from packaging.version import InvalidVersion, Version

RUNTIMES = ("docker", "podman")
CLIENTS = ("psql", "psycopg")

DEFAULT_VERSION = "9.5"

CONFIG_FILE = "/var/lib/pgsql/openshift-custom-postgresql.conf"
DATA_DIR = "/var/lib/pgsql/data"


def load_env(path: Path) -> Dict[str, str]:
    env: Dict[str, str] = {}
    if not path.exists():
        return env
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        env[key.strip()] = value.strip()
    return env


def normalize_version(tag: str) -> Optional[str]:
    tag = tag.strip()
    tag = re.sub(r"^(REL[_-])", "", tag, flags=re.IGNORECASE)
    tag = tag.lstrip("vV")
    tag = tag.replace("_", ".")
    match = re.search(r"\d+(?:\.\d+)*", tag)
    return match.group(0) if match else None


def parse_version(text: str) -> Version:
    normalized = normalize_version(text)
    if normalized is None:
        raise InvalidVersion(f"no version number in {text!r}")
    return Version(normalized)


@dataclass(frozen=True)
class HarnessSettings:
    image_name: Optional[str] = None
    version: str = DEFAULT_VERSION
    runtime: str = "docker"
    client: str = "psql"
    connect_attempts: int = 20
    connect_delay: float = 2.0
    creation_timeout: float = 60.0
    port: int = 5432
    config_file: str = CONFIG_FILE
    data_dir: str = DATA_DIR

    def __post_init__(self) -> None:
        if self.runtime not in RUNTIMES:
            raise ValueError(
                f"unsupported container runtime {self.runtime!r} (expected one of {', '.join(RUNTIMES)})"
            )
        if self.client not in CLIENTS:
            raise ValueError(
                f"unsupported SQL client {self.client!r} (expected one of {', '.join(CLIENTS)})"
            )
        try:
            parse_version(self.version)
        except InvalidVersion as exc:
            raise ValueError(f"VERSION is not a PostgreSQL version: {self.version!r}") from exc
        if self.connect_attempts < 1:
            raise ValueError("connect_attempts must be at least 1")
        if self.connect_delay < 0 or self.creation_timeout <= 0:
            raise ValueError("connect_delay must be >= 0 and creation_timeout > 0")

    def require_image(self) -> str:
        if not self.image_name:
            raise ValueError("IMAGE_NAME is not set; pass --image or export IMAGE_NAME")
        return self.image_name

    def override(self, **values) -> "HarnessSettings":
        """Return a copy with every non-``None`` value replaced."""
        changes = {key: value for key, value in values.items() if value is not None}
        return replace(self, **changes) if changes else self


def settings_from_env(
    environ: Optional[Mapping[str, str]] = None,
    env_file: Optional[Path] = None,
) -> HarnessSettings:
    """Build settings from an env file overlaid by the process environment."""
    values: Dict[str, str] = {}
    if env_file is not None:
        if not env_file.exists():
            raise ValueError(f"env file not found: {env_file}")
        values.update(load_env(env_file))
    values.update(os.environ if environ is None else environ)

    def number(key: str, default: str, cast):
        raw = values.get(key, default) or default
        try:
            return cast(raw)
        except ValueError as exc:
            raise ValueError(f"{key} must be numeric, got {raw!r}") from exc

    return HarnessSettings(
        image_name=values.get("IMAGE_NAME") or None,
        version=values.get("VERSION") or DEFAULT_VERSION,
        runtime=values.get("CONTAINER_RUNTIME", "docker") or "docker",
        client=values.get("PG_TEST_CLIENT", "psql") or "psql",
        connect_attempts=number("PG_TEST_CONNECT_ATTEMPTS", "20", int),
        connect_delay=number("PG_TEST_CONNECT_DELAY", "2", float),
        creation_timeout=number("PG_TEST_CREATION_TIMEOUT", "60", float),
    )
