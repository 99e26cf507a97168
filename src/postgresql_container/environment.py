# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Environment-variable configuration surface of the PostgreSQL image.

``ContainerEnv`` turns a scenario's settings into ``-e``/``-v`` runtime
arguments. ``problems()`` mirrors the checks the image performs at startup so
a scenario can be rejected before a container is spent on it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
# ")-=" is a range, as in the image's own check.
PASSWORD_RE = re.compile(r"^[a-zA-Z0-9_~!@#$%^&*()-=<>,.?;:|]+$")
MAX_IDENTIFIER_LENGTH = 63

VERY_LONG_IDENTIFIER = "very_long_identifier_" + "x" * 88


@dataclass(frozen=True)
class ContainerEnv:
    """Values for the ``POSTGRESQL_*`` variables; ``None`` means unset."""

    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    admin_password: Optional[str] = None
    max_connections: Optional[int] = None
    shared_buffers: Optional[str] = None
    volumes: Tuple[Tuple[str, str], ...] = ()

    def variables(self) -> Dict[str, str]:
        pairs = [
            ("POSTGRESQL_USER", self.user),
            ("POSTGRESQL_PASSWORD", self.password),
            ("POSTGRESQL_DATABASE", self.database),
            ("POSTGRESQL_ADMIN_PASSWORD", self.admin_password),
            ("POSTGRESQL_MAX_CONNECTIONS", self.max_connections),
            ("POSTGRESQL_SHARED_BUFFERS", self.shared_buffers),
        ]
        return {key: str(value) for key, value in pairs if value is not None}

    def run_args(self) -> List[str]:
        args: List[str] = []
        for key, value in self.variables().items():
            args.extend(["-e", f"{key}={value}"])
        for host_path, container_path in self.volumes:
            args.extend(["-v", f"{host_path}:{container_path}:Z"])
        return args

    def with_volume(self, host_path: str, container_path: str) -> "ContainerEnv":
        return replace(self, volumes=self.volumes + ((host_path, container_path),))

    def describe(self) -> str:
        return " ".join(f"{key}={value}" for key, value in self.variables().items()) or "(no variables)"

    def problems(self) -> List[str]:
        """Return the reasons the image would refuse to start; empty when valid."""
        found: List[str] = []
        account = (self.user, self.password, self.database)
        if any(value is not None for value in account):
            if any(value is None for value in account):
                found.append(
                    "POSTGRESQL_USER, POSTGRESQL_PASSWORD and POSTGRESQL_DATABASE must be set together"
                )
            if self.user is not None:
                found.extend(_identifier_problems("POSTGRESQL_USER", self.user))
            if self.password is not None and not PASSWORD_RE.match(self.password):
                found.append("POSTGRESQL_PASSWORD contains invalid characters")
            if self.database is not None:
                found.extend(_identifier_problems("POSTGRESQL_DATABASE", self.database))
        if self.admin_password is not None and not PASSWORD_RE.match(self.admin_password):
            found.append("POSTGRESQL_ADMIN_PASSWORD contains invalid characters")
        if all(value is None for value in account) and self.admin_password is None:
            found.append("either the user/password/database triple or POSTGRESQL_ADMIN_PASSWORD is required")
        return found


def _identifier_problems(key: str, value: str) -> List[str]:
    found = []
    if not IDENTIFIER_RE.match(value):
        found.append(f"{key} is not a valid identifier")
    if len(value) > MAX_IDENTIFIER_LENGTH:
        found.append(f"{key} is too long (maximum {MAX_IDENTIFIER_LENGTH} characters)")
    return found


PARTIAL_ACCOUNTS: Tuple[ContainerEnv, ...] = (
    ContainerEnv(user="user", password="pass"),
    ContainerEnv(user="user", database="db"),
    ContainerEnv(password="pass", database="db"),
)

MALFORMED_ACCOUNTS: Tuple[ContainerEnv, ...] = (
    ContainerEnv(user="", password="pass", database="db", admin_password="admin_pass"),
    ContainerEnv(user=VERY_LONG_IDENTIFIER, password="pass", database="db", admin_password="admin_pass"),
    ContainerEnv(user="user", password='"', database="db", admin_password="admin_pass"),
    ContainerEnv(user="user", password="pass", database="9invalid", admin_password="admin_pass"),
    ContainerEnv(user="user", password="pass", database=VERY_LONG_IDENTIFIER, admin_password="admin_pass"),
    ContainerEnv(user="user", password="pass", database="db", admin_password='"'),
)


def invalid_combinations() -> List[ContainerEnv]:
    """Every configuration the creation tests expect the image to reject."""
    combos = list(PARTIAL_ACCOUNTS)
    combos.extend(replace(env, admin_password="admin_pass") for env in PARTIAL_ACCOUNTS)
    combos.extend(MALFORMED_ACCOUNTS)
    return combos
