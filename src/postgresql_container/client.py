# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""SQL clients used against containers under test, and the readiness poller."""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Callable, List, Tuple

import psycopg
from psycopg.rows import tuple_row

from . import reporting
from .runtime import ContainerRuntime

Row = Tuple[str, ...]


class QueryError(RuntimeError):
    """A statement sent to the server failed."""


@dataclass(frozen=True)
class Credentials:
    user: str
    password: str
    database: str = "db"

    def uri(self, host: str, port: int = 5432) -> str:
        return f"postgresql://{self.user}@{host}:{port}/{self.database}"

    def with_password(self, password: str) -> "Credentials":
        return replace(self, password=password)


class PsqlClient:
    """Runs ``psql`` from a throwaway container of the image under test."""

    def __init__(self, runtime: ContainerRuntime, image: str, port: int = 5432):
        self.runtime = runtime
        self.image = image
        self.port = port

    def _psql(self, host: str, credentials: Credentials, sql: str, *flags: str):
        return self.runtime.command(
            "run",
            "--rm",
            "-i",
            "-e",
            f"PGPASSWORD={credentials.password}",
            self.image,
            "psql",
            "-v",
            "ON_ERROR_STOP=1",
            *flags,
            credentials.uri(host, self.port),
            input=sql,
        )

    def check(self, host: str, credentials: Credentials, sql: str = "SELECT 1;") -> bool:
        return self._psql(host, credentials, sql).returncode == 0

    def execute(self, host: str, credentials: Credentials, sql: str) -> None:
        result = self._psql(host, credentials, sql)
        if result.returncode != 0:
            raise QueryError(f"psql as {credentials.user} failed: {result.stderr.strip()}")

    def fetch(self, host: str, credentials: Credentials, sql: str) -> List[Row]:
        result = self._psql(host, credentials, sql, "-A", "-t", "-F", "|")
        if result.returncode != 0:
            raise QueryError(f"psql as {credentials.user} failed: {result.stderr.strip()}")
        return [tuple(line.split("|")) for line in result.stdout.splitlines() if line.strip()]


class PsycopgClient:
    """Connects straight from the host to the container address."""

    def __init__(self, port: int = 5432, connect_timeout: int = 10):
        self.port = port
        self.connect_timeout = connect_timeout

    def _connect(self, host: str, credentials: Credentials):
        return psycopg.connect(
            host=host,
            port=self.port,
            user=credentials.user,
            password=credentials.password,
            dbname=credentials.database,
            row_factory=tuple_row,
            connect_timeout=self.connect_timeout,
            autocommit=True,
        )

    def check(self, host: str, credentials: Credentials, sql: str = "SELECT 1;") -> bool:
        try:
            self.execute(host, credentials, sql)
        except QueryError:
            return False
        return True

    def execute(self, host: str, credentials: Credentials, sql: str) -> None:
        try:
            with self._connect(host, credentials) as conn:
                conn.execute(sql)
        except psycopg.Error as exc:
            raise QueryError(f"query as {credentials.user} failed: {exc}") from exc

    def fetch(self, host: str, credentials: Credentials, sql: str) -> List[Row]:
        try:
            with self._connect(host, credentials) as conn:
                with conn.cursor() as cur:
                    cur.execute(sql)
                    rows = cur.fetchall()
        except psycopg.Error as exc:
            raise QueryError(f"query as {credentials.user} failed: {exc}") from exc
        return [tuple("" if value is None else str(value) for value in row) for row in rows]


def wait_for_connection(
    client,
    host: str,
    credentials: Credentials,
    attempts: int = 20,
    delay: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll ``SELECT 1`` until it succeeds or *attempts* run out."""
    reporting.info(f"Testing PostgreSQL connection to {host}...")
    for attempt in range(1, attempts + 1):
        reporting.info(f"  Trying to connect ({attempt}/{attempts})...")
        if client.check(host, credentials):
            reporting.info("  Success!")
            return True
        if attempt < attempts:
            sleep(delay)
    return False
