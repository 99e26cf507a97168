# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Test scenarios composed from the runtime, client and assertion helpers."""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

from . import reporting
from .assertions import (
    AssertionFailure,
    LoginExpectation,
    assert_config_option,
    assert_container_creation_fails,
    assert_local_access,
    assert_login_access,
    assert_scl_usage,
    assert_server_version,
)
from .client import Credentials, PsqlClient, PsycopgClient, wait_for_connection
from .environment import ContainerEnv, invalid_combinations
from .runtime import ContainerRegistry, ContainerRuntime
from .settings import HarnessSettings

ADMIN_USER = "postgres"
MAX_CONNECTIONS = 42
SHARED_BUFFERS = "64MB"
EXPECTED_ROWS = [("foo1", "bar1"), ("foo2", "bar2"), ("foo3", "bar3")]


@dataclass
class HarnessContext:
    settings: HarnessSettings
    runtime: ContainerRuntime
    registry: ContainerRegistry
    client: object

    def ready(self, name: str, credentials: Credentials) -> str:
        """Return the address of container *name* once it accepts *credentials*."""
        host = self.registry.ip(name)
        if not wait_for_connection(
            self.client,
            host,
            credentials,
            attempts=self.settings.connect_attempts,
            delay=self.settings.connect_delay,
        ):
            raise RuntimeError(f"postgresql in container {name} never reached ready state")
        return host


def make_client(settings: HarnessSettings, runtime: ContainerRuntime):
    if settings.client == "psycopg":
        return PsycopgClient(port=settings.port)
    return PsqlClient(runtime, settings.require_image(), port=settings.port)


@contextlib.contextmanager
def harness(settings: HarnessSettings, runtime: Optional[ContainerRuntime] = None) -> Iterator[HarnessContext]:
    """Yield a context whose containers are all reaped on exit, however it exits."""
    image = settings.require_image()
    if runtime is None:
        runtime = ContainerRuntime(settings.runtime)
        runtime.ensure_available()
    with ContainerRegistry(runtime, image) as registry:
        yield HarnessContext(settings, runtime, registry, make_client(settings, runtime))


@dataclass(frozen=True)
class Scenario:
    name: str
    user: Optional[str] = None
    password: Optional[str] = None
    database: str = "db"
    admin_password: Optional[str] = None

    @property
    def has_account(self) -> bool:
        return bool(self.user) and bool(self.password)

    def container_env(self) -> ContainerEnv:
        env = ContainerEnv(
            admin_password=self.admin_password,
            max_connections=MAX_CONNECTIONS,
            shared_buffers=SHARED_BUFFERS,
        )
        if self.user is not None or self.password is not None:
            env = replace(env, user=self.user, password=self.password, database=self.database)
        return env

    def user_credentials(self) -> Credentials:
        return Credentials(self.user or "", self.password or "", self.database)

    def admin_credentials(self) -> Credentials:
        return Credentials(ADMIN_USER, self.admin_password or "", "postgres")

    def connect_credentials(self) -> Credentials:
        if self.has_account:
            return self.user_credentials()
        return replace(self.admin_credentials(), database=self.database)


DEFAULT_SCENARIOS: Sequence[Scenario] = (
    Scenario("no_root", user="user", password="pass", database="db"),
    Scenario("root", user="user1", password="pass1", database="db", admin_password="r00t"),
    Scenario("only_root", database="postgres", admin_password="r00t"),
)


def run_container_creation_tests(ctx: HarnessContext) -> None:
    reporting.info("Testing image entrypoint usage")
    for env in invalid_combinations():
        assert_container_creation_fails(ctx.registry, env, ctx.settings.creation_timeout)
    reporting.info("  Success!")


def run_configuration_tests(ctx: HarnessContext, name: str) -> None:
    reporting.info("Testing image configuration settings")
    path = ctx.settings.config_file
    assert_config_option(ctx.registry, name, "max_connections", str(MAX_CONNECTIONS), path)
    assert_config_option(ctx.registry, name, "shared_buffers", SHARED_BUFFERS, path)
    reporting.info("  Success!")


def run_data_round_trip(ctx: HarnessContext, host: str, scenario: Scenario) -> None:
    """Round-trip three rows through a fresh table as the regular user."""
    reporting.info("Testing PostgreSQL")
    client = ctx.client
    user = scenario.user_credentials()
    if scenario.admin_password:
        admin = replace(scenario.admin_credentials(), database=scenario.database)
        client.execute(host, admin, 'CREATE EXTENSION IF NOT EXISTS "uuid-ossp";')
    else:
        available = client.fetch(host, user, "SELECT name FROM pg_available_extensions WHERE name = 'uuid-ossp';")
        if not available:
            raise AssertionFailure("uuid-ossp is not available; is the contrib package installed?")
    client.execute(host, user, "CREATE TABLE tbl (col1 VARCHAR(20), col2 VARCHAR(20));")
    for col1, col2 in EXPECTED_ROWS:
        client.execute(host, user, f"INSERT INTO tbl VALUES ('{col1}', '{col2}');")
    rows = client.fetch(host, user, "SELECT * FROM tbl;")
    if rows != EXPECTED_ROWS:
        raise AssertionFailure(f"SELECT * FROM tbl returned {rows!r}, expected {EXPECTED_ROWS!r}")
    reporting.info("  Success!")


def run_tests(ctx: HarnessContext, scenario: Scenario) -> None:
    reporting.info(f"Running scenario {scenario.name}")
    env = scenario.container_env()
    problems = env.problems()
    if problems:
        raise ValueError(f"scenario {scenario.name} is misconfigured: {'; '.join(problems)}")
    ctx.registry.create(scenario.name, env)
    host = ctx.ready(scenario.name, scenario.connect_credentials())

    version = ctx.settings.version
    reporting.info("Testing scl usage")
    assert_scl_usage(ctx.registry, scenario.name, "psql --version", version)
    assert_server_version(ctx.client, host, scenario.connect_credentials(), version)

    reporting.info("Testing login accesses")
    if scenario.has_account:
        user = scenario.user_credentials()
        assert_login_access(ctx.client, host, user, LoginExpectation.GRANTED)
        assert_login_access(ctx.client, host, user.with_password(f"{user.password}_foo"), LoginExpectation.DENIED)
    if scenario.admin_password:
        admin = scenario.admin_credentials()
        assert_login_access(ctx.client, host, admin, LoginExpectation.GRANTED)
        assert_login_access(ctx.client, host, admin.with_password(f"{admin.password}_foo"), LoginExpectation.DENIED)
    assert_local_access(ctx.registry, scenario.name)
    run_configuration_tests(ctx, scenario.name)
    reporting.info("  Success!")

    if scenario.has_account:
        run_data_round_trip(ctx, host, scenario)


def _purge_data_dir(ctx: HarnessContext, volume_dir: Path) -> None:
    # Files are owned by the container's user; delete them from inside.
    ctx.runtime.command(
        "run",
        "--rm",
        "-v",
        f"{volume_dir}:/target:Z",
        ctx.registry.image,
        "/bin/bash",
        "-c",
        "rm -rf /target/* /target/.[!.]* /target/..?*",
    )
    shutil.rmtree(volume_dir, ignore_errors=True)


def run_change_password_test(ctx: HarnessContext) -> None:
    reporting.info("Testing password change on restart")
    name = "change_password"
    new_name = f"{name}_new"
    user = Credentials("user", "password", "db")
    admin = Credentials(ADMIN_USER, "adminPassword", "postgres")
    volume_dir = Path(tempfile.mkdtemp(prefix="pg-testdata."))
    os.chmod(volume_dir, 0o777)
    env = ContainerEnv(
        user=user.user,
        password=user.password,
        database=user.database,
        admin_password=admin.password,
    ).with_volume(str(volume_dir), ctx.settings.data_dir)
    try:
        ctx.registry.create(name, env)
        host = ctx.ready(name, user)
        assert_login_access(ctx.client, host, user, LoginExpectation.GRANTED)
        assert_login_access(ctx.client, host, admin, LoginExpectation.GRANTED)
        ctx.registry.stop(name)

        new_user = user.with_password(f"NEW_{user.password}")
        new_admin = admin.with_password(f"NEW_{admin.password}")
        ctx.registry.create(new_name, replace(env, password=new_user.password, admin_password=new_admin.password))
        host = ctx.ready(new_name, new_user)
        assert_login_access(ctx.client, host, user, LoginExpectation.DENIED)
        assert_login_access(ctx.client, host, new_user, LoginExpectation.GRANTED)
        assert_login_access(ctx.client, host, admin, LoginExpectation.DENIED)
        assert_login_access(ctx.client, host, new_admin, LoginExpectation.GRANTED)
    finally:
        ctx.registry.remove(new_name)
        ctx.registry.remove(name)
        _purge_data_dir(ctx, volume_dir)
    reporting.info("  Success!")


def select_scenarios(names: Optional[Iterable[str]]) -> Sequence[Scenario]:
    if not names:
        return DEFAULT_SCENARIOS
    by_name = {scenario.name: scenario for scenario in DEFAULT_SCENARIOS}
    unknown = [name for name in names if name not in by_name]
    if unknown:
        raise ValueError(f"unknown scenario(s): {', '.join(unknown)} (known: {', '.join(by_name)})")
    return [by_name[name] for name in names]


def run_all(
    ctx: HarnessContext,
    scenarios: Sequence[Scenario] = DEFAULT_SCENARIOS,
    creation_tests: bool = True,
    change_password: bool = True,
) -> None:
    if creation_tests:
        run_container_creation_tests(ctx)
    for scenario in scenarios:
        run_tests(ctx, scenario)
    if change_password:
        run_change_password_test(ctx)
