# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Black-box assertions against containers of the image under test.

Every check raises ``AssertionFailure`` on mismatch; the run stops at the
first one and the registry's cleanup reaps whatever was started.
"""

from __future__ import annotations

import enum
from typing import Dict

from packaging.version import InvalidVersion

from . import reporting
from .client import Credentials
from .environment import ContainerEnv
from .runtime import ContainerRegistry
from .settings import parse_version


class AssertionFailure(AssertionError):
    """An observed outcome differs from the expected one."""


class LoginExpectation(enum.Enum):
    GRANTED = True
    DENIED = False


def assert_login_access(client, host: str, credentials: Credentials, expected: LoginExpectation) -> None:
    who = f"{credentials.user}({credentials.password})"
    reporting.info(f"testing login as {who}; expecting access {expected.name.lower()}")
    granted = client.check(host, credentials)
    if bool(granted) == expected.value:
        reporting.info(f"    {who} access {expected.name.lower()} as expected")
        return
    observed = "granted" if granted else "denied"
    raise AssertionFailure(f"{who} login assertion failed: access {observed}, expected {expected.name.lower()}")


def assert_container_creation_fails(registry: ContainerRegistry, env: ContainerEnv, timeout: float) -> None:
    """The image must refuse *env* by exiting non-zero within *timeout* seconds."""
    name = registry.scratch_name("invalid")
    code = registry.run_once(name, env, timeout)
    if code is None:
        raise AssertionFailure(
            f"container with {env.describe()} was still running after {timeout:g}s; expected it to be rejected"
        )
    if code == 0:
        raise AssertionFailure(f"container with {env.describe()} exited successfully; expected it to be rejected")
    reporting.info(f"    rejected {env.describe()} (exit code {code})")


def assert_local_access(registry: ContainerRegistry, name: str) -> None:
    result = registry.runtime.command("exec", "-i", registry.cid(name), "bash", "-c", "psql", input="SELECT 1;")
    if result.returncode != 0:
        raise AssertionFailure(f"local psql access inside {name} failed: {result.stderr.strip()}")


def parse_config(text: str) -> Dict[str, str]:
    settings: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        settings[key.strip()] = value.strip().strip("'\"")
    return settings


def read_config(registry: ContainerRegistry, name: str, path: str) -> Dict[str, str]:
    result = registry.runtime.command("exec", registry.cid(name), "cat", path)
    if result.returncode != 0:
        raise AssertionFailure(f"cannot read {path} in {name}: {result.stderr.strip()}")
    return parse_config(result.stdout)


def assert_config_option(registry: ContainerRegistry, name: str, setting: str, value: str, path: str) -> None:
    actual = read_config(registry, name, path).get(setting)
    if actual != str(value):
        raise AssertionFailure(f"{path} in {name}: expected {setting} = {value}, found {actual!r}")


def assert_scl_usage(registry: ContainerRegistry, name: str, command: str, expected: str) -> None:
    """*command* must print *expected* in a fresh container and via both exec styles."""
    runtime = registry.runtime
    container_id = registry.cid(name)
    invocations = [
        (f"run /bin/bash -c {command!r}", ("run", "--rm", registry.image, "/bin/bash", "-c", command)),
        (f"exec /bin/bash -c {command!r}", ("exec", container_id, "/bin/bash", "-c", command)),
        (f"exec /bin/sh -ic {command!r}", ("exec", container_id, "/bin/sh", "-ic", command)),
    ]
    for label, args in invocations:
        result = runtime.command(*args)
        output = result.stdout + result.stderr
        if expected not in output:
            raise AssertionFailure(f"[{label}] expected {expected!r}, got {output.strip()!r}")


def assert_server_version(client, host: str, credentials: Credentials, expected: str) -> None:
    rows = client.fetch(host, credentials, "SHOW server_version;")
    reported = rows[0][0] if rows else ""
    try:
        actual = parse_version(reported)
    except InvalidVersion as exc:
        raise AssertionFailure(f"server reported an unparsable version {reported!r}") from exc
    wanted = parse_version(expected)
    if actual.release[: len(wanted.release)] != wanted.release:
        raise AssertionFailure(f"server version {actual} does not match expected {expected}")
