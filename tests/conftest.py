# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

import itertools
import re
import subprocess
from pathlib import Path

import pytest

from postgresql_container.client import PsqlClient
from postgresql_container.environment import ContainerEnv
from postgresql_container.runtime import ContainerRegistry, ContainerRuntime
from postgresql_container.scenarios import HarnessContext
from postgresql_container.settings import CONFIG_FILE, DATA_DIR, HarnessSettings

IMAGE = "pg-test-image"

URI_RE = re.compile(r"^postgresql://(?P<user>[^@]*)@(?P<host>[^:/]+):(?P<port>\d+)/(?P<db>.*)$")
INSERT_RE = re.compile(r"^INSERT INTO (\w+) VALUES \('([^']*)', '([^']*)'\)$", re.IGNORECASE)


def new_state():
    return {"accounts": {}, "databases": {"postgres"}, "tables": {}}


class FakeContainer:
    def __init__(self, cid, ip, variables, state, running, exit_code):
        self.cid = cid
        self.ip = ip
        self.variables = variables
        self.state = state
        self.running = running
        self.exit_code = exit_code


class FakeDocker:
    """In-memory stand-in for the docker CLI, used as the subprocess runner.

    Containers started with a configuration the image would refuse exit with
    code 1; valid ones keep running. psql one-offs authenticate against the
    accounts the running container was configured with, and data directories
    mounted from the host keep their accounts across containers.
    """

    def __init__(self):
        self.calls = []
        self.containers = {}
        self.data_dirs = {}
        self.version = "9.5.4"
        self.accept_invalid = False
        self.foreground_exit = None
        self.fail_commands = set()
        self._ids = itertools.count(2)

    def __call__(self, argv, input=None, capture_output=True, text=True, timeout=None):
        self.calls.append(list(argv))
        subcommand, args = argv[1], list(argv[2:])
        if subcommand in self.fail_commands:
            return self._result(argv, 1, stderr=f"forced failure of {subcommand}")
        handler = getattr(self, f"_do_{subcommand}")
        return handler(argv, args, input or "", timeout)

    def calls_for(self, subcommand):
        return [call for call in self.calls if call[1] == subcommand]

    @staticmethod
    def _result(argv, code=0, stdout="", stderr=""):
        return subprocess.CompletedProcess(argv, code, stdout, stderr)

    @staticmethod
    def _parse_run(args):
        opts = {"rm": False, "detach": False, "cidfile": None, "env": {}, "volumes": []}
        index = 0
        while index < len(args):
            arg = args[index]
            if arg == "--rm":
                opts["rm"] = True
            elif arg == "-d":
                opts["detach"] = True
            elif arg == "-i":
                pass
            elif arg == "--cidfile":
                opts["cidfile"] = args[index + 1]
                index += 1
            elif arg == "-e":
                key, _, value = args[index + 1].partition("=")
                opts["env"][key] = value
                index += 1
            elif arg == "-v":
                opts["volumes"].append(args[index + 1])
                index += 1
            else:
                break
            index += 1
        return opts, args[index], args[index + 1:]

    def _do_run(self, argv, args, input, timeout):
        opts, _image, command = self._parse_run(args)
        if command and command[0] == "psql":
            return self._psql(argv, opts["env"], command[1:], input)
        if command:
            return self._shell(argv, command)

        number = next(self._ids)
        cid = f"cid{number:04d}"
        if opts["cidfile"]:
            path = Path(opts["cidfile"])
            if path.exists():
                return self._result(argv, 125, stderr="container ID file found, make sure the other container isn't running")
            path.write_text(cid)
        container = self._start(cid, f"172.17.0.{number}", opts)
        self.containers[cid] = container
        if opts["detach"]:
            return self._result(argv, 0, stdout=cid + "\n")
        if container.running:
            if self.foreground_exit is None:
                raise subprocess.TimeoutExpired(argv, timeout)
            container.running = False
            container.exit_code = self.foreground_exit
        if opts["rm"]:
            del self.containers[cid]
        return self._result(argv, container.exit_code, stderr="" if container.exit_code == 0 else "usage")

    def _start(self, cid, ip, opts):
        variables = opts["env"]
        env = ContainerEnv(
            user=variables.get("POSTGRESQL_USER"),
            password=variables.get("POSTGRESQL_PASSWORD"),
            database=variables.get("POSTGRESQL_DATABASE"),
            admin_password=variables.get("POSTGRESQL_ADMIN_PASSWORD"),
        )
        valid = self.accept_invalid or not env.problems()
        state = new_state()
        for volume in opts["volumes"]:
            host_path, container_path = volume.split(":")[:2]
            if container_path == DATA_DIR:
                state = self.data_dirs.setdefault(host_path, new_state())
        if valid:
            if env.user:
                state["accounts"][env.user] = env.password
                state["databases"].add(env.database)
            if env.admin_password:
                state["accounts"]["postgres"] = env.admin_password
        return FakeContainer(cid, ip, variables, state, running=valid, exit_code=0 if valid else 1)

    def _running_at(self, host):
        for container in self.containers.values():
            if container.ip == host and container.running:
                return container
        return None

    def _psql(self, argv, env, args, sql):
        uri = next(arg for arg in args if arg.startswith("postgresql://"))
        match = URI_RE.match(uri)
        container = self._running_at(match.group("host"))
        if container is None:
            return self._result(argv, 2, stderr="psql: could not connect to server")
        state = container.state
        user, database = match.group("user"), match.group("db")
        password = env.get("PGPASSWORD", "")
        if not password or state["accounts"].get(user) != password:
            return self._result(argv, 2, stderr=f'FATAL:  password authentication failed for user "{user}"')
        if database not in state["databases"]:
            return self._result(argv, 2, stderr=f'FATAL:  database "{database}" does not exist')

        output = []
        for statement in (part.strip() for part in sql.split(";")):
            if not statement:
                continue
            upper = statement.upper()
            if upper == "SELECT 1":
                output.append("1")
            elif upper == "SHOW SERVER_VERSION":
                output.append(self.version)
            elif upper.startswith("CREATE EXTENSION"):
                if user != "postgres":
                    return self._result(argv, 3, stderr="ERROR:  permission denied to create extension")
            elif "PG_AVAILABLE_EXTENSIONS" in upper:
                output.append("uuid-ossp")
            elif upper.startswith("CREATE TABLE"):
                table = statement.split()[2]
                if table in state["tables"]:
                    return self._result(argv, 3, stderr=f'ERROR:  relation "{table}" already exists')
                state["tables"][table] = []
            elif upper.startswith("INSERT INTO"):
                row = INSERT_RE.match(statement)
                state["tables"][row.group(1)].append((row.group(2), row.group(3)))
            elif upper.startswith("SELECT * FROM"):
                table = statement.split()[3]
                output.extend("|".join(row) for row in state["tables"][table])
            else:
                return self._result(argv, 3, stderr=f"ERROR:  unsupported statement {statement}")
        return self._result(argv, 0, stdout="\n".join(output) + "\n")

    def _shell(self, argv, command):
        if "psql --version" in command[-1]:
            return self._result(argv, 0, stdout=f"psql (PostgreSQL) {self.version}\n")
        return self._result(argv, 0)

    def _do_exec(self, argv, args, input, timeout):
        if args[0] == "-i":
            args = args[1:]
        container = self.containers.get(args[0])
        command = args[1:]
        if container is None or not container.running:
            return self._result(argv, 1, stderr=f"Error: container {args[0]} is not running")
        if command == ["bash", "-c", "psql"]:
            return self._result(argv, 0, stdout=" ?column? \n----------\n        1\n(1 row)\n")
        if command[0] == "cat":
            if command[1] != CONFIG_FILE:
                return self._result(argv, 1, stderr=f"cat: {command[1]}: No such file or directory")
            variables = container.variables
            text = (
                "# generated at startup\n"
                f"max_connections = {variables.get('POSTGRESQL_MAX_CONNECTIONS', '100')}\n"
                "max_prepared_transactions = 0\n"
                f"shared_buffers = {variables.get('POSTGRESQL_SHARED_BUFFERS', '32MB')}\n"
            )
            return self._result(argv, 0, stdout=text)
        return self._shell(argv, command)

    def _do_inspect(self, argv, args, input, timeout):
        template, cid = args[1], args[2]
        container = self.containers.get(cid)
        if container is None:
            return self._result(argv, 1, stderr=f"Error: No such object: {cid}")
        if "IPAddress" in template:
            return self._result(argv, 0, stdout=(container.ip if container.running else "") + "\n")
        return self._result(argv, 0, stdout=f"{container.exit_code}\n")

    def _do_stop(self, argv, args, input, timeout):
        container = self.containers.get(args[0])
        if container is None:
            return self._result(argv, 1, stderr=f"Error: No such container: {args[0]}")
        container.running = False
        return self._result(argv, 0, stdout=args[0] + "\n")

    def _do_rm(self, argv, args, input, timeout):
        cid = args[-1]
        if self.containers.pop(cid, None) is None:
            return self._result(argv, 1, stderr=f"Error: No such container: {cid}")
        return self._result(argv, 0, stdout=cid + "\n")

    def _do_logs(self, argv, args, input, timeout):
        return self._result(argv, 0, stdout=f"log output of {args[0]}\n")

    def _do_info(self, argv, args, input, timeout):
        return self._result(argv, 0, stdout="Server Version: fake\n")

    def _do_build(self, argv, args, input, timeout):
        return self._result(argv, 0, stdout="Successfully built\n")


@pytest.fixture
def fake_docker():
    return FakeDocker()


@pytest.fixture
def runtime(fake_docker):
    return ContainerRuntime("docker", runner=fake_docker)


@pytest.fixture
def settings():
    return HarnessSettings(
        image_name=IMAGE,
        version="9.5",
        connect_attempts=3,
        connect_delay=0,
        creation_timeout=5,
    )


@pytest.fixture
def registry(runtime, tmp_path):
    with ContainerRegistry(runtime, IMAGE, directory=tmp_path / "cidfiles") as registry:
        yield registry


@pytest.fixture
def ctx(settings, runtime, registry):
    return HarnessContext(settings, runtime, registry, PsqlClient(runtime, IMAGE))
