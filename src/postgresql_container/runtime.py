# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Container runtime CLI wrapper and the cidfile registry used for cleanup.

Typical lifecycle::

    runtime = ContainerRuntime("docker")
    with ContainerRegistry(runtime, image) as registry:
        registry.create("root", env)      # run -d --cidfile ...
        ip = registry.ip("root")
        ...
    # every recorded container is stopped, logged if it failed, and removed
"""

from __future__ import annotations

import itertools
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Callable, List, Optional

from . import reporting
from .environment import ContainerEnv

IP_TEMPLATE = "{{range .NetworkSettings.Networks}}{{.IPAddress}}{{end}}"
EXIT_CODE_TEMPLATE = "{{.State.ExitCode}}"
# `run` exits 125 when the runtime itself fails and 126/127 when the command
# cannot be invoked; lower codes come from the container.
RUNTIME_FAILURE_EXIT = 125

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class ContainerError(RuntimeError):
    """A runtime command failed where success was required."""

    def __init__(self, message: str, result: Optional["subprocess.CompletedProcess[str]"] = None):
        if result is not None:
            details = (result.stderr or result.stdout or "").strip()
            if details:
                message = f"{message}: {details}"
        super().__init__(message)
        self.result = result


class RuntimeUnavailable(ContainerError):
    """The runtime binary is missing or does not answer."""


class ContainerRuntime:
    def __init__(self, binary: str = "docker", runner: Runner = subprocess.run):
        self.binary = binary
        self._runner = runner

    def command(
        self,
        *args: str,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
        check: bool = False,
    ) -> "subprocess.CompletedProcess[str]":
        argv = [self.binary, *args]
        result = self._runner(
            argv,
            input=input,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        if check and result.returncode != 0:
            raise ContainerError(f"`{self.binary} {' '.join(args[:1])}` exited with {result.returncode}", result)
        return result

    def inspect(self, container_id: str, template: str) -> str:
        result = self.command("inspect", "--format", template, container_id, check=True)
        return result.stdout.strip()

    def available(self) -> bool:
        if shutil.which(self.binary) is None:
            return False
        try:
            result = self.command("info", timeout=10)
        except (OSError, subprocess.SubprocessError):
            return False
        return result.returncode == 0

    def ensure_available(self) -> None:
        if shutil.which(self.binary) is None:
            raise RuntimeUnavailable(f"container runtime {self.binary!r} was not found on PATH")
        try:
            result = self.command("info", timeout=30)
        except subprocess.TimeoutExpired as exc:
            raise RuntimeUnavailable(f"`{self.binary} info` did not answer within {exc.timeout:g}s") from exc
        if result.returncode != 0:
            raise RuntimeUnavailable(f"`{self.binary} info` failed; is the daemon running and accessible?", result)


class ContainerRegistry:
    """Maps logical test names to cidfiles so every container can be reaped."""

    def __init__(self, runtime: ContainerRuntime, image: str, directory: Optional[Path] = None):
        self.runtime = runtime
        self.image = image
        if directory is None:
            directory = Path(tempfile.mkdtemp(suffix="postgresql_test_cidfiles"))
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._scratch = itertools.count(1)

    def __enter__(self) -> "ContainerRegistry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def cidfile(self, name: str) -> Path:
        return self.directory / name

    def names(self) -> List[str]:
        return sorted(path.name for path in self.directory.iterdir())

    def scratch_name(self, prefix: str) -> str:
        return f"{prefix}_{next(self._scratch)}"

    def create(self, name: str, env: ContainerEnv) -> str:
        cidfile = self.cidfile(name)
        if cidfile.exists():
            raise ValueError(f"container {name!r} already exists in this run")
        result = self.runtime.command("run", "--cidfile", str(cidfile), "-d", *env.run_args(), self.image)
        if result.returncode != 0:
            raise ContainerError(f"failed to create container {name}", result)
        container_id = self.cid(name)
        reporting.info(f"Created container {container_id} ({name})")
        return container_id

    def cid(self, name: str) -> str:
        cidfile = self.cidfile(name)
        if not cidfile.exists():
            raise ContainerError(f"no container recorded for {name!r}")
        container_id = cidfile.read_text().strip()
        if not container_id:
            raise ContainerError(f"cidfile for {name!r} is empty")
        return container_id

    def ip(self, name: str, retries: int = 10, delay: float = 1.0) -> str:
        container_id = self.cid(name)
        for attempt in range(retries):
            ip_addr = self.runtime.inspect(container_id, IP_TEMPLATE)
            if ip_addr:
                return ip_addr
            if attempt + 1 < retries:
                time.sleep(delay)
        raise ContainerError(f"container {name} has no assigned IP")

    def exit_code(self, name: str) -> int:
        return int(self.runtime.inspect(self.cid(name), EXIT_CODE_TEMPLATE))

    def stop(self, name: str) -> None:
        self.runtime.command("stop", self.cid(name), check=True)

    def run_once(self, name: str, env: ContainerEnv, timeout: float) -> Optional[int]:
        """Run the image in the foreground and return its exit code.

        Returns ``None`` when the container was still running after *timeout*
        seconds; it is killed and removed before returning. Exit codes the
        runtime reserves for its own failures raise ``ContainerError``.
        """
        cidfile = self.cidfile(name)
        if cidfile.exists():
            raise ValueError(f"container {name!r} already exists in this run")
        try:
            result = self.runtime.command(
                "run", "--rm", "--cidfile", str(cidfile), *env.run_args(), self.image, timeout=timeout
            )
        except subprocess.TimeoutExpired:
            self.kill(name)
            return None
        cidfile.unlink(missing_ok=True)
        if result.returncode >= RUNTIME_FAILURE_EXIT:
            raise ContainerError(f"{self.runtime.binary} could not run {self.image} for {name}", result)
        return result.returncode

    def kill(self, name: str) -> None:
        cidfile = self.cidfile(name)
        if not cidfile.exists():
            return
        container_id = cidfile.read_text().strip()
        if container_id:
            self.runtime.command("rm", "-f", container_id)
        cidfile.unlink(missing_ok=True)

    def remove(self, name: str) -> None:
        self._reap(self.cidfile(name))

    def cleanup(self) -> None:
        if not self.directory.exists():
            return
        for cidfile in sorted(self.directory.iterdir()):
            try:
                self._reap(cidfile)
            except (OSError, subprocess.SubprocessError) as exc:
                reporting.error(f"could not remove container recorded in {cidfile.name}: {exc}")
        try:
            self.directory.rmdir()
        except OSError as exc:
            reporting.error(f"could not remove {self.directory}: {exc}")

    def _reap(self, cidfile: Path) -> None:
        if not cidfile.exists():
            return
        container_id = cidfile.read_text().strip()
        if container_id:
            reporting.info(f"Stopping and removing container {container_id} ({cidfile.name})...")
            self.runtime.command("stop", container_id)
            status = self.runtime.command("inspect", "--format", EXIT_CODE_TEMPLATE, container_id)
            if status.returncode == 0 and status.stdout.strip() != "0":
                logs = self.runtime.command("logs", container_id)
                reporting.dump(
                    f"logs of {cidfile.name} (exit code {status.stdout.strip()})",
                    logs.stdout + logs.stderr,
                )
            self.runtime.command("rm", container_id)
        cidfile.unlink(missing_ok=True)
