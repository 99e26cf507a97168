# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Definition of the PostgreSQL image and its Dockerfile rendering.

The root ``Dockerfile`` is ``render_dockerfile(DEFAULT_IMAGE)``; edit the
definition here and re-render with ``pg-container-test dockerfile --output
Dockerfile`` rather than editing the file by hand.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

from . import reporting
from .runtime import ContainerRuntime
from .settings import DATA_DIR, DEFAULT_VERSION


@dataclass(frozen=True)
class ImageDefinition:
    base: str
    packages: Tuple[str, ...]
    collection: str
    maintainer: str = ""
    repositories: Tuple[str, ...] = ()
    env: Tuple[Tuple[str, str], ...] = ()
    user: str = "postgres"
    uid: int = 26
    gid: int = 26
    home: str = "/var/lib/pgsql"
    expose: Tuple[int, ...] = (5432,)
    volumes: Tuple[str, ...] = ()
    copy_root: str = "root"
    entrypoint: Tuple[str, ...] = ("/usr/bin/container-entrypoint",)
    cmd: Tuple[str, ...] = ("run-postgresql",)

    def __post_init__(self) -> None:
        if self.uid == 0 or self.gid == 0:
            raise ValueError("the service user must not be root")
        if not self.packages:
            raise ValueError("an image needs at least one package")
        if self.collection not in self.packages:
            raise ValueError(f"software collection {self.collection!r} is not among the installed packages")

    @property
    def enable_script(self) -> str:
        """Path, relative to ``copy_root``, of the collection's enablement script."""
        return f"usr/share/cont-layer/common/env/enable-{self.collection}.sh"


CONT_ENV = "/etc/profile.d/cont-env.sh"

DEFAULT_IMAGE = ImageDefinition(
    base="rhel7",
    maintainer="docker@softwarecollections.org",
    repositories=("rhel-server-rhscl-7-rpms", "rhel-7-server-optional-rpms"),
    packages=(
        "rh-postgresql95",
        "rh-postgresql95-postgresql-contrib",
        "nss_wrapper",
        "bind-utils",
        "gettext",
    ),
    collection="rh-postgresql95",
    env=(
        ("POSTGRESQL_VERSION", DEFAULT_VERSION),
        ("HOME", "/var/lib/pgsql"),
        ("PGUSER", "postgres"),
        ("BASH_ENV", CONT_ENV),
        ("ENV", CONT_ENV),
        ("PROMPT_COMMAND", f". {CONT_ENV}"),
    ),
    volumes=(DATA_DIR,),
)


def _env_value(value: str) -> str:
    if re.fullmatch(r"[A-Za-z0-9_./:${}-]+", value):
        return value
    return json.dumps(value)


def _run(steps: List[str]) -> str:
    return "RUN " + " && \\\n    ".join(steps)


def render_dockerfile(definition: ImageDefinition) -> str:
    lines: List[str] = [f"FROM {definition.base}", ""]
    if definition.maintainer:
        lines += [f"LABEL maintainer={json.dumps(definition.maintainer)}", ""]
    if definition.env:
        entries = [f"{key}={_env_value(value)}" for key, value in definition.env]
        lines += ["ENV " + " \\\n    ".join(entries), ""]
    if definition.expose:
        lines += ["EXPOSE " + " ".join(str(port) for port in definition.expose), ""]
    if definition.repositories:
        steps = ["yum install -y --setopt=tsflags=nodocs yum-utils"]
        steps += [f"yum-config-manager --enable {repo}" for repo in definition.repositories]
        steps.append("yum clean all")
        lines += [_run(steps), ""]
    lines += [
        _run([f"yum install -y --setopt=tsflags=nodocs {' '.join(definition.packages)}", "yum clean all"]),
        "",
    ]
    if definition.copy_root:
        lines += [f"ADD {definition.copy_root} /", ""]
    user_steps = [
        f"groupadd -r {definition.user} -f -g {definition.gid}",
        f"(id -u {definition.user} >/dev/null 2>&1 || "
        f"useradd -u {definition.uid} -r -g {definition.user} -d {definition.home} -s /sbin/nologin "
        f"-c \"PostgreSQL Server\" {definition.user})",
    ]
    user_steps += [f"mkdir -p {volume}" for volume in definition.volumes]
    user_steps += [
        f"chown -R {definition.uid}:0 {definition.home}",
        f"chmod -R g+rwX {definition.home}",
    ]
    lines += [_run(user_steps), ""]
    if definition.volumes:
        lines += [f"VOLUME {json.dumps(list(definition.volumes))}", ""]
    lines += [f"USER {definition.uid}", ""]
    lines += [f"ENTRYPOINT {json.dumps(list(definition.entrypoint))}", ""]
    lines.append(f"CMD {json.dumps(list(definition.cmd))}")
    return "\n".join(lines) + "\n"


def dockerfile_drift(path: Path, definition: ImageDefinition = DEFAULT_IMAGE) -> bool:
    """True when *path* is missing or differs from the rendered definition."""
    if not path.exists():
        return True
    return path.read_text() != render_dockerfile(definition)


def build_image(
    runtime: ContainerRuntime,
    tag: str,
    context: Path,
    definition: ImageDefinition = DEFAULT_IMAGE,
) -> None:
    if definition.copy_root:
        script = context / definition.copy_root / definition.enable_script
        if not script.is_file():
            raise ValueError(f"{script} is missing; the image would not enable {definition.collection}")
    dockerfile = context / "Dockerfile"
    if not dockerfile.exists():
        dockerfile.write_text(render_dockerfile(definition))
        reporting.info(f"Rendered {dockerfile}")
    reporting.info(f"Building {tag} from {context}...")
    runtime.command("build", "-t", tag, "-f", str(dockerfile), str(context), check=True)
    reporting.info(f"Built {tag}")
