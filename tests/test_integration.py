# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

import os

import pytest

from postgresql_container import cli
from postgresql_container.runtime import ContainerRuntime

pytestmark = pytest.mark.integration


@pytest.fixture
def image():
    name = os.environ.get("IMAGE_NAME")
    if not name:
        pytest.skip("IMAGE_NAME is not set")
    runtime = ContainerRuntime(os.environ.get("CONTAINER_RUNTIME", "docker"))
    if not runtime.available():
        pytest.skip(f"{runtime.binary} is not available")
    return name


def test_full_suite_against_built_image(image):
    assert cli.main(["--image", image, "run"]) == 0
