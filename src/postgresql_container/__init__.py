# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""PostgreSQL container image definition and test harness.

The harness drives a container runtime CLI (``docker`` by default) to start
containers of the image under test, waits for them to accept connections,
asserts login and configuration behaviour, and reaps every container it
created. ``image`` describes how the image itself is built.
"""

__version__ = "0.1.0"

__all__: list[str] = ["__version__"]
