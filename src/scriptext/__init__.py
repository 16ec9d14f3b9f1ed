# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""scriptext - package userscripts as Manifest V3 browser extensions."""

__version__ = "0.3.0"


class ScriptextError(Exception):
    """Base class for errors raised by scriptext."""

    pass
