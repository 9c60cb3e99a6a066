# /*
# Copyright 2026 The Helix Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Utility functions for manifest comparison, quantities, and parallel runs."""

from __future__ import annotations

import re
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, TypeVar

from helix_deploy import console

T = TypeVar("T")

_VERSION_RE = re.compile(r"v?(\d+)\.(\d+)(?:\.(\d+))?")
_QUANTITY_RE = re.compile(r"^(\d+(?:\.\d+)?)([KMGTPE]i?|[mk])?$")
_QUANTITY_FACTORS = {
    None: 1,
    "m": 0.001,
    "k": 1000,
    "K": 1000,
    "M": 1000**2,
    "G": 1000**3,
    "T": 1000**4,
    "P": 1000**5,
    "E": 1000**6,
    "Ki": 1024,
    "Mi": 1024**2,
    "Gi": 1024**3,
    "Ti": 1024**4,
    "Pi": 1024**5,
    "Ei": 1024**6,
}


def parse_version(text: str | None) -> tuple[int, int, int] | None:
    """Extract the first ``major.minor[.patch]`` version from text.

    Args:
        text: Version string such as ``v1.30.2`` or ``kind v0.20.0 go1.20``.

    Returns:
        Tuple of (major, minor, patch), or None if nothing parses.
    """
    if not text:
        return None
    m = _VERSION_RE.search(text)
    if not m:
        return None
    return int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)


def version_at_least(found: str | None, minimum: str | None) -> bool:
    """Whether *found* satisfies *minimum*; no minimum is always satisfied."""
    if not minimum:
        return True
    have = parse_version(found)
    want = parse_version(minimum)
    if have is None or want is None:
        return False
    return have >= want


def parse_quantity(value: str | int | float) -> float:
    """Convert a Kubernetes quantity (``1Gi``, ``500m``) to a float.

    Raises:
        ValueError: If the value is not a recognised quantity.
    """
    if isinstance(value, (int, float)):
        return float(value)
    m = _QUANTITY_RE.match(value.strip())
    if not m:
        raise ValueError(f"invalid quantity: {value!r}")
    return float(m.group(1)) * _QUANTITY_FACTORS[m.group(2)]


def is_subset(desired: Any, live: Any) -> bool:
    """Whether every field of *desired* is present with the same value in *live*.

    Lists must have the same length and match element-wise. Numbers and
    their string forms compare equal, since the API server may normalise
    either way (``targetPort: 5000`` vs ``"5000"``).
    """
    if isinstance(desired, dict):
        if not isinstance(live, dict):
            return False
        return all(key in live and is_subset(value, live[key]) for key, value in desired.items())
    if isinstance(desired, list):
        if not isinstance(live, list) or len(desired) != len(live):
            return False
        return all(is_subset(d, l) for d, l in zip(desired, live))
    if isinstance(desired, bool) or isinstance(live, bool):
        return desired == live
    if isinstance(desired, (int, float)) or isinstance(live, (int, float)):
        return str(desired) == str(live)
    return desired == live


def run_parallel(tasks: dict[str, Callable[[], T]], max_workers: int) -> dict[str, T]:
    """Run tasks in parallel, printing each task's output as a clean block.

    Args:
        tasks: Mapping of task name to callable.
        max_workers: Upper bound on concurrently running tasks.

    Returns:
        Mapping of task name to the callable's return value.

    Raises:
        Exception: Re-raises the first exception from any failed task, after
            every task has finished.
    """
    if not tasks:
        return {}

    outputs: dict[str, str] = {}
    results: dict[str, T] = {}
    lock = threading.Lock()

    def _run_task(name: str, fn: Callable[[], T]) -> None:
        with console.buffered() as buf:
            try:
                value = fn()
            finally:
                with lock:
                    outputs[name] = buf.getvalue()
        with lock:
            results[name] = value

    first_error: BaseException | None = None
    with ThreadPoolExecutor(max_workers=min(max_workers, len(tasks))) as executor:
        futures = {executor.submit(_run_task, name, fn): name for name, fn in tasks.items()}
        for future in as_completed(futures):
            exc = future.exception()
            if exc is not None and first_error is None:
                first_error = exc

    for name in tasks:
        if outputs.get(name):
            console.print(outputs[name], end="")

    if first_error is not None:
        raise first_error
    return results
