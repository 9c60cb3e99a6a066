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

"""helix_deploy - idempotent cluster bootstrap and service-mesh deployment."""

from __future__ import annotations

import io
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from rich.console import Console

__version__ = "0.1.0"


class ThreadAwareConsole:
    """Rich console shared by every stage.

    A thread inside ``buffered()`` prints into its own buffer, so a
    reconcile task running in a worker pool can be shown as one block once
    it finishes. Every other thread keeps writing to stderr.
    """

    def __init__(self, real_console: Console) -> None:
        object.__setattr__(self, "_real", real_console)
        object.__setattr__(self, "_local", threading.local())

    @property
    def target(self) -> Console:
        return getattr(self._local, "console", self._real)

    def __getattr__(self, name: str):
        return getattr(self.target, name)

    @contextmanager
    def buffered(self) -> Iterator[io.StringIO]:
        """Capture this thread's output; nested calls share the outer buffer."""
        current = getattr(self._local, "console", None)
        if current is not None:
            yield current.file
            return
        buf = io.StringIO()
        self._local.console = Console(
            file=buf,
            width=self._real.width,
            force_terminal=self._real.is_terminal,
        )
        try:
            yield buf
        finally:
            del self._local.console


console = ThreadAwareConsole(Console(stderr=True))
logger = logging.getLogger("helix_deploy")
