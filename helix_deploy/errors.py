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

"""Exceptions raised by the deployment stages."""

from __future__ import annotations


class DeployError(Exception):
    """Base class for all failures surfaced by a deployment stage."""

    kind = "DeployError"


class MissingTool(DeployError):
    """A required external binary is not available."""

    kind = "MissingTool"


class InstallFailure(DeployError):
    """An external dependency could not be installed."""

    kind = "InstallFailure"


class ClusterUnreachable(DeployError):
    """The configured cluster API server could not be contacted."""

    kind = "ClusterUnreachable"


class ProvisionFailure(DeployError):
    """No reachable cluster could be found or created."""

    kind = "ProvisionFailure"


class MeshNotReady(DeployError):
    """The mesh control plane did not become ready.

    Attributes:
        reason: Short reason tag, ``Timeout`` when the readiness wait expired.
    """

    kind = "MeshNotReady"

    def __init__(self, message: str, reason: str = "Timeout") -> None:
        super().__init__(message)
        self.reason = reason

    def __str__(self) -> str:
        return f"{self.kind}({self.reason}): {self.args[0]}"


class ReconcileConflict(DeployError):
    """Desired state cannot be converged onto the live object.

    Raised for immutable-field changes (such as shrinking a claim template)
    and for missing dependencies (a route pointing at an absent Service).
    """

    kind = "ReconcileConflict"


class ApplyFailure(DeployError):
    """Applying an object to the cluster failed.

    Attributes:
        transient: Whether the failure looks like a passing API hiccup that
            is worth retrying.
    """

    kind = "ApplyFailure"

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class StageFailed(DeployError):
    """A pipeline stage failed and the run was aborted.

    Attributes:
        stage: Name of the failing stage.
        last_completed: Name of the last stage that converged, or None.
        cause: The underlying exception.
    """

    kind = "StageFailed"

    def __init__(self, stage: str, last_completed: str | None, cause: BaseException) -> None:
        super().__init__(f"stage '{stage}' failed: {cause}")
        self.stage = stage
        self.last_completed = last_completed
        self.cause = cause


class PipelineCancelled(DeployError):
    """The run was cancelled at a stage boundary."""

    kind = "PipelineCancelled"

    def __init__(self, next_stage: str, last_completed: str | None) -> None:
        super().__init__(f"cancelled before stage '{next_stage}'")
        self.next_stage = next_stage
        self.last_completed = last_completed


def describe(err: BaseException) -> str:
    """Render an exception as ``Kind: message`` for user-facing output."""
    if isinstance(err, MeshNotReady):
        return str(err)
    kind = getattr(err, "kind", type(err).__name__)
    return f"{kind}: {err}"
