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

"""Target namespace and its sidecar-injection label."""

from __future__ import annotations

from rich.panel import Panel

from helix_deploy import console
from helix_deploy.constants import LABEL_ISTIO_INJECTION
from helix_deploy.kube import Kubectl
from helix_deploy.models import (
    ConvergenceResult,
    ConvergenceStatus,
    DesiredResource,
    MeshInjection,
    ResourceKind,
)


def namespace_resource(name: str, injection: MeshInjection) -> DesiredResource:
    return DesiredResource(
        kind=ResourceKind.NAMESPACE,
        name=name,
        namespace=None,
        labels={LABEL_ISTIO_INJECTION: injection.value},
    )


def ensure_namespace(kube: Kubectl, name: str, injection: MeshInjection) -> ConvergenceResult:
    """Create the namespace if absent and converge its injection label.

    Only the namespace's own label is written; objects inside it are not
    touched, so flipping injection takes effect on their next restart.

    Args:
        kube: kubectl client.
        name: Namespace name.
        injection: Desired injection setting.

    Returns:
        Created, patched (label drift fixed), or already-satisfied.
    """
    console.print(Panel.fit(f"Ensuring namespace '{name}'", style="bold blue"))
    desired = namespace_resource(name, injection)

    live = kube.get(ResourceKind.NAMESPACE.resource, name)
    if live is None:
        kube.apply(desired.to_manifest())
        console.print(f"[green]✅ Created namespace {name} ({LABEL_ISTIO_INJECTION}={injection.value})[/green]")
        return ConvergenceResult(desired.display_name, ConvergenceStatus.CREATED, f"injection {injection.value}")

    current = (live.get("metadata", {}).get("labels") or {}).get(LABEL_ISTIO_INJECTION)
    if current == injection.value:
        console.print(f"[green]✓ Namespace {name} already has {LABEL_ISTIO_INJECTION}={injection.value}[/green]")
        return ConvergenceResult(desired.display_name, ConvergenceStatus.SATISFIED, f"injection {injection.value}")

    kube.label(ResourceKind.NAMESPACE.resource, name, {LABEL_ISTIO_INJECTION: injection.value})
    console.print(f"[green]✅ Set {LABEL_ISTIO_INJECTION}={injection.value} on {name} (was {current or 'unset'})[/green]")
    return ConvergenceResult(
        desired.display_name,
        ConvergenceStatus.PATCHED,
        f"injection {current or 'unset'} -> {injection.value}",
    )
