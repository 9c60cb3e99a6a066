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

"""Declarative apply of datastore, backend, and frontend objects."""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any

from rich.panel import Panel

from helix_deploy import console, logger
from helix_deploy.errors import ReconcileConflict
from helix_deploy.kube import Kubectl
from helix_deploy.models import (
    ConvergenceResult,
    ConvergenceStatus,
    DesiredResource,
    ResourceKind,
)
from helix_deploy.utils import is_subset, parse_quantity, run_parallel

_object_locks: defaultdict[tuple[str, str, str], threading.Lock] = defaultdict(threading.Lock)
_object_locks_guard = threading.Lock()


def _lock_for(identity: tuple[str, str, str]) -> threading.Lock:
    with _object_locks_guard:
        return _object_locks[identity]


# ============================================================================
# Immutable-field checks
# ============================================================================

def _claim_templates(spec: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {t["metadata"]["name"]: t.get("spec", {}) for t in spec.get("volumeClaimTemplates") or []}


def check_immutable(desired: DesiredResource, live: dict[str, Any]) -> None:
    """Reject changes the API server would refuse on an existing object.

    Raises:
        ReconcileConflict: If the selector or (for StatefulWorkloads) the
            volume claim templates differ from the live object.
    """
    if desired.kind not in (ResourceKind.STATEFUL_WORKLOAD, ResourceKind.WORKLOAD):
        return
    live_spec = live.get("spec") or {}
    want_selector = desired.spec.get("selector")
    if want_selector is not None and "selector" in live_spec and live_spec["selector"] != want_selector:
        raise ReconcileConflict(f"{desired.display_name}: selector is immutable")

    if desired.kind is not ResourceKind.STATEFUL_WORKLOAD:
        return
    want = _claim_templates(desired.spec)
    have = _claim_templates(live_spec)
    if set(want) != set(have):
        raise ReconcileConflict(
            f"{desired.display_name}: claim templates {sorted(have)} cannot change to {sorted(want)}"
        )
    for name, want_claim in want.items():
        have_claim = have[name]
        want_size = want_claim.get("resources", {}).get("requests", {}).get("storage")
        have_size = have_claim.get("resources", {}).get("requests", {}).get("storage")
        if want_size and have_size and parse_quantity(want_size) < parse_quantity(have_size):
            raise ReconcileConflict(
                f"{desired.display_name}: storage for '{name}' cannot shrink from {have_size} to {want_size}"
            )
        if not is_subset(want_claim, have_claim):
            raise ReconcileConflict(f"{desired.display_name}: claim template '{name}' is immutable")


# ============================================================================
# Single-object reconcile
# ============================================================================

def _live_matches(desired: DesiredResource, live: dict[str, Any]) -> bool:
    manifest = desired.to_manifest()
    want: dict[str, Any] = {"spec": manifest.get("spec", {})}
    if desired.labels:
        want["metadata"] = {"labels": dict(desired.labels)}
    return is_subset(want, live)


def reconcile_resource(kube: Kubectl, desired: DesiredResource) -> ConvergenceResult:
    """Converge one object: create if absent, patch on drift, else no-op.

    Never deletes. Writes to the same object are serialized.

    Raises:
        ReconcileConflict: If the change touches an immutable field.
        ApplyFailure: If the apply fails permanently or keeps failing
            transiently.
    """
    with _lock_for(desired.identity):
        live = kube.get(desired.kind.resource, desired.name, desired.namespace)
        if live is None:
            kube.apply(desired.to_manifest())
            console.print(f"[green]✅ {desired.display_name} created[/green]")
            return ConvergenceResult(desired.display_name, ConvergenceStatus.CREATED)

        if _live_matches(desired, live):
            console.print(f"[green]✓ {desired.display_name} unchanged[/green]")
            return ConvergenceResult(desired.display_name, ConvergenceStatus.SATISFIED)

        check_immutable(desired, live)
        kube.apply(desired.to_manifest())
        console.print(f"[green]✅ {desired.display_name} configured[/green]")
        return ConvergenceResult(desired.display_name, ConvergenceStatus.PATCHED)


# ============================================================================
# Workload stage
# ============================================================================

def check_unique(desired: list[DesiredResource]) -> None:
    """Raise ReconcileConflict if two desired objects share an identity."""
    seen: set[tuple[str, str, str]] = set()
    for resource in desired:
        if resource.identity in seen:
            raise ReconcileConflict(f"{resource.display_name} declared more than once")
        seen.add(resource.identity)


def apply_workloads(kube: Kubectl, desired: list[DesiredResource], max_workers: int = 4) -> list[ConvergenceResult]:
    """Converge services first, then the workloads that resolve them.

    Objects within each phase are independent and are applied concurrently
    by at most *max_workers* threads.

    Args:
        kube: kubectl client.
        desired: Desired objects; identities must be unique.
        max_workers: Worker pool bound per phase.

    Returns:
        One ConvergenceResult per desired object, in input order.

    Raises:
        ReconcileConflict: On duplicate identities or immutable-field changes.
        ApplyFailure: If any object cannot be applied.
    """
    console.print(Panel.fit("Applying workloads", style="bold blue"))
    check_unique(desired)

    services = [r for r in desired if r.kind is ResourceKind.SERVICE]
    workloads = [r for r in desired if r.kind is not ResourceKind.SERVICE]

    results: dict[str, ConvergenceResult] = {}
    for phase, members in (("services", services), ("workloads", workloads)):
        logger.info("Applying %d %s", len(members), phase)
        tasks = {r.display_name: (lambda r=r: reconcile_resource(kube, r)) for r in members}
        results.update(run_parallel(tasks, max_workers))

    return [results[r.display_name] for r in desired]
