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

"""Pipeline of named stages that compose the domain modules into a deploy."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from rich.panel import Panel
from rich.table import Table

from helix_deploy import console, logger
from helix_deploy.access import report, resolve_endpoints
from helix_deploy.cluster import ensure_cluster
from helix_deploy.config import Settings
from helix_deploy.constants import DRIVER_EXISTING
from helix_deploy.errors import DeployError, PipelineCancelled, StageFailed
from helix_deploy.kube import Kubectl
from helix_deploy.manifests import gateway_resource, routing_table, workload_resources
from helix_deploy.mesh import ensure_mesh
from helix_deploy.models import (
    AccessEndpoint,
    ConvergenceResult,
    ConvergenceStatus,
    Environment,
    summarize,
)
from helix_deploy.namespace import ensure_namespace
from helix_deploy.routes import apply_routes
from helix_deploy.tools import build_environment, ensure_base_tools
from helix_deploy.workloads import apply_workloads

STAGES = ("tools", "cluster", "mesh", "namespace", "workloads", "routes", "access")

KubeFactory = Callable[[Environment], Kubectl]


@dataclass
class PipelineReport:
    """Outcome of one run.

    Attributes:
        results: One result per stage that ran, in stage order.
        endpoint: Resolved ingress endpoint, or None if unresolved.
        completed: Names of the stages that converged.
    """

    results: list[ConvergenceResult] = field(default_factory=list)
    endpoint: AccessEndpoint | None = None
    completed: list[str] = field(default_factory=list)

    @property
    def last_completed(self) -> str | None:
        return self.completed[-1] if self.completed else None

    @property
    def changed(self) -> bool:
        return any(r.changed for r in self.results)


def default_kube_factory(settings: Settings) -> KubeFactory:
    def _factory(env: Environment) -> Kubectl:
        return Kubectl(
            env,
            timeout=settings.reconcile.kubectl_timeout,
            max_attempts=settings.reconcile.apply_max_attempts,
        )

    return _factory


class _Run:
    """Stage bodies for one run, sharing the Environment and kubectl client."""

    def __init__(self, settings: Settings, env: Environment, kube_factory: KubeFactory) -> None:
        self.settings = settings
        self.env = env
        self.kube_factory = kube_factory
        self._kube: Kubectl | None = None
        self.endpoint: AccessEndpoint | None = None

    @property
    def kube(self) -> Kubectl:
        # built after the cluster stage so it binds the provisioned context
        if self._kube is None:
            self._kube = self.kube_factory(self.env)
        return self._kube

    def tools(self) -> ConvergenceResult:
        return ensure_base_tools(self.env, self.settings.tools)

    def cluster(self) -> ConvergenceResult:
        s = self.settings
        handle = ensure_cluster(self.env, s.cluster, s.tools, s.footprint, self.kube_factory)
        status = ConvergenceStatus.SATISFIED if handle.driver == DRIVER_EXISTING else ConvergenceStatus.CREATED
        return ConvergenceResult("cluster", status, f"{handle.name} via {handle.driver} ({handle.state.value})")

    def mesh(self) -> ConvergenceResult:
        s = self.settings
        return ensure_mesh(self.kube, self.env, s.mesh, s.footprint, s.istio_profile)

    def namespace(self) -> ConvergenceResult:
        return ensure_namespace(self.kube, self.settings.app.namespace, self.settings.injection)

    def workloads(self) -> ConvergenceResult:
        s = self.settings
        results = apply_workloads(
            self.kube,
            workload_resources(s.app, s.footprint),
            s.reconcile.apply_workers,
        )
        return summarize("workloads", results, f"{len(results)} objects")

    def routes(self) -> ConvergenceResult:
        app = self.settings.app
        return apply_routes(self.kube, gateway_resource(app.namespace), routing_table(app))

    def access(self) -> ConvergenceResult:
        s = self.settings
        self.endpoint = resolve_endpoints(self.kube, self.env, self.env.cluster, s.mesh, s.app)
        report(self.endpoint, s.app)
        detail = self.endpoint.frontend_url if self.endpoint else "unresolved"
        return ConvergenceResult("access", ConvergenceStatus.SATISFIED, detail)


def run_pipeline(
    settings: Settings,
    *,
    env: Environment | None = None,
    kube_factory: KubeFactory | None = None,
    cancel: threading.Event | None = None,
) -> PipelineReport:
    """Run every stage in order, stopping at the first failure.

    Args:
        settings: Resolved configuration.
        env: Environment to thread through the stages, or None to build a
            fresh one from the host.
        kube_factory: Builds the kubectl client, or None for the default.
        cancel: Event checked between stages; when set, the run stops
            before the next stage. Nothing is rolled back.

    Returns:
        Per-stage results and the resolved endpoint.

    Raises:
        StageFailed: If a stage fails; later stages are not attempted.
        PipelineCancelled: If *cancel* was set at a stage boundary.
    """
    if env is None:
        env = build_environment(settings)
    if kube_factory is None:
        kube_factory = default_kube_factory(settings)

    run = _Run(settings, env, kube_factory)
    result = PipelineReport()

    for stage in STAGES:
        if cancel is not None and cancel.is_set():
            logger.warning("Cancelled before stage %s", stage)
            raise PipelineCancelled(stage, result.last_completed)

        logger.info("Stage %s", stage)
        try:
            outcome = getattr(run, stage)()
        except (DeployError, ValueError) as e:
            result.results.append(ConvergenceResult(stage, ConvergenceStatus.FAILED, str(e), cause=e))
            raise StageFailed(stage, result.last_completed, e) from e
        result.results.append(outcome)
        result.completed.append(stage)

    result.endpoint = run.endpoint
    return result


def display_summary(result: PipelineReport) -> None:
    """Print one line per stage with its convergence status."""
    console.print(Panel.fit("Summary", style="bold blue"))
    table = Table(show_header=True, header_style="bold")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Detail")
    colours = {
        ConvergenceStatus.CREATED: "green",
        ConvergenceStatus.PATCHED: "yellow",
        ConvergenceStatus.SATISFIED: "dim",
        ConvergenceStatus.FAILED: "red",
    }
    for r in result.results:
        table.add_row(r.name, f"[{colours[r.status]}]{r.status.value}[/{colours[r.status]}]", r.detail)
    console.print(table)
