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

"""Value types threaded between deployment stages."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from helix_deploy.constants import CLUSTER_DOMAIN, SERVICE_PORT

# ============================================================================
# Tools
# ============================================================================


class ToolStatus(str, Enum):
    """Result of probing a host binary."""

    PRESENT = "present"
    ABSENT = "absent"
    DEGRADED = "degraded"


class ToolOutcome(str, Enum):
    """Result of ensuring a host binary."""

    PRESENT = "present"
    INSTALLED = "installed"


@dataclass(frozen=True)
class ToolProbe:
    """Detected state of a single external binary.

    Attributes:
        name: Tool name (e.g. ``kubectl``).
        status: Tri-state probe result.
        version: Parsed version string, or None if unknown.
        path: Absolute path of the binary, or None if absent.
        reason: Why the tool is degraded, empty otherwise.
    """

    name: str
    status: ToolStatus
    version: str | None = None
    path: str | None = None
    reason: str = ""


# ============================================================================
# Cluster and environment
# ============================================================================


class MeshInjection(str, Enum):
    """Desired value of the namespace sidecar-injection label."""

    ENABLED = "enabled"
    DISABLED = "disabled"


class ClusterState(str, Enum):
    """Reachability of the cluster API server."""

    REACHABLE = "reachable"
    DEGRADED = "degraded"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class ClusterHandle:
    """A cluster the rest of the pipeline can talk to.

    Attributes:
        name: Cluster name (deterministic for locally created clusters).
        driver: Driver that produced it, or ``existing`` if it was found.
        context: kubeconfig context to use, or None for the file's current one.
        state: Reachability observed when the handle was produced.
    """

    name: str
    driver: str
    context: str | None
    state: ClusterState


@dataclass
class Environment:
    """Facts about the host and target cluster for one run.

    Built fresh at the start of every run and passed explicitly to every
    stage. Only the tool installer and the cluster provisioner write to it.

    Attributes:
        bin_dir: Directory where missing tools are installed.
        kubeconfig: kubeconfig file every cluster call is pinned to.
        context: kubeconfig context, or None for the file's current context.
        search_path: PATH used to locate binaries, captured once.
        tools: Latest probe result per tool name.
        docker_available: Whether the docker daemon answered a ping.
        cluster: Handle of the reachable cluster once provisioned.
    """

    bin_dir: Path
    kubeconfig: Path
    context: str | None = None
    search_path: str = ""
    tools: dict[str, ToolProbe] = field(default_factory=dict)
    docker_available: bool | None = None
    cluster: ClusterHandle | None = None

    def record_tool(self, probe: ToolProbe) -> None:
        self.tools[probe.name] = probe

    def binary(self, name: str) -> str:
        """Return the path of a probed tool, falling back to its bare name."""
        probe = self.tools.get(name)
        if probe is not None and probe.path:
            return probe.path
        return name

    def attach_cluster(self, handle: ClusterHandle) -> None:
        self.cluster = handle
        if handle.context is not None:
            self.context = handle.context


# ============================================================================
# Desired state
# ============================================================================


class ResourceKind(Enum):
    """Kinds of cluster object the orchestrator converges.

    Each value is ``(api_version, manifest_kind, kubectl_resource)``.
    """

    NAMESPACE = ("v1", "Namespace", "namespace")
    SERVICE = ("v1", "Service", "service")
    STATEFUL_WORKLOAD = ("apps/v1", "StatefulSet", "statefulset")
    WORKLOAD = ("apps/v1", "Deployment", "deployment")
    GATEWAY = ("networking.istio.io/v1beta1", "Gateway", "gateway.networking.istio.io")
    ROUTING_TABLE = ("networking.istio.io/v1beta1", "VirtualService", "virtualservice.networking.istio.io")

    @property
    def api_version(self) -> str:
        return self.value[0]

    @property
    def manifest_kind(self) -> str:
        return self.value[1]

    @property
    def resource(self) -> str:
        return self.value[2]


@dataclass(frozen=True)
class DesiredResource:
    """Declarative description of one cluster object.

    Attributes:
        kind: Object kind.
        name: Object name.
        namespace: Namespace, or None for cluster-scoped kinds.
        spec: Full desired ``spec`` body (empty for Namespace).
        labels: Labels to put on the object's metadata.
    """

    kind: ResourceKind
    name: str
    namespace: str | None
    spec: dict[str, Any] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.kind.manifest_kind, self.namespace or "", self.name)

    @property
    def display_name(self) -> str:
        prefix = f"{self.namespace}/" if self.namespace else ""
        return f"{self.kind.manifest_kind.lower()}/{prefix}{self.name}"

    def to_manifest(self) -> dict[str, Any]:
        """Render the full Kubernetes manifest for this resource."""
        metadata: dict[str, Any] = {"name": self.name}
        if self.namespace is not None:
            metadata["namespace"] = self.namespace
        if self.labels:
            metadata["labels"] = dict(self.labels)
        manifest: dict[str, Any] = {
            "apiVersion": self.kind.api_version,
            "kind": self.kind.manifest_kind,
            "metadata": metadata,
        }
        if self.spec:
            manifest["spec"] = copy.deepcopy(self.spec)
        return manifest


# ============================================================================
# Routing
# ============================================================================


@dataclass(frozen=True)
class RouteDestination:
    """A mesh route target: one Service port."""

    service: str
    namespace: str
    port: int = SERVICE_PORT

    @property
    def host(self) -> str:
        return f"{self.service}.{self.namespace}.{CLUSTER_DOMAIN}"


@dataclass(frozen=True)
class RouteRule:
    """One routing entry; a rule without a prefix is the catch-all."""

    destination: RouteDestination
    prefix: str | None = None

    @property
    def is_catch_all(self) -> bool:
        return self.prefix is None

    def matches(self, path: str) -> bool:
        return self.prefix is None or path.startswith(self.prefix)


@dataclass(frozen=True)
class RoutingTable:
    """Ordered routing rules bound to an ingress gateway.

    Attributes:
        name: Name of the routing object.
        namespace: Namespace of the routing object.
        gateway: Name of the gateway the table is bound to.
        rules: Rules in declaration order; see ``routes.order_rules``.
        hosts: Hostnames the table accepts.
    """

    name: str
    namespace: str
    gateway: str
    rules: tuple[RouteRule, ...]
    hosts: tuple[str, ...] = ("*",)


# ============================================================================
# Outcomes
# ============================================================================


class ConvergenceStatus(str, Enum):
    """Outcome of converging one object or stage."""

    CREATED = "created"
    PATCHED = "patched"
    SATISFIED = "already-satisfied"
    FAILED = "failed"


@dataclass(frozen=True)
class ConvergenceResult:
    """Outcome of converging one object or one pipeline stage."""

    name: str
    status: ConvergenceStatus
    detail: str = ""
    cause: BaseException | None = None

    @property
    def changed(self) -> bool:
        return self.status in (ConvergenceStatus.CREATED, ConvergenceStatus.PATCHED)

    @property
    def ok(self) -> bool:
        return self.status is not ConvergenceStatus.FAILED


def summarize(name: str, results: list[ConvergenceResult], detail: str = "") -> ConvergenceResult:
    """Fold per-object results into a single stage result.

    The stage takes the strongest status seen: failed, then created, then
    patched, then already-satisfied.
    """
    order = (
        ConvergenceStatus.FAILED,
        ConvergenceStatus.CREATED,
        ConvergenceStatus.PATCHED,
        ConvergenceStatus.SATISFIED,
    )
    seen = {r.status for r in results}
    status = next((s for s in order if s in seen), ConvergenceStatus.SATISFIED)
    cause = next((r.cause for r in results if r.cause is not None), None)
    if not detail:
        changed = sum(1 for r in results if r.changed)
        detail = f"{changed} of {len(results)} objects changed"
    return ConvergenceResult(name, status, detail, cause)


@dataclass(frozen=True)
class AccessEndpoint:
    """Externally reachable entry points after convergence."""

    host: str
    port: int
    api_prefix: str
    datastore_uri: str

    @property
    def frontend_url(self) -> str:
        return f"http://{self.host}:{self.port}/"

    @property
    def api_base_url(self) -> str:
        return f"http://{self.host}:{self.port}{self.api_prefix}"
