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

"""Resolve and report the externally reachable mesh ingress."""

from __future__ import annotations

from typing import Any

import sh
from rich.panel import Panel
from rich.table import Table

from helix_deploy import console, logger
from helix_deploy.config import AppConfig, MeshConfig
from helix_deploy.constants import (
    API_EXAMPLE_PATH,
    CLUSTER_PROBE_TIMEOUT_SECONDS,
    DRIVER_MINIKUBE,
    INGRESS_GATEWAY_SERVICE,
    INGRESS_HTTP_PORT,
    NS_ISTIO_SYSTEM,
    TOOL_MINIKUBE,
)
from helix_deploy.kube import Kubectl
from helix_deploy.manifests import datastore_uri
from helix_deploy.models import AccessEndpoint, ClusterHandle, Environment, ResourceKind
from helix_deploy.tools import require_tool


def _node_port(service: dict[str, Any]) -> int | None:
    for port in service.get("spec", {}).get("ports") or []:
        if port.get("port") == INGRESS_HTTP_PORT and port.get("nodePort"):
            return int(port["nodePort"])
    return None


def _node_address(kube: Kubectl) -> str | None:
    nodes = kube.list_objects("nodes")
    if not nodes:
        return None
    addresses = nodes[0].get("status", {}).get("addresses") or []
    by_type = {a.get("type"): a.get("address") for a in addresses}
    return by_type.get("ExternalIP") or by_type.get("InternalIP")


def _minikube_ip(env: Environment, handle: ClusterHandle) -> str | None:
    try:
        output = sh.Command(require_tool(TOOL_MINIKUBE, env))(
            "ip", "-p", handle.name, _timeout=CLUSTER_PROBE_TIMEOUT_SECONDS,
        )
    except (sh.ErrorReturnCode, sh.TimeoutException) as e:
        logger.warning("minikube ip failed: %s", e)
        return None
    return str(output).strip() or None


def _load_balancer_address(service: dict[str, Any]) -> str | None:
    ingress = service.get("status", {}).get("loadBalancer", {}).get("ingress") or []
    if not ingress:
        return None
    return ingress[0].get("ip") or ingress[0].get("hostname")


def resolve_endpoints(
    kube: Kubectl,
    env: Environment,
    handle: ClusterHandle,
    mesh_cfg: MeshConfig,
    app_cfg: AppConfig,
) -> AccessEndpoint | None:
    """Find the ingress address and port the platform has assigned.

    Returns:
        The endpoint, or None (unresolved) if no external address or port
        has been assigned yet.
    """
    service = kube.get(ResourceKind.SERVICE.resource, INGRESS_GATEWAY_SERVICE, NS_ISTIO_SYSTEM)
    if service is None:
        return None

    if mesh_cfg.ingress_service_type == "LoadBalancer":
        host, port = _load_balancer_address(service), INGRESS_HTTP_PORT
    else:
        port = _node_port(service)
        if handle.driver == DRIVER_MINIKUBE:
            host = _minikube_ip(env, handle)
        else:
            host = _node_address(kube)

    if not host or not port:
        return None
    return AccessEndpoint(host, port, app_cfg.api_prefix, datastore_uri(app_cfg.namespace))


def report(endpoint: AccessEndpoint | None, app_cfg: AppConfig) -> None:
    """Print the endpoint report once, after convergence."""
    console.print(Panel.fit("Access", style="bold blue"))
    if endpoint is None:
        console.print(
            "[yellow]⚠️  Ingress address not assigned yet; re-run later or check "
            f"'kubectl -n {NS_ISTIO_SYSTEM} get svc {INGRESS_GATEWAY_SERVICE}'[/yellow]"
        )
        console.print(f"  Datastore URI: {datastore_uri(app_cfg.namespace)}")
        return
    table = Table(show_header=False, box=None)
    table.add_row("Frontend", endpoint.frontend_url)
    table.add_row("Backend API", f"{endpoint.api_base_url}/{API_EXAMPLE_PATH}")
    table.add_row("Datastore URI", endpoint.datastore_uri)
    console.print(table)
