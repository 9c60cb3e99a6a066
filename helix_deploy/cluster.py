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

"""Cluster detection and local cluster lifecycle (kind, minikube)."""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from dataclasses import dataclass

import sh
from rich.panel import Panel
from tenacity import retry, stop_after_attempt, wait_fixed

from helix_deploy import console, logger
from helix_deploy.config import ClusterConfig, ResourceFootprint, ToolConfig
from helix_deploy.constants import (
    CLUSTER_CREATE_RETRY_WAIT_SECONDS,
    CLUSTER_PROBE_TIMEOUT_SECONDS,
    DRIVER_EXISTING,
    DRIVER_KIND,
    DRIVER_MINIKUBE,
    TOOL_KIND,
    TOOL_MINIKUBE,
)
from helix_deploy.errors import ProvisionFailure
from helix_deploy.kube import Kubectl
from helix_deploy.models import ClusterHandle, ClusterState, Environment
from helix_deploy.tools import detect_docker, ensure_tool, make_installer, require_tool

KubeFactory = Callable[[Environment], Kubectl]


# ============================================================================
# Probing
# ============================================================================

def probe_cluster(kube: Kubectl, timeout: int = CLUSTER_PROBE_TIMEOUT_SECONDS) -> ClusterState:
    """Classify the cluster behind the Environment's kubeconfig/context.

    An API server that answers but fails ``/readyz`` is DEGRADED, not
    UNREACHABLE, so it is never recreated.
    """
    if kube.server_version(timeout) is None:
        return ClusterState.UNREACHABLE
    return ClusterState.REACHABLE if kube.readyz(timeout) else ClusterState.DEGRADED


# ============================================================================
# Drivers
# ============================================================================

def _cli(env: Environment, tool: str) -> sh.Command:
    """Return a tool command that writes to the run's kubeconfig only."""
    return sh.Command(require_tool(tool, env)).bake(
        _env={**os.environ, "KUBECONFIG": str(env.kubeconfig)},
    )


def _kind_exists(env: Environment, cfg: ClusterConfig) -> bool:
    output = _cli(env, TOOL_KIND)("get", "clusters", _timeout=CLUSTER_PROBE_TIMEOUT_SECONDS)
    return cfg.cluster_name in str(output).split()


def _kind_attach(env: Environment, cfg: ClusterConfig, footprint: ResourceFootprint) -> None:
    _cli(env, TOOL_KIND)(
        "export", "kubeconfig",
        "--name", cfg.cluster_name,
        "--kubeconfig", str(env.kubeconfig),
        _timeout=CLUSTER_PROBE_TIMEOUT_SECONDS,
    )


def _kind_create(env: Environment, cfg: ClusterConfig, footprint: ResourceFootprint) -> None:
    _cli(env, TOOL_KIND)(
        "create", "cluster",
        "--name", cfg.cluster_name,
        "--kubeconfig", str(env.kubeconfig),
        "--wait", f"{cfg.create_timeout}s",
        _timeout=cfg.create_timeout + 60,
    )


def _minikube_exists(env: Environment, cfg: ClusterConfig) -> bool:
    try:
        output = _cli(env, TOOL_MINIKUBE)("profile", "list", "-o", "json", _timeout=CLUSTER_PROBE_TIMEOUT_SECONDS)
    except sh.ErrorReturnCode as e:
        # minikube exits non-zero when no profile exists at all
        logger.debug("minikube profile list failed: %s", e)
        return False
    try:
        profiles = json.loads(str(output))
    except json.JSONDecodeError:
        return False
    names = {p.get("Name") for group in ("valid", "invalid") for p in profiles.get(group) or []}
    return cfg.cluster_name in names


def _minikube_start(env: Environment, cfg: ClusterConfig, footprint: ResourceFootprint) -> None:
    # start is idempotent for an existing profile: it resumes a stopped one
    # and refreshes the kubeconfig entry of a running one
    _cli(env, TOOL_MINIKUBE)(
        "start",
        "-p", cfg.cluster_name,
        f"--memory={footprint.minikube_memory_mb}",
        f"--cpus={footprint.minikube_cpus}",
        f"--driver={cfg.minikube_vm_driver}",
        f"--wait-timeout={cfg.create_timeout}s",
        _timeout=cfg.create_timeout + 120,
    )


@dataclass(frozen=True)
class ClusterDriver:
    """One way of producing a local cluster.

    Attributes:
        name: Driver name used in ``driver_preference``.
        tool: CLI binary the driver needs.
        context: Maps a cluster name to the kubeconfig context it creates.
        needs_docker: Whether the driver needs a running docker daemon.
        exists: Whether a cluster with the configured name already exists.
        attach: Reconnects the kubeconfig to an existing cluster.
        create: Creates a new cluster with the configured name.
    """

    name: str
    tool: str
    context: Callable[[str], str]
    needs_docker: Callable[[ClusterConfig], bool]
    exists: Callable[[Environment, ClusterConfig], bool]
    attach: Callable[[Environment, ClusterConfig, ResourceFootprint], None]
    create: Callable[[Environment, ClusterConfig, ResourceFootprint], None]


DRIVERS: dict[str, ClusterDriver] = {
    DRIVER_KIND: ClusterDriver(
        name=DRIVER_KIND,
        tool=TOOL_KIND,
        context=lambda name: f"kind-{name}",
        needs_docker=lambda cfg: True,
        exists=_kind_exists,
        attach=_kind_attach,
        create=_kind_create,
    ),
    DRIVER_MINIKUBE: ClusterDriver(
        name=DRIVER_MINIKUBE,
        tool=TOOL_MINIKUBE,
        context=lambda name: name,
        needs_docker=lambda cfg: cfg.minikube_vm_driver == "docker",
        exists=_minikube_exists,
        attach=_minikube_start,
        create=_minikube_start,
    ),
}


def select_driver(env: Environment, cfg: ClusterConfig) -> ClusterDriver:
    """Pick the first preferred driver whose runtime prerequisites hold.

    Raises:
        ProvisionFailure: If no driver can run on this host.
    """
    skipped = []
    for name in cfg.driver_preference:
        driver = DRIVERS[name]
        if driver.needs_docker(cfg) and not detect_docker(env):
            skipped.append(f"{name} (docker daemon not reachable)")
            continue
        return driver
    raise ProvisionFailure(f"No usable cluster driver: {', '.join(skipped)}")


# ============================================================================
# Provisioning
# ============================================================================

def _provision(
    driver: ClusterDriver,
    env: Environment,
    cfg: ClusterConfig,
    footprint: ResourceFootprint,
) -> None:
    """Create the named cluster, or reattach to it if it already exists."""

    @retry(
        stop=stop_after_attempt(cfg.max_retries),
        wait=wait_fixed(CLUSTER_CREATE_RETRY_WAIT_SECONDS),
        reraise=True,
    )
    def _attempt() -> None:
        # a failed earlier attempt may have left the cluster half-created;
        # reattach instead of creating a second one
        if driver.exists(env, cfg):
            console.print(f"[yellow]   Found existing {driver.name} cluster '{cfg.cluster_name}', reattaching[/yellow]")
            driver.attach(env, cfg, footprint)
        else:
            console.print(f"[yellow]   Creating {driver.name} cluster '{cfg.cluster_name}'...[/yellow]")
            driver.create(env, cfg, footprint)

    try:
        _attempt()
    except (sh.ErrorReturnCode, sh.TimeoutException) as e:
        raise ProvisionFailure(f"{driver.name} could not provision '{cfg.cluster_name}': {e}") from e


def ensure_cluster(
    env: Environment,
    cfg: ClusterConfig,
    tool_cfg: ToolConfig,
    footprint: ResourceFootprint,
    kube_factory: KubeFactory = Kubectl,
) -> ClusterHandle:
    """Return a reachable cluster, creating a local one only if none is.

    Args:
        env: Environment; updated with the cluster handle and context.
        cfg: Cluster configuration (name, driver preference, retries).
        tool_cfg: Tool configuration, for installing the driver CLI.
        footprint: Resource footprint for the new cluster.
        kube_factory: Builds a kubectl client for the Environment.

    Returns:
        Handle to the reachable cluster.

    Raises:
        ProvisionFailure: If no cluster is reachable after provisioning.
        InstallFailure: If the driver CLI cannot be installed.
    """
    console.print(Panel.fit("Ensuring cluster", style="bold blue"))

    state = probe_cluster(kube_factory(env))
    if state is not ClusterState.UNREACHABLE:
        handle = ClusterHandle(env.context or "current-context", DRIVER_EXISTING, env.context, state)
        if state is ClusterState.DEGRADED:
            console.print("[yellow]⚠️  Cluster is reachable but reports degraded health; continuing[/yellow]")
        else:
            console.print("[green]✓ Kubernetes cluster is accessible[/green]")
        env.attach_cluster(handle)
        return handle

    console.print("[yellow]ℹ️  No accessible Kubernetes cluster found[/yellow]")
    driver = select_driver(env, cfg)
    ensure_tool(driver.tool, None, make_installer(driver.tool, tool_cfg), env)

    env.context = driver.context(cfg.cluster_name)
    _provision(driver, env, cfg, footprint)

    state = probe_cluster(kube_factory(env))
    if state is ClusterState.UNREACHABLE:
        raise ProvisionFailure(f"{driver.name} cluster '{cfg.cluster_name}' is still unreachable after provisioning")

    handle = ClusterHandle(cfg.cluster_name, driver.name, env.context, state)
    env.attach_cluster(handle)
    console.print(f"[green]✅ Cluster '{cfg.cluster_name}' ready ({driver.name})[/green]")
    return handle
