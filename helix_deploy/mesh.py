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

"""Istio control-plane installation, readiness, and ingress exposure."""

from __future__ import annotations

import time

import sh
from rich.panel import Panel
from tenacity import RetryError, retry, retry_if_result, stop_after_delay, wait_fixed

from helix_deploy import console, logger
from helix_deploy.config import MeshConfig, ResourceFootprint
from helix_deploy.constants import (
    INGRESS_GATEWAY_DEPLOYMENT,
    INGRESS_GATEWAY_SERVICE,
    ISTIO_INSTALL_TIMEOUT_SECONDS,
    ISTIOD_DEPLOYMENT,
    LABEL_MESH_PROFILE,
    MESH_READY_POLL_INTERVAL_SECONDS,
    MESH_READY_SELECTORS,
    NS_ISTIO_SYSTEM,
    TOOL_ISTIOCTL,
)
from helix_deploy.errors import InstallFailure, MeshNotReady
from helix_deploy.kube import Kubectl
from helix_deploy.models import ConvergenceResult, ConvergenceStatus, Environment, ResourceKind
from helix_deploy.tools import require_tool


def mesh_installed(kube: Kubectl, profile: str) -> bool:
    """Whether the control plane and ingress exist, installed with *profile*."""
    namespace = kube.get(ResourceKind.NAMESPACE.resource, NS_ISTIO_SYSTEM)
    if namespace is None:
        return False
    recorded = (namespace.get("metadata", {}).get("labels") or {}).get(LABEL_MESH_PROFILE)
    if recorded != profile:
        return False
    for deployment in (ISTIOD_DEPLOYMENT, INGRESS_GATEWAY_DEPLOYMENT):
        if kube.get(ResourceKind.WORKLOAD.resource, deployment, NS_ISTIO_SYSTEM) is None:
            return False
    return True


def istioctl_install(env: Environment, profile: str, overrides: tuple[str, ...]) -> None:
    """Run ``istioctl install``; re-running with the same values is a no-op.

    Raises:
        InstallFailure: If istioctl exits non-zero or hangs.
    """
    args = ["install", "--set", f"profile={profile}", "-y", "--kubeconfig", str(env.kubeconfig)]
    if env.context:
        args += ["--context", env.context]
    for value in overrides:
        args += ["--set", value]
    logger.debug("istioctl %s", " ".join(args))
    try:
        sh.Command(require_tool(TOOL_ISTIOCTL, env))(*args, _timeout=ISTIO_INSTALL_TIMEOUT_SECONDS)
    except sh.ErrorReturnCode as e:
        raise InstallFailure(f"istioctl install failed: {e.stderr.decode(errors='replace').strip()[:500]}") from e
    except sh.TimeoutException as e:
        raise InstallFailure(f"istioctl install did not finish within {ISTIO_INSTALL_TIMEOUT_SECONDS}s") from e


def wait_for_mesh(kube: Kubectl, timeout: int, poll: int = MESH_READY_POLL_INTERVAL_SECONDS) -> None:
    """Wait, bounded by *timeout* seconds overall, for istiod and ingress pods.

    Raises:
        MeshNotReady: If any component is not Ready before the deadline.
    """
    console.print(f"[yellow]ℹ️  Waiting up to {timeout}s for Istio pods to be ready...[/yellow]")
    deadline = time.monotonic() + timeout
    for selector in MESH_READY_SELECTORS:
        remaining = max(0.0, deadline - time.monotonic())

        @retry(
            stop=stop_after_delay(remaining),
            wait=wait_fixed(poll),
            retry=retry_if_result(lambda ok: not ok),
        )
        def _ready(selector: str = selector) -> bool:
            left = max(1, int(deadline - time.monotonic()))
            return kube.wait_ready(NS_ISTIO_SYSTEM, selector, min(left, 30))

        try:
            _ready()
        except RetryError as e:
            raise MeshNotReady(
                f"pods '{selector}' in {NS_ISTIO_SYSTEM} not Ready within {timeout}s", reason="Timeout"
            ) from e
        console.print(f"[green]✓ {selector} ready[/green]")


def ensure_ingress_exposure(kube: Kubectl, service_type: str) -> bool:
    """Make the ingress gateway Service reachable from outside the cluster.

    Returns:
        True if the Service type was changed, False if it already matched.

    Raises:
        MeshNotReady: If the ingress gateway Service does not exist.
    """
    service = kube.get(ResourceKind.SERVICE.resource, INGRESS_GATEWAY_SERVICE, NS_ISTIO_SYSTEM)
    if service is None:
        raise MeshNotReady(f"service {NS_ISTIO_SYSTEM}/{INGRESS_GATEWAY_SERVICE} not found", reason="MissingIngress")
    current = service.get("spec", {}).get("type")
    if current == service_type:
        console.print(f"[green]✓ {INGRESS_GATEWAY_SERVICE} already {service_type}[/green]")
        return False
    console.print(f"[yellow]ℹ️  Setting {INGRESS_GATEWAY_SERVICE} Service to {service_type} (was {current})[/yellow]")
    kube.patch(ResourceKind.SERVICE.resource, INGRESS_GATEWAY_SERVICE, {"spec": {"type": service_type}}, NS_ISTIO_SYSTEM)
    return True


def ensure_mesh(
    kube: Kubectl,
    env: Environment,
    mesh_cfg: MeshConfig,
    footprint: ResourceFootprint,
    profile: str,
) -> ConvergenceResult:
    """Install the mesh if needed, wait for it, and expose its ingress.

    Args:
        kube: kubectl client.
        env: Environment with the istioctl path, kubeconfig and context.
        mesh_cfg: Mesh configuration (timeout, ingress exposure).
        footprint: Resource footprint supplying Istio overrides.
        profile: Istio install profile.

    Returns:
        Created when installed now, patched when only exposure changed,
        already-satisfied otherwise.

    Raises:
        InstallFailure: If istioctl fails.
        MeshNotReady: If the control plane misses the readiness deadline.
    """
    console.print(Panel.fit(f"Ensuring Istio control plane (profile: {profile})", style="bold blue"))

    installed_now = False
    if mesh_installed(kube, profile):
        console.print(f"[green]✓ Istio already installed with profile {profile}[/green]")
    else:
        console.print("[yellow]ℹ️  Installing Istio control plane...[/yellow]")
        istioctl_install(env, profile, footprint.istio_overrides)
        installed_now = True

    wait_for_mesh(kube, mesh_cfg.ready_timeout)

    if installed_now:
        kube.label(ResourceKind.NAMESPACE.resource, NS_ISTIO_SYSTEM, {LABEL_MESH_PROFILE: profile})
    exposure_changed = ensure_ingress_exposure(kube, mesh_cfg.ingress_service_type)

    if installed_now:
        status = ConvergenceStatus.CREATED
    elif exposure_changed:
        status = ConvergenceStatus.PATCHED
    else:
        status = ConvergenceStatus.SATISFIED
    return ConvergenceResult("mesh", status, f"profile {profile}, ingress {mesh_cfg.ingress_service_type}")
