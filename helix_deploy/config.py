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

"""Configuration classes, deployment profiles, and config resolution."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import typer
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel

from helix_deploy import console, logger
from helix_deploy.constants import (
    DEFAULT_API_PREFIX,
    DEFAULT_APPLY_MAX_ATTEMPTS,
    DEFAULT_APPLY_WORKERS,
    DEFAULT_BIN_DIR,
    DEFAULT_CLUSTER_CREATE_MAX_RETRIES,
    DEFAULT_CLUSTER_CREATE_TIMEOUT_SECONDS,
    DEFAULT_CLUSTER_NAME,
    DEFAULT_DATASTORE_STORAGE,
    DEFAULT_DRIVER_PREFERENCE,
    DEFAULT_INGRESS_SERVICE_TYPE,
    DEFAULT_KUBECTL_TIMEOUT_SECONDS,
    DEFAULT_MESH_READY_TIMEOUT_SECONDS,
    DEFAULT_MINIKUBE_VM_DRIVER,
    DEFAULT_NAMESPACE,
    DOWNLOAD_TIMEOUT_SECONDS,
    DRIVER_KIND,
    DRIVER_MINIKUBE,
    ISTIO_CONSTRAINED_PROFILE,
    ISTIO_FULL_PROFILE,
    dep_value,
)
from helix_deploy.models import MeshInjection

# ============================================================================
# Deployment profiles
# ============================================================================


class DeploymentProfile(str, Enum):
    """Target footprint of a deployment."""

    FULL = "full"
    CONSTRAINED = "constrained"


@dataclass(frozen=True)
class ResourceFootprint:
    """Resource policy derived from a deployment profile.

    Attributes:
        istio_profile: Istio install profile.
        injection: Default sidecar-injection setting for the namespace.
        minikube_memory_mb: Memory handed to a new minikube cluster.
        minikube_cpus: CPUs handed to a new minikube cluster.
        app_resources: Requests/limits for the backend and frontend, or empty.
        datastore_resources: Requests/limits for the datastore, or empty.
        istio_overrides: Extra ``--set`` values for ``istioctl install``.
    """

    istio_profile: str
    injection: MeshInjection
    minikube_memory_mb: int
    minikube_cpus: int
    app_resources: dict = field(default_factory=dict)
    datastore_resources: dict = field(default_factory=dict)
    istio_overrides: tuple[str, ...] = ()


FOOTPRINTS: dict[DeploymentProfile, ResourceFootprint] = {
    DeploymentProfile.FULL: ResourceFootprint(
        istio_profile=ISTIO_FULL_PROFILE,
        injection=MeshInjection.ENABLED,
        minikube_memory_mb=8192,
        minikube_cpus=4,
        app_resources={
            "requests": {"cpu": "100m", "memory": "128Mi"},
            "limits": {"cpu": "500m", "memory": "512Mi"},
        },
    ),
    DeploymentProfile.CONSTRAINED: ResourceFootprint(
        istio_profile=ISTIO_CONSTRAINED_PROFILE,
        injection=MeshInjection.DISABLED,
        minikube_memory_mb=4096,
        minikube_cpus=2,
        app_resources={
            "requests": {"cpu": "10m", "memory": "64Mi"},
            "limits": {"cpu": "50m", "memory": "128Mi"},
        },
        datastore_resources={
            "requests": {"cpu": "50m", "memory": "128Mi"},
            "limits": {"cpu": "100m", "memory": "256Mi"},
        },
        istio_overrides=(
            "values.pilot.resources.requests.cpu=100m",
            "values.pilot.resources.requests.memory=256Mi",
            "values.gateways.istio-ingressgateway.resources.requests.cpu=50m",
            "values.gateways.istio-ingressgateway.resources.requests.memory=64Mi",
        ),
    ),
}


# ============================================================================
# Configuration classes
# ============================================================================


class ToolConfig(BaseSettings):
    """Host tool installation settings, auto-loaded from HELIX_* env vars.

    Attributes:
        bin_dir: Directory missing binaries are installed into.
        download_timeout: Seconds allowed for a single download.
        kubectl_version: kubectl release to install (``stable`` resolves live).
        istioctl_version: istioctl release to install.
        kind_version: kind release to install.
        minikube_version: minikube release to install.
    """

    model_config = SettingsConfigDict(env_prefix="HELIX_", extra="ignore")

    bin_dir: Path = Path(DEFAULT_BIN_DIR)
    download_timeout: int = Field(default=DOWNLOAD_TIMEOUT_SECONDS, ge=1)
    kubectl_version: str = dep_value("tools", "kubectl", "version", default="stable")
    istioctl_version: str = dep_value("tools", "istioctl", "version", default="1.22.3")
    kind_version: str = dep_value("tools", "kind", "version", default="v0.20.0")
    minikube_version: str = dep_value("tools", "minikube", "version", default="latest")


class ClusterConfig(BaseSettings):
    """Cluster selection and creation, auto-loaded from HELIX_* env vars.

    Attributes:
        cluster_name: Deterministic name for a locally created cluster.
        driver_preference: Local drivers to try, in order.
        minikube_vm_driver: ``--driver`` passed to ``minikube start``.
        kubeconfig: kubeconfig file to pin every call to, or None for default.
        context: kubeconfig context to use, or None for the current one.
        create_timeout: Seconds allowed for cluster creation.
        max_retries: Maximum cluster creation attempts per driver.
    """

    model_config = SettingsConfigDict(env_prefix="HELIX_", extra="ignore")

    cluster_name: str = Field(default=DEFAULT_CLUSTER_NAME, pattern=r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
    driver_preference: list[str] = Field(default_factory=lambda: list(DEFAULT_DRIVER_PREFERENCE))
    minikube_vm_driver: str = DEFAULT_MINIKUBE_VM_DRIVER
    kubeconfig: Path | None = None
    context: str | None = None
    create_timeout: int = Field(default=DEFAULT_CLUSTER_CREATE_TIMEOUT_SECONDS, ge=1)
    max_retries: int = Field(default=DEFAULT_CLUSTER_CREATE_MAX_RETRIES, ge=1, le=10)

    @field_validator("driver_preference")
    @classmethod
    def _known_drivers(cls, value: list[str]) -> list[str]:
        unknown = [d for d in value if d not in (DRIVER_KIND, DRIVER_MINIKUBE)]
        if unknown:
            raise ValueError(f"unknown cluster driver(s): {', '.join(unknown)}")
        if not value:
            raise ValueError("at least one cluster driver is required")
        return value


class MeshConfig(BaseSettings):
    """Service-mesh installation, auto-loaded from HELIX_* env vars.

    Attributes:
        istio_profile: Istio profile override, or None to follow the footprint.
        ready_timeout: Seconds to wait for the control plane to become ready.
        ingress_service_type: Exposure type of the ingress gateway Service.
    """

    model_config = SettingsConfigDict(env_prefix="HELIX_", extra="ignore")

    istio_profile: str | None = None
    ready_timeout: int = Field(default=DEFAULT_MESH_READY_TIMEOUT_SECONDS, ge=0)
    ingress_service_type: str = Field(default=DEFAULT_INGRESS_SERVICE_TYPE, pattern=r"^(NodePort|LoadBalancer)$")


class AppConfig(BaseSettings):
    """Deployed application settings, auto-loaded from HELIX_* env vars.

    Attributes:
        namespace: Target namespace.
        backend_image: Backend container image.
        frontend_image: Frontend container image.
        datastore_image: Datastore container image.
        datastore_storage: Size of the datastore volume claim.
        api_prefix: Path prefix routed to the backend.
        profile: Deployment profile.
        mesh_injection: Injection override, or None to follow the profile.
    """

    model_config = SettingsConfigDict(env_prefix="HELIX_", extra="ignore")

    namespace: str = Field(default=DEFAULT_NAMESPACE, pattern=r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
    backend_image: str = dep_value("images", "backend")
    frontend_image: str = dep_value("images", "frontend")
    datastore_image: str = dep_value("images", "datastore")
    datastore_storage: str = Field(default=DEFAULT_DATASTORE_STORAGE, pattern=r"^\d+(Ki|Mi|Gi|Ti)?$")
    api_prefix: str = Field(default=DEFAULT_API_PREFIX, pattern=r"^/[-a-zA-Z0-9_/]*$")
    profile: DeploymentProfile = DeploymentProfile.FULL
    mesh_injection: MeshInjection | None = None


class ReconcileConfig(BaseSettings):
    """Apply behaviour, auto-loaded from HELIX_* env vars.

    Attributes:
        apply_workers: Worker pool size for independent objects.
        apply_max_attempts: Attempts for a transient apply failure.
        kubectl_timeout: Seconds allowed for a single kubectl call.
    """

    model_config = SettingsConfigDict(env_prefix="HELIX_", extra="ignore")

    apply_workers: int = Field(default=DEFAULT_APPLY_WORKERS, ge=1, le=16)
    apply_max_attempts: int = Field(default=DEFAULT_APPLY_MAX_ATTEMPTS, ge=1, le=10)
    kubectl_timeout: int = Field(default=DEFAULT_KUBECTL_TIMEOUT_SECONDS, ge=1)


@dataclass(frozen=True)
class Settings:
    """All resolved configuration for one run."""

    tools: ToolConfig
    cluster: ClusterConfig
    mesh: MeshConfig
    app: AppConfig
    reconcile: ReconcileConfig

    @property
    def footprint(self) -> ResourceFootprint:
        return FOOTPRINTS[self.app.profile]

    @property
    def istio_profile(self) -> str:
        return self.mesh.istio_profile or self.footprint.istio_profile

    @property
    def injection(self) -> MeshInjection:
        return self.app.mesh_injection or self.footprint.injection


# ============================================================================
# Config resolution
# ============================================================================


def default_kubeconfig() -> Path:
    """Resolve the kubeconfig path once, from KUBECONFIG or ``~/.kube/config``."""
    env_value = os.environ.get("KUBECONFIG", "")
    first = next((p for p in env_value.split(os.pathsep) if p), None)
    if first:
        return Path(first).expanduser()
    return Path.home() / ".kube" / "config"


def validate_flags(
    profile: DeploymentProfile | None,
    mesh_injection: MeshInjection | None,
    drivers: list[str] | None,
) -> None:
    """Validate flag combinations.

    Args:
        profile: Deployment profile override, or None.
        mesh_injection: Injection override, or None.
        drivers: Driver preference override, or None.

    Raises:
        typer.BadParameter: If the driver list repeats a driver.
    """
    if drivers and len(set(drivers)) != len(drivers):
        raise typer.BadParameter("--driver values must not repeat")
    if profile is DeploymentProfile.FULL and mesh_injection is MeshInjection.DISABLED:
        logger.warning("Sidecar injection disabled on a full profile; mesh routing will bypass sidecars")
    if profile is DeploymentProfile.CONSTRAINED and mesh_injection is MeshInjection.ENABLED:
        logger.warning("Sidecar injection enabled on a constrained profile; expect higher resource use")


def resolve_config(
    *,
    namespace: str | None = None,
    backend_image: str | None = None,
    frontend_image: str | None = None,
    profile: DeploymentProfile | None = None,
    mesh_injection: MeshInjection | None = None,
    istio_profile: str | None = None,
    drivers: list[str] | None = None,
    cluster_name: str | None = None,
    kubeconfig: Path | None = None,
    context: str | None = None,
    bin_dir: Path | None = None,
    mesh_timeout: int | None = None,
) -> Settings:
    """Merge CLI overrides, environment variables, and defaults into Settings.

    Resolution priority: CLI arguments > HELIX_* environment variables > defaults.

    Returns:
        The resolved Settings.
    """
    tool_cfg = ToolConfig()
    cluster_cfg = ClusterConfig()
    mesh_cfg = MeshConfig()
    app_cfg = AppConfig()
    reconcile_cfg = ReconcileConfig()

    app_overrides = {
        "namespace": namespace,
        "backend_image": backend_image,
        "frontend_image": frontend_image,
        "profile": profile,
        "mesh_injection": mesh_injection,
    }
    cluster_overrides = {
        "driver_preference": drivers or None,
        "cluster_name": cluster_name,
        "kubeconfig": kubeconfig,
        "context": context,
    }
    mesh_overrides = {"istio_profile": istio_profile, "ready_timeout": mesh_timeout}

    app_cfg = _override(app_cfg, app_overrides)
    cluster_cfg = _override(cluster_cfg, cluster_overrides)
    mesh_cfg = _override(mesh_cfg, mesh_overrides)
    if bin_dir is not None:
        tool_cfg = tool_cfg.model_copy(update={"bin_dir": bin_dir})
    if cluster_cfg.kubeconfig is None:
        cluster_cfg = cluster_cfg.model_copy(update={"kubeconfig": default_kubeconfig()})

    return Settings(tool_cfg, cluster_cfg, mesh_cfg, app_cfg, reconcile_cfg)


def _override(cfg: BaseSettings, overrides: dict) -> BaseSettings:
    update = {key: value for key, value in overrides.items() if value is not None}
    if not update:
        return cfg
    # model_copy skips validation, so re-validate the merged values
    return type(cfg).model_validate({**cfg.model_dump(), **update})


# ============================================================================
# Display
# ============================================================================


def display_config(settings: Settings) -> None:
    """Print the effective configuration for this run."""
    console.print(Panel.fit("Configuration", style="bold blue"))

    console.print("[yellow]Cluster:[/yellow]")
    console.print(f"  cluster_name    : {settings.cluster.cluster_name}")
    console.print(f"  drivers         : {', '.join(settings.cluster.driver_preference)}")
    console.print(f"  kubeconfig      : {settings.cluster.kubeconfig}")
    if settings.cluster.context:
        console.print(f"  context         : {settings.cluster.context}")

    console.print("[yellow]Mesh:[/yellow]")
    console.print(f"  istio_profile   : {settings.istio_profile}")
    console.print(f"  ingress_type    : {settings.mesh.ingress_service_type}")
    console.print(f"  ready_timeout   : {settings.mesh.ready_timeout}s")

    console.print("[yellow]Application:[/yellow]")
    console.print(f"  namespace       : {settings.app.namespace}")
    console.print(f"  profile         : {settings.app.profile.value}")
    console.print(f"  injection       : {settings.injection.value}")
    console.print(f"  backend_image   : {settings.app.backend_image}")
    console.print(f"  frontend_image  : {settings.app.frontend_image}")
    console.print(f"  datastore_image : {settings.app.datastore_image}")
