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

"""Host tool probing and installation, and environment detection."""

from __future__ import annotations

import io
import json
import os
import platform
import re
import tarfile
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import docker
import httpx
import sh
from rich.panel import Panel

from helix_deploy import console, logger
from helix_deploy.config import Settings, ToolConfig
from helix_deploy.constants import (
    BASE_TOOLS,
    TOOL_ISTIOCTL,
    TOOL_KIND,
    TOOL_KUBECTL,
    TOOL_MINIKUBE,
    VERSION_PROBE_TIMEOUT_SECONDS,
    dep_value,
)
from helix_deploy.errors import InstallFailure, MissingTool
from helix_deploy.models import (
    ConvergenceResult,
    ConvergenceStatus,
    Environment,
    ToolOutcome,
    ToolProbe,
    ToolStatus,
    summarize,
)
from helix_deploy.utils import version_at_least

InstallFn = Callable[[Environment], None]


@dataclass(frozen=True)
class ToolSpec:
    """How to recognise one external binary.

    Attributes:
        name: Binary name.
        min_version: Oldest acceptable version, or None for any.
        version_args: Arguments that make the binary print its version.
        version_key: JSON key path to the version in that output, or None
            when the tool only prints plain text.
    """

    name: str
    min_version: str | None
    version_args: tuple[str, ...]
    version_key: tuple[str, ...] | None = None


TOOL_SPECS: dict[str, ToolSpec] = {
    TOOL_KUBECTL: ToolSpec(
        TOOL_KUBECTL,
        dep_value("tools", TOOL_KUBECTL, "min_version"),
        ("version", "--client", "-o", "json"),
        ("clientVersion", "gitVersion"),
    ),
    TOOL_ISTIOCTL: ToolSpec(
        TOOL_ISTIOCTL,
        dep_value("tools", TOOL_ISTIOCTL, "min_version"),
        ("version", "--remote=false", "-o", "json"),
        ("clientVersion", "version"),
    ),
    TOOL_KIND: ToolSpec(
        TOOL_KIND,
        dep_value("tools", TOOL_KIND, "min_version"),
        ("version",),
    ),
    TOOL_MINIKUBE: ToolSpec(
        TOOL_MINIKUBE,
        dep_value("tools", TOOL_MINIKUBE, "min_version"),
        ("version", "-o", "json"),
        ("minikubeVersion",),
    ),
}


# ============================================================================
# Environment detection
# ============================================================================

def build_environment(settings: Settings) -> Environment:
    """Capture the host facts a run depends on, once, into an Environment."""
    return Environment(
        bin_dir=settings.tools.bin_dir,
        kubeconfig=settings.cluster.kubeconfig,
        context=settings.cluster.context,
        search_path=os.environ.get("PATH", ""),
    )


def detect_docker(env: Environment) -> bool:
    """Ping the docker daemon and record the answer on the Environment."""
    if env.docker_available is not None:
        return env.docker_available
    try:
        client = docker.from_env()
        try:
            env.docker_available = bool(client.ping())
        finally:
            client.close()
    except docker.errors.DockerException as e:
        logger.debug("docker daemon not reachable: %s", e)
        env.docker_available = False
    return env.docker_available


# ============================================================================
# Probing
# ============================================================================

def locate_tool(name: str, env: Environment) -> str | None:
    """Find a binary in the install directory or on the captured PATH."""
    paths = [str(env.bin_dir), *[p for p in env.search_path.split(os.pathsep) if p]]
    found = sh.which(name, paths)
    return str(found) if found else None


def _extract_version(output: str, key: tuple[str, ...] | None) -> str | None:
    if key is None:
        m = re.search(r"v?\d+\.\d+(?:\.\d+)?", output)
        return m.group(0) if m else None
    try:
        node = json.loads(output)
    except json.JSONDecodeError:
        return None
    for part in key:
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node if isinstance(node, str) else None


def read_version(path: str, spec: ToolSpec) -> str | None:
    """Run the tool's version command and return the reported version.

    Raises:
        sh.ErrorReturnCode: If the version command exits non-zero.
        sh.TimeoutException: If the version command hangs.
    """
    output = sh.Command(path)(*spec.version_args, _timeout=VERSION_PROBE_TIMEOUT_SECONDS)
    return _extract_version(str(output), spec.version_key)


def probe_tool(spec: ToolSpec, env: Environment) -> ToolProbe:
    """Probe a binary and classify it as present, absent, or degraded."""
    path = locate_tool(spec.name, env)
    if path is None:
        return ToolProbe(spec.name, ToolStatus.ABSENT)
    try:
        version = read_version(path, spec)
    except (sh.ErrorReturnCode, sh.TimeoutException) as e:
        return ToolProbe(spec.name, ToolStatus.DEGRADED, path=path, reason=f"version command failed: {e}")
    if version is None:
        return ToolProbe(spec.name, ToolStatus.DEGRADED, path=path, reason="version not reported")
    if not version_at_least(version, spec.min_version):
        return ToolProbe(
            spec.name, ToolStatus.DEGRADED, version=version, path=path,
            reason=f"version {version} older than {spec.min_version}",
        )
    return ToolProbe(spec.name, ToolStatus.PRESENT, version=version, path=path)


def require_tool(name: str, env: Environment) -> str:
    """Return the path of a tool the Environment already knows is usable.

    Raises:
        MissingTool: If the tool was not probed as present.
    """
    probe = env.tools.get(name)
    if probe is None or probe.status is not ToolStatus.PRESENT or not probe.path:
        raise MissingTool(f"Required command '{name}' not available")
    return probe.path


# ============================================================================
# Installing
# ============================================================================

def host_platform() -> tuple[str, str]:
    """Return (os, arch) in the naming release download URLs use."""
    system = platform.system().lower()
    machine = platform.machine().lower()
    arch = {"x86_64": "amd64", "amd64": "amd64", "aarch64": "arm64", "arm64": "arm64"}.get(machine, machine)
    return system, arch


def _fetch(url: str, timeout: int) -> bytes:
    logger.info("Downloading %s", url)
    with httpx.Client(follow_redirects=True, timeout=timeout) as client:
        response = client.get(url)
        response.raise_for_status()
        return response.content


def _write_executable(data: bytes, dest: Path) -> None:
    """Atomically replace *dest* with an executable holding *data*.

    A partial or broken binary left by an earlier attempt is overwritten.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp_name, 0o755)
        os.replace(tmp_name, dest)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def resolve_kubectl_version(version: str, timeout: int) -> str:
    """Turn ``stable`` into the concrete current kubectl release."""
    if version != "stable":
        return version
    stable_url = dep_value("tools", TOOL_KUBECTL, "stable_url")
    return _fetch(stable_url, timeout).decode().strip()


def _binary_installer(name: str, version_fn: Callable[[], str], timeout: int) -> InstallFn:
    def _install(env: Environment) -> None:
        os_name, arch = host_platform()
        url = dep_value("tools", name, "url").format(version=version_fn(), os=os_name, arch=arch)
        _write_executable(_fetch(url, timeout), env.bin_dir / name)

    return _install


def istioctl_platform(os_name: str, arch: str) -> str:
    """Platform suffix of an istioctl release archive (``linux-amd64``, ``osx``)."""
    if os_name == "darwin":
        # macOS archives are "osx", with the arch omitted for amd64
        return "osx-arm64" if arch == "arm64" else "osx"
    return f"{os_name}-{arch}"


def _istioctl_installer(version: str, timeout: int) -> InstallFn:
    def _install(env: Environment) -> None:
        url = dep_value("tools", TOOL_ISTIOCTL, "url").format(
            version=version, platform=istioctl_platform(*host_platform()))
        member = dep_value("tools", TOOL_ISTIOCTL, "archive_member", default=TOOL_ISTIOCTL)
        with tarfile.open(fileobj=io.BytesIO(_fetch(url, timeout)), mode="r:gz") as archive:
            extracted = archive.extractfile(member)
            if extracted is None:
                raise InstallFailure(f"'{member}' not found in {url}")
            data = extracted.read()
        _write_executable(data, env.bin_dir / TOOL_ISTIOCTL)

    return _install


def make_installer(name: str, tool_cfg: ToolConfig) -> InstallFn:
    """Build the install function for a known tool."""
    timeout = tool_cfg.download_timeout
    if name == TOOL_KUBECTL:
        return _binary_installer(name, lambda: resolve_kubectl_version(tool_cfg.kubectl_version, timeout), timeout)
    if name == TOOL_ISTIOCTL:
        return _istioctl_installer(tool_cfg.istioctl_version, timeout)
    if name == TOOL_KIND:
        return _binary_installer(name, lambda: tool_cfg.kind_version, timeout)
    if name == TOOL_MINIKUBE:
        return _binary_installer(name, lambda: tool_cfg.minikube_version, timeout)
    raise ValueError(f"No installer for tool '{name}'")


def ensure_tool(
    name: str,
    min_version: str | None,
    install_fn: InstallFn,
    env: Environment,
) -> ToolOutcome:
    """Make sure a binary is present at a usable version.

    Installs it when absent or degraded. Never touches cluster state.

    Args:
        name: Binary name.
        min_version: Oldest acceptable version, or None to use the default.
        install_fn: Installer, safe to run over a broken earlier install.
        env: Environment; the probe result is recorded on it.

    Returns:
        ToolOutcome.PRESENT if nothing was done, INSTALLED otherwise.

    Raises:
        InstallFailure: If the install fails or the tool is still unusable.
    """
    base = TOOL_SPECS.get(name, ToolSpec(name, None, ("version",)))
    spec = ToolSpec(name, min_version or base.min_version, base.version_args, base.version_key)

    probe = probe_tool(spec, env)
    env.record_tool(probe)
    if probe.status is ToolStatus.PRESENT:
        console.print(f"[green]✓ {name} {probe.version} already installed[/green]")
        return ToolOutcome.PRESENT

    why = "not found" if probe.status is ToolStatus.ABSENT else probe.reason
    console.print(f"[yellow]ℹ️  {name} {why}. Installing into {env.bin_dir}...[/yellow]")
    try:
        install_fn(env)
    except (httpx.HTTPError, OSError, tarfile.TarError) as e:
        raise InstallFailure(f"Failed to install {name}: {e}") from e

    probe = probe_tool(spec, env)
    env.record_tool(probe)
    if probe.status is not ToolStatus.PRESENT:
        raise InstallFailure(f"{name} still {probe.status.value} after install: {probe.reason or 'not on PATH'}")
    console.print(f"[green]✅ {name} {probe.version} installed[/green]")
    return ToolOutcome.INSTALLED


def ensure_base_tools(env: Environment, tool_cfg: ToolConfig) -> ConvergenceResult:
    """Ensure the tools every run needs (kubectl, istioctl)."""
    console.print(Panel.fit("Checking prerequisites", style="bold blue"))
    results = []
    for name in BASE_TOOLS:
        outcome = ensure_tool(name, None, make_installer(name, tool_cfg), env)
        status = ConvergenceStatus.CREATED if outcome is ToolOutcome.INSTALLED else ConvergenceStatus.SATISFIED
        results.append(ConvergenceResult(name, status))
    return summarize("tools", results, detail=", ".join(f"{r.name}: {r.status.value}" for r in results))
