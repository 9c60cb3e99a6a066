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

"""Shared fixtures: an in-memory kubectl, a fake host, and resolved settings."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import pytest

from helix_deploy import cluster, mesh, tools
from helix_deploy.config import Settings, resolve_config
from helix_deploy.constants import (
    INGRESS_GATEWAY_DEPLOYMENT,
    INGRESS_GATEWAY_SERVICE,
    ISTIOD_DEPLOYMENT,
    NS_ISTIO_SYSTEM,
)
from helix_deploy.models import Environment, ResourceKind

_RESOURCE_BY_KIND = {kind.manifest_kind: kind.resource for kind in ResourceKind}

NODE_ADDRESS = "172.18.0.2"
INGRESS_NODE_PORT = 31380


def _merge(live: Any, update: Any) -> Any:
    if isinstance(live, dict) and isinstance(update, dict):
        merged = dict(live)
        for key, value in update.items():
            merged[key] = _merge(live.get(key), value) if key in live else copy.deepcopy(value)
        return merged
    return copy.deepcopy(update)


class FakeKubectl:
    """In-memory stand-in for helix_deploy.kube.Kubectl.

    Objects are keyed by (resource, namespace, name). Writes are recorded in
    ``ops`` so tests can assert what was (not) written.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.ops: list[tuple[str, str, str, str]] = []
        self.reachable = True
        self.healthy = True
        self.pods_ready = True
        self.wait_calls: list[tuple[str, str]] = []
        self.apply_errors: list[Exception] = []

    # -- probes ---------------------------------------------------------

    def server_version(self, timeout: int | None = None) -> str | None:
        return "v1.29.2" if self.reachable else None

    def readyz(self, timeout: int | None = None) -> bool:
        return self.reachable and self.healthy

    # -- reads ----------------------------------------------------------

    def seed(self, resource: str, name: str, namespace: str | None, obj: dict[str, Any]) -> None:
        obj = copy.deepcopy(obj)
        obj.setdefault("metadata", {}).update({"name": name})
        if namespace:
            obj["metadata"]["namespace"] = namespace
        self.objects[(resource, namespace or "", name)] = obj

    def get(self, resource: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        obj = self.objects.get((resource, namespace or "", name))
        return copy.deepcopy(obj) if obj is not None else None

    def list_objects(self, resource: str, namespace: str | None = None, selector: str | None = None) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(obj)
            for (res, ns, _), obj in sorted(self.objects.items())
            if res == resource and (namespace is None or ns == namespace)
        ]

    # -- writes ---------------------------------------------------------

    def apply(self, manifest: dict[str, Any]) -> None:
        if self.apply_errors:
            raise self.apply_errors.pop(0)
        resource = _RESOURCE_BY_KIND[manifest["kind"]]
        meta = manifest["metadata"]
        key = (resource, meta.get("namespace", ""), meta["name"])
        live = self.objects.get(key)
        if live is None:
            live = self._server_defaults(manifest)
            self.ops.append(("create", *key))
        else:
            self.ops.append(("apply", *key))
        self.objects[key] = _merge(live, manifest)

    def label(self, resource: str, name: str, labels: dict[str, str], namespace: str | None = None) -> None:
        key = (resource, namespace or "", name)
        self.objects[key].setdefault("metadata", {}).setdefault("labels", {}).update(labels)
        self.ops.append(("label", *key))

    def patch(self, resource: str, name: str, patch: dict[str, Any], namespace: str | None = None) -> None:
        key = (resource, namespace or "", name)
        self.objects[key] = _merge(self.objects[key], patch)
        self.ops.append(("patch", *key))

    def wait_ready(self, namespace: str, selector: str, timeout: int) -> bool:
        self.wait_calls.append((namespace, selector))
        return self.pods_ready

    @staticmethod
    def _server_defaults(manifest: dict[str, Any]) -> dict[str, Any]:
        # fields the API server fills in, so convergence checks see extra keys
        kind = manifest["kind"]
        if kind == "Service":
            return {"spec": {"clusterIP": "10.96.0.42", "type": "ClusterIP"}}
        if kind == "StatefulSet":
            claims = [
                {"spec": {"volumeMode": "Filesystem"}}
                for _ in manifest["spec"].get("volumeClaimTemplates", [])
            ]
            return {"spec": {"podManagementPolicy": "OrderedReady", "volumeClaimTemplates": claims}, "status": {}}
        if kind == "Deployment":
            return {"spec": {"progressDeadlineSeconds": 600}, "status": {}}
        return {}

    # -- helpers --------------------------------------------------------

    def writes(self) -> list[tuple[str, str, str, str]]:
        return list(self.ops)

    def seed_mesh(self, profile: str | None = None, service_type: str = "LoadBalancer") -> None:
        """Put the objects ``istioctl install`` creates into the store."""
        labels = {"helix.dev/istio-profile": profile} if profile else {}
        self.seed("namespace", NS_ISTIO_SYSTEM, None, {"metadata": {"labels": labels}})
        for deployment in (ISTIOD_DEPLOYMENT, INGRESS_GATEWAY_DEPLOYMENT):
            self.seed("deployment", deployment, NS_ISTIO_SYSTEM, {"spec": {}})
        self.seed(
            "service",
            INGRESS_GATEWAY_SERVICE,
            NS_ISTIO_SYSTEM,
            {
                "spec": {
                    "type": service_type,
                    "ports": [
                        {"name": "status-port", "port": 15021, "nodePort": 30021},
                        {"name": "http2", "port": 80, "nodePort": INGRESS_NODE_PORT},
                    ],
                },
            },
        )

    def seed_node(self, address: str = NODE_ADDRESS) -> None:
        self.seed("nodes", "ecommerce-cluster-control-plane", None, {
            "status": {"addresses": [
                {"type": "InternalIP", "address": address},
                {"type": "Hostname", "address": "ecommerce-cluster-control-plane"},
            ]},
        })


class FakeHost:
    """Tools on a pretend host: which binaries exist and what they report."""

    VERSIONS = {
        "kubectl": "v1.30.2",
        "istioctl": "1.22.3",
        "kind": "v0.23.0",
        "minikube": "v1.33.1",
    }

    def __init__(self) -> None:
        self.installed: dict[str, str] = {}
        self.install_calls: list[str] = []

    def locate_tool(self, name: str, env: Environment) -> str | None:
        return str(env.bin_dir / name) if name in self.installed else None

    def read_version(self, path: str, spec: tools.ToolSpec) -> str | None:
        return self.installed.get(Path(path).name)

    def make_installer(self, name: str, tool_cfg: Any):
        def _install(env: Environment) -> None:
            self.install_calls.append(name)
            self.installed[name] = self.VERSIONS[name]

        return _install


@pytest.fixture
def kube() -> FakeKubectl:
    return FakeKubectl()


@pytest.fixture
def env(tmp_path: Path) -> Environment:
    return Environment(bin_dir=tmp_path / "bin", kubeconfig=tmp_path / "kubeconfig")


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    for var in ("HELIX_NAMESPACE", "HELIX_PROFILE", "HELIX_MESH_INJECTION", "HELIX_ISTIO_PROFILE"):
        monkeypatch.delenv(var, raising=False)
    return resolve_config(kubeconfig=tmp_path / "kubeconfig", bin_dir=tmp_path / "bin")


@pytest.fixture
def host(monkeypatch: pytest.MonkeyPatch) -> FakeHost:
    """Route tool probing and installing through a FakeHost."""
    fake = FakeHost()
    monkeypatch.setattr(tools, "locate_tool", fake.locate_tool)
    monkeypatch.setattr(tools, "read_version", fake.read_version)
    monkeypatch.setattr(tools, "make_installer", fake.make_installer)
    monkeypatch.setattr(cluster, "make_installer", fake.make_installer)
    return fake


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make tenacity backoff instantaneous."""
    monkeypatch.setattr("time.sleep", lambda seconds: None)


@pytest.fixture
def fake_istioctl(monkeypatch: pytest.MonkeyPatch, kube: FakeKubectl) -> list[str]:
    """Replace ``istioctl install`` with seeding the fake cluster."""
    calls: list[str] = []

    def _install(env: Environment, profile: str, overrides: tuple[str, ...]) -> None:
        calls.append(profile)
        kube.seed_mesh(profile=None)

    monkeypatch.setattr(mesh, "istioctl_install", _install)
    return calls
