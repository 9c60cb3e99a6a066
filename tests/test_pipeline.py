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

"""End-to-end runs of the stage pipeline against the fakes."""

from __future__ import annotations

import dataclasses
import threading

import pytest

from helix_deploy import cluster, pipeline
from helix_deploy.config import DeploymentProfile, resolve_config
from helix_deploy.errors import MeshNotReady, PipelineCancelled, StageFailed
from helix_deploy.models import ConvergenceStatus, Environment
from helix_deploy.pipeline import STAGES, run_pipeline


@pytest.fixture
def fresh_host(kube, host, fake_istioctl, monkeypatch) -> list[str]:
    """No tools installed and no cluster reachable; returns created clusters."""
    kube.reachable = False
    created: list[str] = []

    def _create(env, cfg, footprint) -> None:
        created.append(cfg.cluster_name)
        kube.reachable = True
        kube.seed_node()

    driver = cluster.ClusterDriver(
        name="kind",
        tool="kind",
        context=lambda name: f"kind-{name}",
        needs_docker=lambda cfg: True,
        exists=lambda env, cfg: bool(created),
        attach=lambda env, cfg, footprint: None,
        create=_create,
    )
    monkeypatch.setitem(cluster.DRIVERS, "kind", driver)
    monkeypatch.setattr(cluster, "detect_docker", lambda env: True)
    return created


def _run(settings, env, kube, cancel=None):
    return run_pipeline(settings, env=env, kube_factory=lambda e: kube, cancel=cancel)


def test_happy_path(settings, env, kube, host, fake_istioctl, fresh_host) -> None:
    report = _run(settings, env, kube)

    assert report.completed == list(STAGES)
    assert [r.status for r in report.results] == [
        ConvergenceStatus.CREATED,  # tools
        ConvergenceStatus.CREATED,  # cluster
        ConvergenceStatus.CREATED,  # mesh
        ConvergenceStatus.CREATED,  # namespace
        ConvergenceStatus.CREATED,  # workloads
        ConvergenceStatus.CREATED,  # routes
        ConvergenceStatus.SATISFIED,  # access
    ]
    assert host.install_calls == ["kubectl", "istioctl", "kind"]
    assert fresh_host == ["ecommerce-cluster"]
    assert fake_istioctl == ["demo"]
    assert env.context == "kind-ecommerce-cluster"
    assert kube.get("namespace", "helix")["metadata"]["labels"]["istio-injection"] == "enabled"
    for kind, name in (
        ("statefulset", "mongo"),
        ("deployment", "ecommerce-backend"),
        ("deployment", "ecommerce-frontend"),
        ("gateway.networking.istio.io", "ecommerce-gateway"),
        ("virtualservice.networking.istio.io", "ecommerce-virtualservice"),
    ):
        assert kube.get(kind, name, "helix") is not None
    assert report.endpoint.frontend_url == "http://172.18.0.2:31380/"
    assert report.endpoint.api_base_url == "http://172.18.0.2:31380/api"


def test_already_converged(settings, env, kube, host, fake_istioctl, fresh_host) -> None:
    _run(settings, env, kube)
    kube.ops.clear()

    second_env = Environment(bin_dir=env.bin_dir, kubeconfig=env.kubeconfig)
    report = _run(settings, second_env, kube)

    assert {r.status for r in report.results} == {ConvergenceStatus.SATISFIED}
    assert not report.changed
    assert kube.writes() == []
    assert fresh_host == ["ecommerce-cluster"]
    assert fake_istioctl == ["demo"]


def test_mesh_timeout_stops_before_namespace(settings, env, kube, host, fake_istioctl, fresh_host) -> None:
    kube.pods_ready = False
    settings = dataclasses.replace(settings, mesh=settings.mesh.model_copy(update={"ready_timeout": 0}))

    with pytest.raises(StageFailed) as exc_info:
        _run(settings, env, kube)

    err = exc_info.value
    assert err.stage == "mesh"
    assert err.last_completed == "cluster"
    assert isinstance(err.cause, MeshNotReady)
    assert err.cause.reason == "Timeout"
    assert kube.get("namespace", "helix") is None


def test_constrained_profile(tmp_path, env, kube, host, fake_istioctl, fresh_host) -> None:
    settings = resolve_config(
        profile=DeploymentProfile.CONSTRAINED,
        kubeconfig=tmp_path / "kubeconfig",
        bin_dir=tmp_path / "bin",
    )

    _run(settings, env, kube)

    assert fake_istioctl == ["default"]
    assert kube.get("namespace", "helix")["metadata"]["labels"]["istio-injection"] == "disabled"
    backend = kube.get("deployment", "ecommerce-backend", "helix")
    limits = backend["spec"]["template"]["spec"]["containers"][0]["resources"]["limits"]
    assert limits == {"cpu": "50m", "memory": "128Mi"}


def test_cancel_before_start(settings, env, kube, host, fresh_host) -> None:
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(PipelineCancelled) as exc_info:
        _run(settings, env, kube, cancel)

    assert exc_info.value.next_stage == "tools"
    assert exc_info.value.last_completed is None
    assert host.install_calls == []


def test_cancel_at_stage_boundary(settings, env, kube, host, fake_istioctl, fresh_host, monkeypatch) -> None:
    cancel = threading.Event()
    real_ensure_mesh = pipeline.ensure_mesh

    def _mesh_then_cancel(*args, **kwargs):
        result = real_ensure_mesh(*args, **kwargs)
        cancel.set()
        return result

    monkeypatch.setattr(pipeline, "ensure_mesh", _mesh_then_cancel)

    with pytest.raises(PipelineCancelled) as exc_info:
        _run(settings, env, kube, cancel)

    assert exc_info.value.next_stage == "namespace"
    assert exc_info.value.last_completed == "mesh"
    assert kube.get("namespace", "helix") is None
