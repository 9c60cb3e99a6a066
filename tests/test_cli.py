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

"""Command-line surface: exit codes and flag plumbing."""

from __future__ import annotations

import pytest
import yaml
from typer.testing import CliRunner

from helix_deploy.cli import app
from helix_deploy.commands import deploy_cmd
from helix_deploy.errors import MeshNotReady, PipelineCancelled, StageFailed
from helix_deploy.models import ConvergenceResult, ConvergenceStatus
from helix_deploy.pipeline import PipelineReport

runner = CliRunner()


@pytest.fixture
def captured(monkeypatch, tmp_path):
    """Replace the pipeline with a stub that records the settings it got."""
    calls = []

    def _run(settings, *, cancel=None, **kwargs):
        calls.append(settings)
        return PipelineReport(results=[ConvergenceResult("tools", ConvergenceStatus.SATISFIED)])

    monkeypatch.setattr(deploy_cmd, "run_pipeline", _run)
    monkeypatch.setenv("KUBECONFIG", str(tmp_path / "kubeconfig"))
    return calls


def test_deploy_success(captured) -> None:
    result = runner.invoke(app, [
        "deploy", "--namespace", "shop", "--profile", "constrained",
        "--driver", "minikube", "--driver", "kind", "--mesh-timeout", "30",
    ])

    assert result.exit_code == 0, result.output
    settings = captured[0]
    assert settings.app.namespace == "shop"
    assert settings.istio_profile == "default"
    assert settings.cluster.driver_preference == ["minikube", "kind"]
    assert settings.mesh.ready_timeout == 30
    assert "already satisfied" in result.output


def test_stage_failure_exits_1(monkeypatch, captured) -> None:
    def _fail(settings, **kwargs):
        raise StageFailed("mesh", "cluster", MeshNotReady("pods not Ready within 180s"))

    monkeypatch.setattr(deploy_cmd, "run_pipeline", _fail)

    result = runner.invoke(app, ["deploy"])

    assert result.exit_code == 1
    assert "Stage 'mesh' failed" in result.output
    assert "Last completed stage: cluster" in result.output
    assert "MeshNotReady(Timeout)" in result.output
    assert "Traceback" not in result.output


def test_cancel_exits_130(monkeypatch, captured) -> None:
    def _cancelled(settings, **kwargs):
        raise PipelineCancelled("workloads", "namespace")

    monkeypatch.setattr(deploy_cmd, "run_pipeline", _cancelled)

    result = runner.invoke(app, ["deploy"])

    assert result.exit_code == 130
    assert "Cancelled before stage 'workloads'" in result.output


def test_invalid_namespace_is_a_usage_error(captured) -> None:
    result = runner.invoke(app, ["deploy", "--namespace", "Bad_Name"])
    assert result.exit_code == 2
    assert captured == []


def test_repeated_driver_is_a_usage_error(captured) -> None:
    result = runner.invoke(app, ["deploy", "--driver", "kind", "--driver", "kind"])
    assert result.exit_code == 2
    assert captured == []


def test_render_invalid_namespace_is_a_usage_error(monkeypatch) -> None:
    monkeypatch.delenv("HELIX_NAMESPACE", raising=False)

    result = runner.invoke(app, ["render", "--namespace", "Bad_Name"])

    assert result.exit_code == 2
    assert "Invalid configuration" in result.output
    assert "apiVersion" not in result.output


def test_render_prints_manifests(monkeypatch) -> None:
    monkeypatch.delenv("HELIX_NAMESPACE", raising=False)

    result = runner.invoke(app, ["render", "--namespace", "shop"])

    assert result.exit_code == 0, result.output
    docs = list(yaml.safe_load_all(result.output))
    assert [d["kind"] for d in docs] == [
        "Namespace",
        "Service", "StatefulSet",
        "Deployment", "Service",
        "Deployment", "Service",
        "Gateway", "VirtualService",
    ]
    assert docs[0]["metadata"]["labels"] == {"istio-injection": "enabled"}
    assert docs[-1]["spec"]["http"][0]["match"] == [{"uri": {"prefix": "/api"}}]
