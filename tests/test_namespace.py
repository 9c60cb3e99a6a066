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

"""Namespace creation and the sidecar-injection label."""

from __future__ import annotations

from helix_deploy.models import ConvergenceStatus, MeshInjection
from helix_deploy.namespace import ensure_namespace


def _injection_label(kube, name: str) -> str | None:
    return kube.get("namespace", name)["metadata"]["labels"].get("istio-injection")


def test_creates_namespace_with_label(kube) -> None:
    result = ensure_namespace(kube, "helix", MeshInjection.ENABLED)
    assert result.status is ConvergenceStatus.CREATED
    assert _injection_label(kube, "helix") == "enabled"


def test_second_run_is_a_no_op(kube) -> None:
    ensure_namespace(kube, "helix", MeshInjection.ENABLED)
    kube.ops.clear()

    result = ensure_namespace(kube, "helix", MeshInjection.ENABLED)

    assert result.status is ConvergenceStatus.SATISFIED
    assert kube.writes() == []


def test_injection_toggle_leaves_workloads_alone(kube) -> None:
    ensure_namespace(kube, "helix", MeshInjection.ENABLED)
    kube.seed("deployment", "ecommerce-backend", "helix", {"spec": {"replicas": 1}})
    before = kube.get("deployment", "ecommerce-backend", "helix")
    kube.ops.clear()

    result = ensure_namespace(kube, "helix", MeshInjection.DISABLED)

    assert result.status is ConvergenceStatus.PATCHED
    assert "enabled -> disabled" in result.detail
    assert _injection_label(kube, "helix") == "disabled"
    assert kube.writes() == [("label", "namespace", "", "helix")]
    assert kube.get("deployment", "ecommerce-backend", "helix") == before


def test_unlabelled_namespace_gets_label(kube) -> None:
    kube.seed("namespace", "helix", None, {"metadata": {"labels": {"team": "shop"}}})

    result = ensure_namespace(kube, "helix", MeshInjection.DISABLED)

    assert result.status is ConvergenceStatus.PATCHED
    labels = kube.get("namespace", "helix")["metadata"]["labels"]
    assert labels == {"team": "shop", "istio-injection": "disabled"}
