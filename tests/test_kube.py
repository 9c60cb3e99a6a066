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

"""kubectl client: argument pinning, error classification and retries."""

from __future__ import annotations

import json

import pytest

from helix_deploy.errors import ApplyFailure, ReconcileConflict
from helix_deploy.kube import Kubectl, KubectlResult
from helix_deploy.manifests import workload_resources
from helix_deploy.models import ConvergenceStatus
from helix_deploy.workloads import reconcile_resource


class ScriptedKubectl(Kubectl):
    """Kubectl whose ``run`` replays canned results and records arguments."""

    def __init__(self, env, results, **kwargs) -> None:
        super().__init__(env, **kwargs)
        self.results = list(results)
        self.calls: list[list[str]] = []

    def run(self, args, *, input=None, timeout=None) -> KubectlResult:
        self.calls.append([*self._base_args(), *args])
        return self.results.pop(0)


MANIFEST = {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "mongo", "namespace": "helix"}}


def test_every_call_is_pinned_to_kubeconfig_and_context(env) -> None:
    env.context = "kind-ecommerce-cluster"
    kube = ScriptedKubectl(env, [KubectlResult(True, "", "")])

    kube.apply(MANIFEST)

    cmd = kube.calls[0]
    assert cmd[1:5] == ["--kubeconfig", str(env.kubeconfig), "--context", "kind-ecommerce-cluster"]
    assert cmd[5:] == ["apply", "-f", "-"]


def test_transient_failures_are_retried(env, no_sleep) -> None:
    kube = ScriptedKubectl(env, [
        KubectlResult(False, "", "Unable to connect to the server: dial tcp: connection refused"),
        KubectlResult(False, "", "Error from server (ServiceUnavailable): etcdserver: request timed out"),
        KubectlResult(True, "service/mongo configured", ""),
    ])

    kube.apply(MANIFEST)

    assert len(kube.calls) == 3


def test_transient_retries_are_bounded(env, no_sleep) -> None:
    failure = KubectlResult(False, "", "connection refused")
    kube = ScriptedKubectl(env, [failure] * 3, max_attempts=3)

    with pytest.raises(ApplyFailure) as exc_info:
        kube.apply(MANIFEST)

    assert exc_info.value.transient
    assert len(kube.calls) == 3


def test_permanent_failure_is_not_retried(env, no_sleep) -> None:
    kube = ScriptedKubectl(env, [
        KubectlResult(False, "", 'Service "mongo" is invalid: spec.ports[0].port: Invalid value: 0'),
    ])

    with pytest.raises(ApplyFailure) as exc_info:
        kube.apply(MANIFEST)

    assert not exc_info.value.transient
    assert len(kube.calls) == 1


def test_immutable_field_is_a_conflict(env) -> None:
    kube = ScriptedKubectl(env, [
        KubectlResult(False, "", 'The StatefulSet "mongo" is invalid: spec: Forbidden: updates to statefulset '
                                 "spec for fields other than 'replicas' are forbidden"),
    ])

    with pytest.raises(ReconcileConflict):
        kube.apply(MANIFEST)


def test_get_missing_object_returns_none(env) -> None:
    kube = ScriptedKubectl(env, [KubectlResult(True, "", "")])
    assert kube.get("service", "mongo", "helix") is None
    assert kube.calls[0][-2:] == ["-n", "helix"]


def test_get_parses_object(env) -> None:
    obj = {"kind": "Service", "metadata": {"name": "mongo"}}
    kube = ScriptedKubectl(env, [KubectlResult(True, json.dumps(obj), "")])
    assert kube.get("service", "mongo", "helix") == obj


def test_transient_read_failures_are_retried(env, no_sleep) -> None:
    obj = {"kind": "Service", "metadata": {"name": "mongo"}}
    kube = ScriptedKubectl(env, [
        KubectlResult(False, "", "Unable to connect to the server: dial tcp: connection refused"),
        KubectlResult(True, json.dumps(obj), ""),
    ])

    assert kube.get("service", "mongo", "helix") == obj
    assert len(kube.calls) == 2


def test_transient_list_failures_are_retried(env, no_sleep) -> None:
    pod = {"metadata": {"name": "istiod-0"}}
    kube = ScriptedKubectl(env, [
        KubectlResult(False, "", "kubectl timed out after 30s", timed_out=True),
        KubectlResult(True, json.dumps({"items": [pod]}), ""),
    ])

    assert kube.list_objects("pods", "istio-system", "app=istiod") == [pod]
    assert len(kube.calls) == 2


def test_permanent_read_failure_is_not_retried(env, no_sleep) -> None:
    kube = ScriptedKubectl(env, [
        KubectlResult(False, "", 'Error from server (Forbidden): services "mongo" is forbidden: '
                                 'User "dev" cannot get resource "services"'),
    ])

    with pytest.raises(ApplyFailure) as exc_info:
        kube.get("service", "mongo", "helix")

    assert not exc_info.value.transient
    assert len(kube.calls) == 1


def test_server_version_unreachable(env) -> None:
    kube = ScriptedKubectl(env, [
        KubectlResult(False, json.dumps({"clientVersion": {"gitVersion": "v1.30.2"}}), "connection refused"),
    ])
    assert kube.server_version() is None


def test_reconcile_survives_a_connection_blip(env, settings, no_sleep) -> None:
    mongo_service = workload_resources(settings.app, settings.footprint)[0]
    kube = ScriptedKubectl(env, [
        KubectlResult(False, "", "Unable to connect to the server: dial tcp: connection refused"),
        KubectlResult(True, json.dumps(mongo_service.to_manifest()), ""),
    ])

    result = reconcile_resource(kube, mongo_service)

    assert result.status is ConvergenceStatus.SATISFIED
    assert len(kube.calls) == 2
