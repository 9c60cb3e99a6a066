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

"""Desired-state builders."""

from __future__ import annotations

from helix_deploy.config import FOOTPRINTS, DeploymentProfile
from helix_deploy.manifests import datastore_resources, gateway_resource, routing_table


def test_datastore_claim_template(settings) -> None:
    service, statefulset = datastore_resources(settings.app, settings.footprint)

    assert service.spec["ports"] == [{"protocol": "TCP", "port": 27017, "targetPort": 27017}]
    manifest = statefulset.to_manifest()
    assert manifest["apiVersion"] == "apps/v1"
    assert manifest["spec"]["serviceName"] == "mongo"
    (claim,) = manifest["spec"]["volumeClaimTemplates"]
    assert claim["metadata"]["name"] == "mongo-persistent-storage"
    assert claim["spec"] == {"accessModes": ["ReadWriteOnce"], "resources": {"requests": {"storage": "1Gi"}}}
    container = manifest["spec"]["template"]["spec"]["containers"][0]
    assert container["volumeMounts"] == [{"name": "mongo-persistent-storage", "mountPath": "/data/db"}]
    assert "resources" not in container


def test_constrained_datastore_has_limits(settings) -> None:
    _, statefulset = datastore_resources(settings.app, FOOTPRINTS[DeploymentProfile.CONSTRAINED])
    container = statefulset.spec["template"]["spec"]["containers"][0]
    assert container["resources"]["limits"] == {"cpu": "100m", "memory": "256Mi"}


def test_gateway_shape() -> None:
    manifest = gateway_resource("helix").to_manifest()
    assert manifest["apiVersion"] == "networking.istio.io/v1beta1"
    assert manifest["spec"]["selector"] == {"istio": "ingressgateway"}
    assert manifest["spec"]["servers"] == [
        {"port": {"number": 80, "name": "http", "protocol": "HTTP"}, "hosts": ["*"]},
    ]


def test_routing_table_binds_gateway(settings) -> None:
    table = routing_table(settings.app)
    assert table.gateway == "ecommerce-gateway"
    assert sum(1 for rule in table.rules if rule.is_catch_all) == 1
