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

"""Desired-state builders for the datastore, application tiers, and routing."""

from __future__ import annotations

import yaml

from helix_deploy.config import AppConfig, ResourceFootprint, Settings
from helix_deploy.constants import (
    BACKEND_CONTAINER_PORT,
    BACKEND_NAME,
    CLUSTER_DOMAIN,
    DATASTORE_ACCESS_MODE,
    DATASTORE_CLAIM_NAME,
    DATASTORE_DATABASE,
    DATASTORE_ENV_VAR,
    DATASTORE_MOUNT_PATH,
    DATASTORE_NAME,
    DATASTORE_PORT,
    DATASTORE_PROTOCOL,
    FRONTEND_CONTAINER_PORT,
    FRONTEND_NAME,
    GATEWAY_NAME,
    INGRESS_HTTP_PORT,
    INGRESS_SELECTOR,
    ROUTING_TABLE_NAME,
    SERVICE_PORT,
)
from helix_deploy.models import (
    DesiredResource,
    ResourceKind,
    RouteDestination,
    RouteRule,
    RoutingTable,
)


def datastore_uri(namespace: str) -> str:
    """Connection string handed to the backend, resolved via cluster DNS."""
    return f"{DATASTORE_PROTOCOL}://{DATASTORE_NAME}.{namespace}.{CLUSTER_DOMAIN}:{DATASTORE_PORT}/{DATASTORE_DATABASE}"


def _service(name: str, namespace: str, port: int, target_port: int) -> DesiredResource:
    return DesiredResource(
        kind=ResourceKind.SERVICE,
        name=name,
        namespace=namespace,
        spec={
            "selector": {"app": name},
            "ports": [{"protocol": "TCP", "port": port, "targetPort": target_port}],
        },
    )


def _container(name: str, image: str, port: int, resources: dict) -> dict:
    container: dict = {
        "name": name,
        "image": image,
        "ports": [{"containerPort": port}],
    }
    if resources:
        container["resources"] = resources
    return container


def datastore_resources(app: AppConfig, footprint: ResourceFootprint) -> list[DesiredResource]:
    """Datastore Service and StatefulSet with a stable claim template."""
    container = _container(DATASTORE_NAME, app.datastore_image, DATASTORE_PORT, footprint.datastore_resources)
    container["volumeMounts"] = [{"name": DATASTORE_CLAIM_NAME, "mountPath": DATASTORE_MOUNT_PATH}]
    statefulset = DesiredResource(
        kind=ResourceKind.STATEFUL_WORKLOAD,
        name=DATASTORE_NAME,
        namespace=app.namespace,
        spec={
            "serviceName": DATASTORE_NAME,
            "replicas": 1,
            "selector": {"matchLabels": {"app": DATASTORE_NAME}},
            "template": {
                "metadata": {"labels": {"app": DATASTORE_NAME}},
                "spec": {"containers": [container]},
            },
            "volumeClaimTemplates": [
                {
                    "metadata": {"name": DATASTORE_CLAIM_NAME},
                    "spec": {
                        "accessModes": [DATASTORE_ACCESS_MODE],
                        "resources": {"requests": {"storage": app.datastore_storage}},
                    },
                },
            ],
        },
    )
    return [_service(DATASTORE_NAME, app.namespace, DATASTORE_PORT, DATASTORE_PORT), statefulset]


def _deployment(name: str, namespace: str, container: dict) -> DesiredResource:
    return DesiredResource(
        kind=ResourceKind.WORKLOAD,
        name=name,
        namespace=namespace,
        spec={
            "replicas": 1,
            "selector": {"matchLabels": {"app": name}},
            "template": {
                "metadata": {"labels": {"app": name}},
                "spec": {"containers": [container]},
            },
        },
    )


def application_resources(app: AppConfig, footprint: ResourceFootprint) -> list[DesiredResource]:
    """Backend and frontend Deployments with their Services.

    The backend gets exactly one environment binding: the datastore URI.
    """
    backend = _container(BACKEND_NAME, app.backend_image, BACKEND_CONTAINER_PORT, footprint.app_resources)
    backend["env"] = [{"name": DATASTORE_ENV_VAR, "value": datastore_uri(app.namespace)}]
    frontend = _container(FRONTEND_NAME, app.frontend_image, FRONTEND_CONTAINER_PORT, footprint.app_resources)
    return [
        _deployment(BACKEND_NAME, app.namespace, backend),
        _service(BACKEND_NAME, app.namespace, SERVICE_PORT, BACKEND_CONTAINER_PORT),
        _deployment(FRONTEND_NAME, app.namespace, frontend),
        _service(FRONTEND_NAME, app.namespace, SERVICE_PORT, FRONTEND_CONTAINER_PORT),
    ]


def workload_resources(app: AppConfig, footprint: ResourceFootprint) -> list[DesiredResource]:
    """Everything the workload stage converges, datastore first."""
    return [*datastore_resources(app, footprint), *application_resources(app, footprint)]


def gateway_resource(namespace: str) -> DesiredResource:
    """The single ingress Gateway: plaintext HTTP on port 80, any host."""
    return DesiredResource(
        kind=ResourceKind.GATEWAY,
        name=GATEWAY_NAME,
        namespace=namespace,
        spec={
            "selector": dict(INGRESS_SELECTOR),
            "servers": [
                {
                    "port": {"number": INGRESS_HTTP_PORT, "name": "http", "protocol": "HTTP"},
                    "hosts": ["*"],
                },
            ],
        },
    )


def routing_table(app: AppConfig, gateway: str = GATEWAY_NAME) -> RoutingTable:
    """API prefix to the backend, everything else to the frontend.

    Rules are listed in declaration order only; ``routes.order_rules``
    decides evaluation order.
    """
    return RoutingTable(
        name=ROUTING_TABLE_NAME,
        namespace=app.namespace,
        gateway=gateway,
        rules=(
            RouteRule(RouteDestination(FRONTEND_NAME, app.namespace, SERVICE_PORT)),
            RouteRule(RouteDestination(BACKEND_NAME, app.namespace, SERVICE_PORT), prefix=app.api_prefix),
        ),
    )


def routing_resource(table: RoutingTable) -> DesiredResource:
    """Render a routing table as a VirtualService.

    The table's rule order is written as-is; callers order it first.
    """
    http = []
    for rule in table.rules:
        entry: dict = {}
        if rule.prefix is not None:
            entry["match"] = [{"uri": {"prefix": rule.prefix}}]
        entry["route"] = [
            {"destination": {"host": rule.destination.host, "port": {"number": rule.destination.port}}},
        ]
        http.append(entry)
    return DesiredResource(
        kind=ResourceKind.ROUTING_TABLE,
        name=table.name,
        namespace=table.namespace,
        spec={"hosts": list(table.hosts), "gateways": [table.gateway], "http": http},
    )


def render_all(settings: Settings) -> str:
    """Render every desired object as a YAML stream."""
    from helix_deploy.namespace import namespace_resource
    from helix_deploy.routes import ordered_table

    app = settings.app
    resources = [
        namespace_resource(app.namespace, settings.injection),
        *workload_resources(app, settings.footprint),
        gateway_resource(app.namespace),
        routing_resource(ordered_table(routing_table(app))),
    ]
    return yaml.safe_dump_all([r.to_manifest() for r in resources], sort_keys=False, default_flow_style=False)
