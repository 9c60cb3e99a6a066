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

"""Ingress gateway and path-prefix routing."""

from __future__ import annotations

from collections.abc import Iterable

from rich.panel import Panel

from helix_deploy import console
from helix_deploy.errors import ReconcileConflict
from helix_deploy.kube import Kubectl
from helix_deploy.manifests import routing_resource
from helix_deploy.models import (
    ConvergenceResult,
    DesiredResource,
    ResourceKind,
    RouteDestination,
    RouteRule,
    RoutingTable,
    summarize,
)
from helix_deploy.workloads import reconcile_resource


def order_rules(rules: Iterable[RouteRule]) -> list[RouteRule]:
    """Put prefix rules first (longest prefix first) and the catch-all last.

    Declaration order is kept among prefixes of equal length, so a more
    specific prefix is never shadowed by a shorter one or by the catch-all.

    Raises:
        ValueError: Unless there is exactly one catch-all rule.
    """
    rules = list(rules)
    catch_alls = [r for r in rules if r.is_catch_all]
    if len(catch_alls) != 1:
        raise ValueError(f"routing table needs exactly one catch-all rule, got {len(catch_alls)}")
    prefixed = sorted((r for r in rules if not r.is_catch_all), key=lambda r: -len(r.prefix))
    return [*prefixed, catch_alls[0]]


def ordered_table(table: RoutingTable) -> RoutingTable:
    return RoutingTable(table.name, table.namespace, table.gateway, tuple(order_rules(table.rules)), table.hosts)


def resolve(table: RoutingTable, path: str) -> RouteDestination:
    """Return the destination of the first rule matching *path*.

    Rules are evaluated in ``order_rules`` order whatever order the table
    declares them in.

    Raises:
        ValueError: Unless the table has exactly one catch-all rule.
    """
    for rule in order_rules(table.rules):
        if rule.matches(path):
            return rule.destination
    raise LookupError(f"no route matches {path!r}")


def check_destinations(kube: Kubectl, table: RoutingTable) -> None:
    """Refuse to route to Services that do not exist yet.

    Raises:
        ReconcileConflict: Naming every missing destination Service.
    """
    missing = []
    for dest in {rule.destination for rule in table.rules}:
        if kube.get(ResourceKind.SERVICE.resource, dest.service, dest.namespace) is None:
            missing.append(f"{dest.namespace}/{dest.service}")
    if missing:
        raise ReconcileConflict(f"routes reference missing service(s): {', '.join(sorted(missing))}")


def apply_routes(kube: Kubectl, gateway: DesiredResource, table: RoutingTable) -> ConvergenceResult:
    """Converge the ingress Gateway and the routing table bound to it.

    Args:
        kube: kubectl client.
        gateway: Desired Gateway object.
        table: Routing table; reordered here regardless of input order.

    Returns:
        Combined result for the Gateway and the routing object.

    Raises:
        ReconcileConflict: If a destination Service is missing; nothing is
            written in that case.
        ValueError: If the table does not have exactly one catch-all.
    """
    console.print(Panel.fit("Applying mesh routes", style="bold blue"))
    if table.gateway != gateway.name:
        raise ReconcileConflict(f"routing table bound to gateway '{table.gateway}', expected '{gateway.name}'")
    table = ordered_table(table)
    check_destinations(kube, table)

    results = [
        reconcile_resource(kube, gateway),
        reconcile_resource(kube, routing_resource(table)),
    ]
    for rule in table.rules:
        match = rule.prefix if rule.prefix is not None else "(default)"
        console.print(f"  {match:<12} -> {rule.destination.host}:{rule.destination.port}")
    return summarize("routes", results)
