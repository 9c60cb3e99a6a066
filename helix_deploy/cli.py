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

"""
cli.py - Deploy the e-commerce stack onto a local or existing cluster.

Subcommands:
    deploy    Ensure tools, cluster and Istio, then apply workloads and routes
    render    Print the desired manifests without contacting a cluster

Examples:
    # Full deploy with defaults (kind, Istio demo profile, namespace helix)
    helix-deploy deploy

    # Low-resource host: minikube, constrained footprint, no sidecars
    helix-deploy deploy --profile constrained --driver minikube

    # Deploy into an already running cluster context
    helix-deploy deploy --context my-cluster --namespace shop

    # Inspect what would be applied
    helix-deploy render --profile constrained

Every flag can also be set through HELIX_* environment variables.
"""

from __future__ import annotations

import logging
import sys

import typer

from helix_deploy import console
from helix_deploy.commands import deploy_cmd, render_cmd

app = typer.Typer(
    help="Idempotent cluster bootstrap and service-mesh deployment.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.command("deploy")(deploy_cmd.deploy)
app.command("render")(render_cmd.render)


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
