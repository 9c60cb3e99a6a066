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

"""Render subcommand: print desired manifests without touching a cluster."""

from __future__ import annotations

import typer
from pydantic import ValidationError
from rich.markup import escape

from helix_deploy import console
from helix_deploy.commands.deploy_cmd import EXIT_USAGE
from helix_deploy.config import DeploymentProfile, resolve_config, validate_flags
from helix_deploy.manifests import render_all
from helix_deploy.models import MeshInjection


def render(
    namespace: str | None = typer.Option(None, "--namespace", "-n", help="Target namespace"),
    backend_image: str | None = typer.Option(None, "--backend-image", help="Backend container image"),
    frontend_image: str | None = typer.Option(None, "--frontend-image", help="Frontend container image"),
    profile: DeploymentProfile | None = typer.Option(
        None, "--profile", case_sensitive=False, help="Deployment profile"),
    mesh_injection: MeshInjection | None = typer.Option(
        None, "--mesh-injection", case_sensitive=False, help="Sidecar injection for the namespace"),
) -> None:
    """Print the namespace, workloads, gateway and routes as a YAML stream."""
    validate_flags(profile, mesh_injection, None)
    try:
        settings = resolve_config(
            namespace=namespace,
            backend_image=backend_image,
            frontend_image=frontend_image,
            profile=profile,
            mesh_injection=mesh_injection,
        )
    except ValidationError as e:
        console.print(f"[red]❌ Invalid configuration:\n{escape(str(e))}[/red]")
        raise typer.Exit(code=EXIT_USAGE) from e
    typer.echo(render_all(settings), nl=False)
