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

"""Deploy subcommand: converge the whole stack onto a cluster."""

from __future__ import annotations

import logging
import signal
import threading
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.markup import escape

from helix_deploy import console, logger
from helix_deploy.config import (
    DeploymentProfile,
    display_config,
    resolve_config,
    validate_flags,
)
from helix_deploy.errors import PipelineCancelled, StageFailed, describe
from helix_deploy.models import MeshInjection
from helix_deploy.pipeline import display_summary, run_pipeline

EXIT_STAGE_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def _install_cancel_handlers(cancel: threading.Event) -> dict:
    def _handler(signum, frame) -> None:
        console.print(
            f"[yellow]⚠️  Received {signal.Signals(signum).name}; stopping before the next stage[/yellow]"
        )
        cancel.set()

    return {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}


def _restore_handlers(previous: dict) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def deploy(
    namespace: str | None = typer.Option(
        None, "--namespace", "-n", help="Target namespace (overrides HELIX_NAMESPACE)"),
    backend_image: str | None = typer.Option(
        None, "--backend-image", help="Backend container image"),
    frontend_image: str | None = typer.Option(
        None, "--frontend-image", help="Frontend container image"),
    profile: DeploymentProfile | None = typer.Option(
        None, "--profile", case_sensitive=False, help="Deployment profile (default: full)"),
    mesh_injection: MeshInjection | None = typer.Option(
        None, "--mesh-injection", case_sensitive=False,
        help="Sidecar injection for the namespace (default: follows --profile)"),
    istio_profile: str | None = typer.Option(
        None, "--istio-profile", help="Istio install profile (default: follows --profile)"),
    driver: list[str] | None = typer.Option(
        None, "--driver", help="Local cluster driver to try, in order; repeatable (kind, minikube)"),
    cluster_name: str | None = typer.Option(
        None, "--cluster-name", help="Name of a locally created cluster"),
    kubeconfig: Path | None = typer.Option(
        None, "--kubeconfig", help="kubeconfig file (default: $KUBECONFIG or ~/.kube/config)"),
    context: str | None = typer.Option(
        None, "--context", help="kubeconfig context (default: current context)"),
    bin_dir: Path | None = typer.Option(
        None, "--bin-dir", help="Directory missing tools are installed into"),
    mesh_timeout: int | None = typer.Option(
        None, "--mesh-timeout", min=0, help="Seconds to wait for the mesh control plane"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log every external command"),
) -> None:
    """Bootstrap tools, cluster and mesh, then deploy and route the application.

    Safe to re-run: every stage converges to the declared state and reports
    'already-satisfied' when nothing needs to change.
    """
    if verbose:
        logger.setLevel(logging.DEBUG)

    validate_flags(profile, mesh_injection, driver)
    try:
        settings = resolve_config(
            namespace=namespace,
            backend_image=backend_image,
            frontend_image=frontend_image,
            profile=profile,
            mesh_injection=mesh_injection,
            istio_profile=istio_profile,
            drivers=driver,
            cluster_name=cluster_name,
            kubeconfig=kubeconfig,
            context=context,
            bin_dir=bin_dir,
            mesh_timeout=mesh_timeout,
        )
    except ValidationError as e:
        console.print(f"[red]❌ Invalid configuration:\n{escape(str(e))}[/red]")
        raise typer.Exit(code=EXIT_USAGE) from e
    display_config(settings)

    cancel = threading.Event()
    previous = _install_cancel_handlers(cancel)
    try:
        result = run_pipeline(settings, cancel=cancel)
    except StageFailed as e:
        console.print(f"[red]❌ Stage '{e.stage}' failed[/red]")
        console.print(f"[red]   Last completed stage: {e.last_completed or 'none'}[/red]")
        console.print(f"[red]   Cause: {escape(describe(e.cause))}[/red]")
        raise typer.Exit(code=EXIT_STAGE_FAILED) from e
    except PipelineCancelled as e:
        console.print(f"[yellow]⚠️  Cancelled before stage '{e.next_stage}'[/yellow]")
        console.print(f"[yellow]   Last completed stage: {e.last_completed or 'none'}[/yellow]")
        raise typer.Exit(code=EXIT_CANCELLED) from e
    finally:
        _restore_handlers(previous)

    display_summary(result)
    if result.changed:
        console.print("[green]✅ Deployment converged[/green]")
    else:
        console.print("[green]✓ Everything already satisfied[/green]")
