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

"""kubectl client pinned to an explicit kubeconfig and context."""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from typing import Any

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from helix_deploy import logger
from helix_deploy.constants import (
    APPLY_BACKOFF_MAX_SECONDS,
    APPLY_BACKOFF_MIN_SECONDS,
    CONFLICT_ERROR_MARKERS,
    DEFAULT_APPLY_MAX_ATTEMPTS,
    DEFAULT_KUBECTL_TIMEOUT_SECONDS,
    NOT_FOUND_MARKERS,
    TOOL_KUBECTL,
    TRANSIENT_ERROR_MARKERS,
)
from helix_deploy.errors import ApplyFailure, ReconcileConflict
from helix_deploy.models import Environment


@dataclass(frozen=True)
class KubectlResult:
    """Outcome of a single kubectl invocation."""

    ok: bool
    stdout: str
    stderr: str
    timed_out: bool = False


def is_transient(stderr: str) -> bool:
    """Whether kubectl stderr describes a passing API or network failure."""
    lowered = stderr.lower()
    return any(marker in lowered for marker in TRANSIENT_ERROR_MARKERS)


def is_conflict(stderr: str) -> bool:
    """Whether kubectl stderr describes an immutable-field rejection."""
    lowered = stderr.lower()
    return any(marker in lowered for marker in CONFLICT_ERROR_MARKERS)


def is_not_found(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in NOT_FOUND_MARKERS)


def _retry_transient(exc: BaseException) -> bool:
    return isinstance(exc, ApplyFailure) and exc.transient


class Kubectl:
    """Thin kubectl wrapper bound to one Environment.

    Every call passes ``--kubeconfig`` (and ``--context`` when set) taken from
    the Environment, so nothing depends on the ambient kubectl context.

    Uses subprocess instead of sh because object reads and applies need
    stdout and stderr kept apart (JSON on one, error reasons on the other).

    Args:
        env: Environment holding the kubectl path, kubeconfig and context.
        timeout: Default seconds allowed for a single call.
        max_attempts: Attempts for writes that fail transiently.
    """

    def __init__(
        self,
        env: Environment,
        timeout: int = DEFAULT_KUBECTL_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_APPLY_MAX_ATTEMPTS,
    ) -> None:
        self._env = env
        self._timeout = timeout
        self._max_attempts = max_attempts

    def _base_args(self) -> list[str]:
        args = [self._env.binary(TOOL_KUBECTL), "--kubeconfig", str(self._env.kubeconfig)]
        if self._env.context:
            args += ["--context", self._env.context]
        return args

    def run(self, args: list[str], *, input: str | None = None, timeout: int | None = None) -> KubectlResult:
        """Run a kubectl command and return (ok, stdout, stderr).

        Args:
            args: kubectl arguments (e.g. ``["get", "pods", "-n", "default"]``).
            input: Text fed to stdin, for ``apply -f -``.
            timeout: Seconds to wait, or None for the client default.

        Returns:
            The command result; a timeout is reported as a failed result.
        """
        timeout = timeout or self._timeout
        cmd = [*self._base_args(), *args]
        logger.debug("kubectl %s", " ".join(args))
        try:
            result = subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return KubectlResult(False, "", f"kubectl timed out after {timeout}s", timed_out=True)
        except OSError as exc:
            return KubectlResult(False, "", str(exc))
        return KubectlResult(result.returncode == 0, result.stdout, result.stderr)

    # ------------------------------------------------------------------
    # Cluster probes
    # ------------------------------------------------------------------

    def server_version(self, timeout: int | None = None) -> str | None:
        """Return the API server's git version, or None if unreachable."""
        timeout = timeout or self._timeout
        res = self.run(["version", "-o", "json", f"--request-timeout={timeout}s"], timeout=timeout + 5)
        if not res.stdout:
            return None
        try:
            payload = json.loads(res.stdout)
        except json.JSONDecodeError:
            return None
        server = payload.get("serverVersion") or {}
        return server.get("gitVersion")

    def readyz(self, timeout: int | None = None) -> bool:
        """Whether the API server reports itself healthy."""
        timeout = timeout or self._timeout
        res = self.run(["get", "--raw", "/readyz", f"--request-timeout={timeout}s"], timeout=timeout + 5)
        return res.ok and res.stdout.strip() == "ok"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, resource: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        """Fetch one object as a dict, or None if it does not exist.

        Transient failures are retried like writes.

        Raises:
            ApplyFailure: If the read fails for any reason other than NotFound.
        """
        args = ["get", resource, name, "-o", "json", "--ignore-not-found"]
        if namespace:
            args += ["-n", namespace]

        def _attempt() -> dict[str, Any] | None:
            res = self.run(args)
            if not res.ok:
                if is_not_found(res.stderr):
                    return None
                raise ApplyFailure(
                    f"reading {resource}/{name}: {res.stderr.strip()}",
                    transient=res.timed_out or is_transient(res.stderr),
                )
            if not res.stdout.strip():
                return None
            return json.loads(res.stdout)

        return self._with_retry(_attempt)()

    def list_objects(self, resource: str, namespace: str | None = None, selector: str | None = None) -> list[dict[str, Any]]:
        """List objects of a kind, optionally filtered by label selector."""
        args = ["get", resource, "-o", "json"]
        if namespace:
            args += ["-n", namespace]
        if selector:
            args += ["-l", selector]

        def _attempt() -> list[dict[str, Any]]:
            res = self.run(args)
            if not res.ok:
                raise ApplyFailure(
                    f"listing {resource}: {res.stderr.strip()}",
                    transient=res.timed_out or is_transient(res.stderr),
                )
            return json.loads(res.stdout).get("items", [])

        return self._with_retry(_attempt)()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _check_write(self, res: KubectlResult, what: str) -> None:
        if res.ok:
            return
        stderr = res.stderr.strip()
        if is_conflict(stderr):
            raise ReconcileConflict(f"{what}: {stderr}")
        raise ApplyFailure(f"{what}: {stderr}", transient=res.timed_out or is_transient(stderr))

    def _with_retry(self, fn):
        return retry(
            retry=retry_if_exception(_retry_transient),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=APPLY_BACKOFF_MIN_SECONDS, max=APPLY_BACKOFF_MAX_SECONDS),
            reraise=True,
        )(fn)

    def apply(self, manifest: dict[str, Any]) -> None:
        """Declaratively apply one manifest (create or merge-patch).

        Raises:
            ReconcileConflict: If the server rejects an immutable-field change.
            ApplyFailure: If the apply fails after transient retries, or
                permanently.
        """
        meta = manifest.get("metadata", {})
        what = f"applying {manifest.get('kind', '?').lower()}/{meta.get('name', '?')}"
        body = json.dumps(manifest)

        def _attempt() -> None:
            self._check_write(self.run(["apply", "-f", "-"], input=body), what)

        self._with_retry(_attempt)()

    def label(self, resource: str, name: str, labels: dict[str, str], namespace: str | None = None) -> None:
        """Set labels on an object, overwriting existing values."""
        args = ["label", resource, name, *[f"{k}={v}" for k, v in labels.items()], "--overwrite"]
        if namespace:
            args += ["-n", namespace]

        def _attempt() -> None:
            self._check_write(self.run(args), f"labelling {resource}/{name}")

        self._with_retry(_attempt)()

    def patch(self, resource: str, name: str, patch: dict[str, Any], namespace: str | None = None) -> None:
        """Merge-patch an object."""
        args = ["patch", resource, name, "--type", "merge", "-p", json.dumps(patch)]
        if namespace:
            args += ["-n", namespace]

        def _attempt() -> None:
            self._check_write(self.run(args), f"patching {resource}/{name}")

        self._with_retry(_attempt)()

    def wait_ready(self, namespace: str, selector: str, timeout: int) -> bool:
        """Wait for pods matching a selector to be Ready.

        Returns:
            True if all matching pods became Ready within the timeout. False
            if they did not, or if no pod matches yet.
        """
        res = self.run(
            ["wait", "--for=condition=Ready", "pod", "-l", selector, "-n", namespace, f"--timeout={timeout}s"],
            timeout=timeout + 10,
        )
        return res.ok
