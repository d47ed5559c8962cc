from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import uuid
from typing import TYPE_CHECKING

from ..policy import SandboxPolicy
from .errors import LaunchFailure
from .types import SandboxProcess, Workspace

if TYPE_CHECKING:
    from ..languages import LanguageProfile

logger = logging.getLogger(__name__)

SANDBOX_WORKDIR = "/usr/src/app"
MANAGED_LABEL_VALUE = "true"
MANAGED_LABELS = {
    "classroom_runner.managed": MANAGED_LABEL_VALUE,
    "classroom_runner.project": "classroom-code-runner",
}


def container_name() -> str:
    return f"classroom-runner-{uuid.uuid4().hex[:12]}"


class DockerLauncher:
    """Run each submission in a throwaway, resource-capped Docker container.

    Example:
        ```python
        launcher = DockerLauncher(SandboxPolicy(memory_limit_mb=100, cpus=0.5))
        ```
    """

    def __init__(
        self,
        policy: SandboxPolicy | None = None,
        *,
        docker_context: str | None = None,
        docker_host: str | None = None,
    ) -> None:
        """Initialize container limits and the Docker connection target.

        Example:
            ```python
            launcher = DockerLauncher(docker_host="ssh://ubuntu@server")
            ```
        """
        self._policy = policy or SandboxPolicy()
        self._docker_context = docker_context
        self._docker_host = docker_host
        self._validate_connection_options()

    def build_command(self, workspace: Workspace, profile: LanguageProfile, name: str) -> list[str]:
        """Build the `docker run` argument vector for one sandbox.

        Example:
            ```python
            cmd = launcher.build_command(ws, profile, "classroom-runner-ab12")
            ```
        """
        policy = self._policy
        cmd = self._docker_prefix()
        cmd.extend(["run", "--rm", "--name", name])
        for key, value in MANAGED_LABELS.items():
            cmd.extend(["--label", f"{key}={value}"])
        cmd.extend(
            [
                "-v",
                f"{workspace.directory}:{SANDBOX_WORKDIR}",
                "-w",
                SANDBOX_WORKDIR,
                "--memory",
                f"{policy.memory_limit_mb}m",
                "--cpus",
                f"{policy.cpus:g}",
            ]
        )
        if policy.network_disabled:
            cmd.extend(["--network", "none"])
        if policy.pids_limit:
            cmd.extend(["--pids-limit", str(policy.pids_limit)])
        cmd.extend(
            [
                profile.runtime_image,
                "sh",
                "-c",
                profile.build_run_command(workspace.filename),
            ]
        )
        return cmd

    async def launch(self, workspace: Workspace, profile: LanguageProfile) -> SandboxProcess:
        """Spawn the container and return as soon as the client process exists.

        Example:
            ```python
            sandbox = await launcher.launch(ws, profile)
            ```
        """
        name = container_name()
        cmd = self.build_command(workspace, profile, name)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._docker_env(),
            )
        except OSError as exc:
            raise LaunchFailure(f"Failed to start docker: {exc}") from exc
        logger.debug("Started sandbox %s (%s) pid=%s", name, profile.id, process.pid)
        return SandboxProcess(process=process, container_name=name)

    async def terminate(self, sandbox: SandboxProcess) -> None:
        """Kill the docker client and the container it started.

        Killing only the client would leave the container running, so the
        named container is killed as well.

        Example:
            ```python
            await launcher.terminate(sandbox)
            ```
        """
        sandbox.killed = True
        if sandbox.running:
            try:
                sandbox.process.kill()
            except ProcessLookupError:
                pass
        if sandbox.container_name is None:
            return
        try:
            killer = await asyncio.create_subprocess_exec(
                *self._docker_prefix(),
                "kill",
                sandbox.container_name,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                env=self._docker_env(),
            )
        except OSError as exc:
            logger.warning("Could not kill container %s: %s", sandbox.container_name, exc)
            return
        if await killer.wait() != 0:
            # Already gone: `--rm` removed it once the client exited.
            logger.debug("docker kill %s returned non-zero", sandbox.container_name)

    def cleanup_stale(self) -> int:
        """Force-remove every managed container and return the count.

        Example:
            ```python
            removed = launcher.cleanup_stale()
            ```
        """
        out = self._run_docker(
            ["ps", "-a", "-q", "--filter", f"label=classroom_runner.managed={MANAGED_LABEL_VALUE}"]
        )
        if out.returncode != 0:
            raise RuntimeError(f"Failed to list containers: {out.stderr.strip()}")
        removed = 0
        for container_id in out.stdout.split():
            if self._run_docker(["rm", "-f", container_id]).returncode == 0:
                removed += 1
        return removed

    def _run_docker(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        """Run a Docker CLI command against the configured target.

        Example:
            ```python
            completed = launcher._run_docker(["ps"])
            ```
        """
        try:
            return subprocess.run(
                [*self._docker_prefix(), *args],
                capture_output=True,
                text=True,
                check=False,
                env=self._docker_env(),
            )
        except OSError as exc:
            raise RuntimeError(f"Docker CLI could not be run: {exc}") from exc

    def _docker_prefix(self) -> list[str]:
        cmd = ["docker"]
        if self._docker_context:
            cmd.extend(["--context", self._docker_context])
        return cmd

    def _docker_env(self) -> dict[str, str]:
        """Build environment variables for Docker CLI targeting.

        Example:
            ```python
            env = launcher._docker_env()
            ```
        """
        env = dict(os.environ)
        if self._docker_host:
            env["DOCKER_HOST"] = self._docker_host
        return env

    def _validate_connection_options(self) -> None:
        if self._docker_context and self._docker_host:
            raise ValueError("Use either docker_context or docker_host, not both")
