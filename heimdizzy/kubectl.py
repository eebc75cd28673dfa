"""Library for driving the cluster CLI.

Waits that take a `timeout` pass it to kubectl and bound the subprocess itself
slightly longer, so kubectl reports the timeout rather than being killed.
"""

from dataclasses import dataclass
import logging
from pathlib import Path

from . import command
from .exceptions import CommandException, DeploymentError, PipelineError

__all__ = ["Kubectl", "PodStatus", "KUBECTL_BIN"]

_LOGGER = logging.getLogger(__name__)

KUBECTL_BIN = "kubectl"
WAIT_GRACE = 30.0


@dataclass
class PodStatus:
    """Pods matching a selector."""

    count: int
    status: str
    """The `kubectl get pods` table, one line per pod."""


class Kubectl:
    """Wrapper around the `kubectl` CLI."""

    def __init__(
        self,
        runner: command.Runner = command.run,
        kubectl_bin: str | None = None,
    ) -> None:
        """Initialize Kubectl."""
        self._runner = runner
        self._bin = kubectl_bin or KUBECTL_BIN

    async def _run(
        self,
        args: list[str],
        exc: type[PipelineError] = DeploymentError,
        timeout: float | None = command.DEFAULT_TIMEOUT,
        retcodes: list[int] | None = None,
    ) -> str:
        cmd = command.Command(
            [self._bin, *args], exc=exc, timeout=timeout, retcodes=retcodes
        )
        return await self._runner(cmd, None)

    async def available(self) -> bool:
        """Return True if the cluster CLI can be executed."""
        try:
            await self._run(["version", "--client"], exc=CommandException)
        except CommandException as err:
            _LOGGER.debug("kubectl is not available: %s", err)
            return False
        return True

    async def apply_file(self, path: Path) -> None:
        """Apply a manifest file."""
        await self._run(["apply", "-f", str(path)])

    async def apply_kustomize(self, path: Path) -> None:
        """Apply a kustomization directory."""
        await self._run(["apply", "-k", str(path)])

    async def set_image(
        self, namespace: str, deployment: str, container: str, image: str
    ) -> None:
        """Point a deployment container at a new image."""
        await self._run(
            [
                "set",
                "image",
                f"deployment/{deployment}",
                f"{container}={image}",
                "-n",
                namespace,
            ]
        )

    async def rollout_restart(self, namespace: str, deployment: str) -> None:
        """Trigger a rolling restart of a deployment."""
        await self._run(
            ["rollout", "restart", f"deployment/{deployment}", "-n", namespace]
        )

    async def rollout_status(
        self, namespace: str, deployment: str, timeout: int = 300
    ) -> None:
        """Wait for a deployment rollout to complete."""
        await self._run(
            [
                "rollout",
                "status",
                f"deployment/{deployment}",
                "-n",
                namespace,
                f"--timeout={timeout}s",
            ],
            timeout=timeout + WAIT_GRACE,
        )

    async def rollout_undo(self, namespace: str, deployment: str) -> None:
        """Revert a deployment to its previous revision."""
        await self._run(
            ["rollout", "undo", f"deployment/{deployment}", "-n", namespace]
        )

    async def get_pods(self, namespace: str, selector: str) -> PodStatus:
        """Return the pods matching a label selector."""
        out = await self._run(
            ["get", "pods", "-n", namespace, "-l", selector, "--no-headers"]
        )
        lines = [line for line in out.splitlines() if line.strip()]
        return PodStatus(count=len(lines), status="\n".join(lines))

    async def delete_pods(self, namespace: str, selector: str) -> None:
        """Delete the pods matching a label selector."""
        await self._run(["delete", "pods", "-n", namespace, "-l", selector])

    async def first_pod_name(self, namespace: str, selector: str) -> str:
        """Name of the first pod matching the selector, or empty if none."""
        out = await self._run(
            [
                "get",
                "pod",
                "-l",
                selector,
                "-n",
                namespace,
                "-o",
                "jsonpath={.items[0].metadata.name}",
            ]
        )
        return out.strip()

    async def exec(self, namespace: str, pod: str, args: list[str]) -> str:
        """Run a command inside a pod and return its output."""
        return await self._run(["exec", pod, "-n", namespace, "--", *args])

    async def get_node_port(self, namespace: str, service: str) -> str:
        """Return the first node port of a service as reported by the cluster."""
        out = await self._run(
            [
                "get",
                "svc",
                "-n",
                namespace,
                service,
                "-o",
                "jsonpath={.spec.ports[0].nodePort}",
            ],
            exc=CommandException,
        )
        return out.strip()

    async def wait_job(self, namespace: str, job: str, timeout: int = 300) -> None:
        """Wait for a job to complete."""
        await self._run(
            [
                "wait",
                "--for=condition=complete",
                f"job/{job}",
                "-n",
                namespace,
                f"--timeout={timeout}s",
            ],
            timeout=timeout + WAIT_GRACE,
        )

    async def job_condition(self, namespace: str, job: str) -> str:
        """Type of the job's first status condition e.g. `Complete`."""
        out = await self._run(
            [
                "get",
                "job",
                job,
                "-n",
                namespace,
                "-o",
                "jsonpath={.status.conditions[0].type}",
            ]
        )
        return out.strip()

    async def job_logs(self, namespace: str, job: str) -> str:
        """Logs of the job's pod."""
        return await self._run(["logs", f"job/{job}", "-n", namespace])

    async def delete_job(self, namespace: str, job: str) -> None:
        """Delete a job if it exists."""
        await self._run(
            ["delete", "job", job, "-n", namespace, "--ignore-not-found=true"]
        )
