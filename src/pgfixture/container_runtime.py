"""
Container lifecycle management for disposable databases

Starts a container through the docker/podman command line, waits until it
reports the status its spec asks for, and force-removes it again.
"""

import logging
import subprocess
import time
import uuid
from typing import Callable, Dict, List, Optional

from .config import PgFixtureSettings
from .container_args import build_container_args
from .exceptions import StartFailure
from .logging_config import SubprocessLogHandler
from .models import ContainerSpec, ContainerState, HealthStatus

logger = logging.getLogger(__name__)

STATUS_FORMATS = {
    HealthStatus.HEALTHY: "{{.State.Health.Status}}",
    HealthStatus.RUNNING: "{{.State.Status}}",
}


class ContainerRuntime:
    """
    Manages one-off database containers.

    Every container gets a fresh identity that doubles as its name. The
    runtime remembers the state of the identities it minted; callers only
    ever see the identity string.
    """

    def __init__(
        self,
        settings: PgFixtureSettings,
        log_handler: Optional[SubprocessLogHandler] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize container runtime with settings."""
        self.settings = settings
        self.log_handler = log_handler or SubprocessLogHandler(
            "container_runtime", settings.get_log_dir_path()
        )
        self.container_runtime = settings.container_runtime
        self._sleep = sleep
        self._clock = clock
        self._states: Dict[str, ContainerState] = {}

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        self.log_handler.log_command(cmd)
        start_time = time.time()
        process = subprocess.run(cmd, capture_output=True, text=True)
        self.log_handler.log_output(process.stdout)
        self.log_handler.log_output(process.stderr, logging.WARNING if process.returncode else logging.DEBUG)
        self.log_handler.log_completion(process.returncode, time.time() - start_time)
        return process

    def state(self, identity: str) -> Optional[ContainerState]:
        """State of a container started by this runtime, None if unknown."""
        return self._states.get(identity)

    def start(self, spec: ContainerSpec) -> str:
        """
        Start a container and block until it is ready.

        Args:
            spec: Container to start

        Returns:
            Identity of the running container

        Raises:
            StartFailure: If the runtime cannot be launched or exits non-zero
        """
        identity = str(uuid.uuid4())
        cmd = [self.container_runtime, "run", *build_container_args(spec, identity)]

        logger.info(f"Starting container {identity} from {spec.image_ref}")

        self._states[identity] = ContainerState.STARTING

        try:
            try:
                process = self._run(cmd)
            except (OSError, subprocess.SubprocessError) as e:
                raise StartFailure(
                    f"Could not launch {self.container_runtime}: {e}",
                    context={"image": spec.image_ref},
                ) from e

            if process.returncode != 0:
                raise StartFailure(
                    f"Failed to start container from {spec.image_ref} "
                    f"(exit code: {process.returncode}): {process.stderr.strip()}",
                    context={"image": spec.image_ref},
                )

            self.wait_until_ready(identity, spec.ready_status)
        except BaseException:
            # A failed run can still leave a created container under this name
            self.stop(identity)
            raise

        self._states[identity] = ContainerState.READY
        logger.info(f"Container {identity} is {spec.ready_status.value}")
        return identity

    def inspect_status(self, identity: str, target: HealthStatus) -> str:
        """
        Read the status field the readiness poll compares against.

        Raises:
            StartFailure: If the container cannot be inspected
        """
        cmd = [
            self.container_runtime,
            "inspect",
            "--format",
            STATUS_FORMATS[target],
            identity,
        ]
        try:
            process = self._run(cmd)
        except (OSError, subprocess.SubprocessError) as e:
            raise StartFailure(
                f"Could not inspect container {identity}: {e}", stage="readiness"
            ) from e

        if process.returncode != 0:
            raise StartFailure(
                f"Container {identity} disappeared: {process.stderr.strip()}",
                stage="readiness",
            )
        return process.stdout.strip()

    def wait_until_ready(
        self,
        identity: str,
        target: HealthStatus,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Poll the container until it reports the target status.

        Waits indefinitely unless a timeout is passed or configured through
        ``ready_timeout``.

        Args:
            identity: Container to poll
            target: Status to wait for
            poll_interval: Seconds between checks, settings default if unset
            timeout: Optional upper bound in seconds

        Raises:
            StartFailure: If the container vanishes or the timeout passes
        """
        poll_interval = poll_interval or self.settings.poll_interval
        timeout = timeout if timeout is not None else self.settings.ready_timeout
        deadline = self._clock() + timeout if timeout is not None else None

        while True:
            status = self.inspect_status(identity, target)
            if status == target.value:
                return

            if deadline is not None and self._clock() >= deadline:
                raise StartFailure(
                    f"Container {identity} not {target.value} after {timeout} seconds "
                    f"(last status: {status or 'unknown'})",
                    stage="readiness",
                )

            logger.debug(f"Container {identity} status is {status!r}, waiting for {target.value}")
            self._sleep(poll_interval)

    def stop(self, identity: Optional[str]) -> None:
        """
        Force-remove a container.

        Safe to call with None or with an identity that is already gone;
        removal problems are logged and never raised.
        """
        if not identity:
            return

        cmd = [self.container_runtime, "rm", "-f", identity]
        try:
            process = self._run(cmd)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Failed to remove container {identity}: {e}")
            return

        if process.returncode != 0:
            # Already gone counts as removed
            logger.warning(
                f"Removing container {identity} exited with {process.returncode}: "
                f"{process.stderr.strip()}"
            )
        else:
            logger.info(f"Removed container {identity}")

        self._states[identity] = ContainerState.STOPPED
