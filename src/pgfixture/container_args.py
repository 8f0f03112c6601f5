"""
Argument building for the container runtime ``run`` command.

Pure string transformation: the same spec and instance name always produce
the same argument list.
"""

import shlex
from typing import List

from .models import ContainerSpec, HealthCheck


def build_healthcheck_args(healthcheck: HealthCheck) -> List[str]:
    """Health check flags, only for the fields that are set."""
    args = [f"--health-cmd={' '.join(healthcheck.test)}"]

    if healthcheck.interval:
        args.append(f"--health-interval={healthcheck.interval}")
    if healthcheck.timeout:
        args.append(f"--health-timeout={healthcheck.timeout}")
    if healthcheck.retries:
        args.append(f"--health-retries={healthcheck.retries}")
    if healthcheck.start_period:
        args.append(f"--health-start-period={healthcheck.start_period}")

    return args


def build_container_args(spec: ContainerSpec, instance_name: str) -> List[str]:
    """
    Build the arguments that follow ``<runtime> run``.

    Order: detach flag and name, port mappings, environment variables,
    health check flags, then ``image:tag``.

    Args:
        spec: Container to run
        instance_name: Name given to the container instance

    Returns:
        Argument list, one element per shell token
    """
    args = ["-d", "--name", instance_name]

    for port in spec.ports:
        args.extend(["-p", f"{port.host_port}:{port.container_port}"])

    for key, value in spec.environment.items():
        args.extend(["-e", f"{key}={value}"])

    if spec.healthcheck:
        args.extend(build_healthcheck_args(spec.healthcheck))

    args.append(spec.image_ref)
    return args


def format_container_args(args: List[str]) -> str:
    """Render an argument list as a single shell-quoted string."""
    return shlex.join(args)
