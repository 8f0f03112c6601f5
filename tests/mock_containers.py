"""
Mock container operations for testing

Provides a container runtime that simulates starting and removing
containers without requiring an actual container runtime.
"""

import uuid
from typing import Dict, List, Optional

from pgfixture.container_runtime import ContainerRuntime
from pgfixture.exceptions import StartFailure
from pgfixture.models import ContainerSpec, ContainerState


class MockContainerRuntime(ContainerRuntime):
    """Mock container runtime for testing."""

    def __init__(self, settings, log_handler=None):
        super().__init__(settings, log_handler)
        self.running_containers: Dict[str, ContainerSpec] = {}
        self.started: List[str] = []
        self.stop_calls: List[Optional[str]] = []
        self.fail_start = False

    def set_start_failure(self) -> None:
        """Force the next start to fail."""
        self.fail_start = True

    def start(self, spec: ContainerSpec) -> str:
        """Mock start implementation."""
        if self.fail_start:
            raise StartFailure(f"Mock startup failure for {spec.image_ref}")

        identity = f"mock-{uuid.uuid4()}"
        self.running_containers[identity] = spec
        self.started.append(identity)
        self._states[identity] = ContainerState.READY
        return identity

    def stop(self, identity: Optional[str]) -> None:
        """Mock stop implementation, tolerant of unknown identities."""
        self.stop_calls.append(identity)
        if not identity:
            return
        self.running_containers.pop(identity, None)
        self._states[identity] = ContainerState.STOPPED

    def is_running(self, identity: Optional[str]) -> bool:
        return identity in self.running_containers
