"""Abstract base for VM backends (DigitalOcean, Docker, etc.)."""

from __future__ import annotations

import base64
import posixpath
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from orchestrator.models.vm import VMProvider

# noVNC listens here on every image we boot
STREAM_PORT = 6080


@dataclass
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class Instance:
    """Provider-side view of a compute instance."""

    id: str
    status: str
    address: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


class VMBackendDriver(ABC):
    """Create, inspect, reach and delete instances on one cloud provider."""

    provider: VMProvider

    @abstractmethod
    async def create_instance(self, name: str, tags: list[str]) -> str:
        """Submit a create request and return the provider's instance id."""
        ...

    @abstractmethod
    async def get_instance(self, instance_id: str) -> Instance:
        ...

    @abstractmethod
    async def is_ready(self, instance: Instance) -> bool:
        """Whether the instance is running and reachable for commands."""
        ...

    @abstractmethod
    async def delete_instance(self, instance_id: str) -> None:
        ...

    @abstractmethod
    def stream_url(self, instance: Instance) -> Optional[str]:
        """URL of the interactive desktop stream."""
        ...

    @abstractmethod
    async def exec(self, instance: Instance, command: str, timeout: int = 120) -> CommandResult:
        """Execute a shell command on the instance."""
        ...

    async def write_file(self, instance: Instance, path: str, content: str) -> None:
        """Write ``content`` to ``path`` on the instance, creating parent directories."""
        encoded = base64.b64encode(content.encode()).decode()
        directory = posixpath.dirname(path) or "."
        command = (
            f"mkdir -p {shlex.quote(directory)} && "
            f"printf %s {shlex.quote(encoded)} | base64 -d > {shlex.quote(path)}"
        )
        result = await self.exec(instance, command, timeout=30)
        if not result.ok:
            raise OSError(f"Failed to write {path}: {result.stderr.strip()}")

    async def close(self) -> None:
        """Release client resources held by the backend."""
