"""Docker backend for local development; a desktop container stands in for the VM."""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from orchestrator.models.vm import VMProvider

from .base import STREAM_PORT, CommandResult, Instance, VMBackendDriver

logger = structlog.get_logger()


class DockerBackend(VMBackendDriver):
    """Runs the desktop image as a container; commands go through ``exec_run``."""

    provider = VMProvider.DOCKER

    def __init__(self, image: str, network: str = "bridge"):
        self.image = image
        self.network = network
        self._docker = None

    def _get_docker(self):
        if self._docker is None:
            import docker

            self._docker = docker.from_env()
        return self._docker

    async def create_instance(self, name: str, tags: list[str]) -> str:
        docker_client = self._get_docker()

        def _create():
            return docker_client.containers.run(
                image=self.image,
                name=name,
                detach=True,
                network=self.network,
                ports={f"{STREAM_PORT}/tcp": None},
                labels={"prpilot.role": "review-vm", "prpilot.tags": ",".join(tags)},
                shm_size="1g",
                remove=False,
            )

        container = await asyncio.to_thread(_create)
        await logger.ainfo("Docker container created", name=name, container_id=container.short_id)
        return container.id

    async def get_instance(self, instance_id: str) -> Instance:
        docker_client = self._get_docker()

        def _get():
            container = docker_client.containers.get(instance_id)
            container.reload()
            return container

        container = await asyncio.to_thread(_get)
        network_settings = container.attrs.get("NetworkSettings", {})
        return Instance(
            id=container.id,
            status=container.status,
            address=network_settings.get("IPAddress") or None,
            raw=container.attrs,
        )

    async def is_ready(self, instance: Instance) -> bool:
        return instance.status == "running"

    async def delete_instance(self, instance_id: str) -> None:
        docker_client = self._get_docker()

        def _destroy():
            container = docker_client.containers.get(instance_id)
            container.stop(timeout=5)
            container.remove(force=True)

        await asyncio.to_thread(_destroy)

    def stream_url(self, instance: Instance) -> Optional[str]:
        ports = instance.raw.get("NetworkSettings", {}).get("Ports") or {}
        bindings = ports.get(f"{STREAM_PORT}/tcp") or []
        if not bindings:
            return None
        return f"http://localhost:{bindings[0]['HostPort']}/vnc.html?autoconnect=true"

    async def exec(self, instance: Instance, command: str, timeout: int = 120) -> CommandResult:
        docker_client = self._get_docker()

        def _exec():
            container = docker_client.containers.get(instance.id)
            return container.exec_run(
                cmd=["bash", "-lc", command],
                demux=True,
                environment={"TERM": "xterm", "DISPLAY": ":1"},
            )

        try:
            result = await asyncio.wait_for(asyncio.to_thread(_exec), timeout=timeout)
        except asyncio.TimeoutError:
            await logger.awarning("Command timed out in VM", instance_id=instance.id[:12], timeout=timeout)
            return CommandResult(124, "", f"Command timed out after {timeout}s")

        stdout = result.output[0].decode(errors="replace") if result.output[0] else ""
        stderr = result.output[1].decode(errors="replace") if result.output[1] else ""
        return CommandResult(result.exit_code, stdout, stderr)
