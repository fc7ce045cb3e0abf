"""
VM Provisioner — one disposable test machine per review.

    create ──▶ poll until ready (fixed interval × max attempts) ──▶ VMHandle
       │                  │
       ▼                  ▼
  ProvisionError   ProvisionTimeoutError (instance deleted first)

The handle owns the instance for the rest of the review. ``stop()`` is safe to
call any number of times; only the first call deletes the instance.
"""

from __future__ import annotations

import asyncio
import shlex
from typing import Optional

import structlog

from orchestrator.models.vm import VM, VMState
from orchestrator.services.config import Settings
from orchestrator.services.errors import (
    ProvisionError,
    ProvisionTimeoutError,
    UnsupportedProviderError,
)
from vm_provisioner.backends.base import CommandResult, Instance, VMBackendDriver

logger = structlog.get_logger()

ENV_PROFILE_PATH = "/etc/profile.d/prpilot-env.sh"


class VMHandle:
    """A ready instance: run commands, write files, tear it down."""

    def __init__(
        self,
        vm: VM,
        instance: Instance,
        backend: VMBackendDriver,
        command_timeout: int = 300,
    ):
        self.vm = vm
        self.instance = instance
        self.backend = backend
        self.command_timeout = command_timeout
        self._env: dict[str, str] = {}
        self._stopped = False

    @property
    def id(self) -> str:
        return self.vm.instance_id or self.vm.id

    @property
    def stream_url(self) -> Optional[str]:
        return self.vm.stream_url

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def bash(self, command: str, timeout: Optional[int] = None) -> CommandResult:
        if self._stopped:
            raise RuntimeError(f"VM {self.id} has been stopped")
        return await self.backend.exec(self.instance, command, timeout=timeout or self.command_timeout)

    async def set_env(self, variables: dict[str, str]) -> None:
        """Persist ``variables`` to the login profile every later command sources.

        Values never appear in command strings. Raises ``OSError`` if the
        profile cannot be written.
        """
        if self._stopped:
            raise RuntimeError(f"VM {self.id} has been stopped")
        self._env.update(variables)
        if not self._env:
            return
        profile = "".join(f"export {k}={shlex.quote(v)}\n" for k, v in self._env.items())
        await self.backend.write_file(self.instance, ENV_PROFILE_PATH, profile)
        await logger.ainfo("VM environment updated", vm_id=self.id, names=sorted(self._env))

    async def write_file(self, path: str, content: str) -> None:
        if self._stopped:
            raise RuntimeError(f"VM {self.id} has been stopped")
        await self.backend.write_file(self.instance, path, content)

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self.vm.state = VMState.DESTROYING
        try:
            await self.backend.delete_instance(self.instance.id)
            self.vm.mark_destroyed()
            await logger.ainfo("VM destroyed", vm_id=self.vm.id, instance_id=self.instance.id)
        except Exception as e:
            self.vm.state = VMState.ERROR
            self.vm.error_message = str(e)
            await logger.aerror(
                "VM delete failed", vm_id=self.vm.id, instance_id=self.instance.id, error=str(e)
            )


class VMProvisioner:
    """Creates a fresh instance per review and waits until it accepts commands."""

    def __init__(
        self,
        backend: VMBackendDriver,
        poll_interval: float = 5.0,
        max_attempts: int = 60,
        command_timeout: int = 300,
    ):
        self.backend = backend
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.command_timeout = command_timeout

    async def provision(self, review_id: str) -> VMHandle:
        vm = VM(provider=self.backend.provider, tags=["prpilot", f"review-{review_id[:8]}"])
        await self._create(vm, review_id)

        # Nobody else can delete the instance until the handle is returned
        try:
            instance = await self._wait_until_ready(vm)
            vm.mark_ready(instance.address, self.backend.stream_url(instance))
            await logger.ainfo(
                "VM ready",
                vm_id=vm.id,
                instance_id=vm.instance_id,
                review_id=review_id,
                stream_url=vm.stream_url,
            )
        except BaseException:
            await self._delete_quietly(vm)
            raise

        return VMHandle(vm, instance, self.backend, command_timeout=self.command_timeout)

    async def _create(self, vm: VM, review_id: str) -> None:
        name = f"prpilot-{review_id[:8]}-{vm.id[3:11]}"
        try:
            vm.instance_id = await self.backend.create_instance(name, vm.tags)
        except Exception as e:
            vm.state = VMState.ERROR
            vm.error_message = str(e)
            await logger.aerror("VM create failed", review_id=review_id, error=str(e))
            raise ProvisionError(f"Failed to create VM: {e}") from e
        vm.state = VMState.PROVISIONING
        await logger.ainfo("VM created", vm_id=vm.id, instance_id=vm.instance_id, review_id=review_id)

    async def _wait_until_ready(self, vm: VM) -> Instance:
        for attempt in range(1, self.max_attempts + 1):
            instance = await self.backend.get_instance(vm.instance_id)
            if await self.backend.is_ready(instance):
                return instance
            await logger.adebug(
                "VM not ready yet",
                vm_id=vm.id,
                status=instance.status,
                attempt=attempt,
                max_attempts=self.max_attempts,
            )
            if attempt < self.max_attempts:
                await asyncio.sleep(self.poll_interval)

        vm.state = VMState.ERROR
        raise ProvisionTimeoutError(vm.instance_id, self.max_attempts, self.poll_interval)

    async def _delete_quietly(self, vm: VM) -> None:
        try:
            await self.backend.delete_instance(vm.instance_id)
            vm.mark_destroyed()
        except Exception as e:
            await logger.awarning(
                "Cleanup of unready VM failed", vm_id=vm.id, instance_id=vm.instance_id, error=str(e)
            )


def create_backend(settings: Settings) -> VMBackendDriver:
    """Build the backend selected by ``settings.vm_provider``."""
    if settings.vm_provider == "digitalocean":
        from vm_provisioner.backends.digitalocean import DigitalOceanBackend

        return DigitalOceanBackend(
            token=settings.digitalocean_token,
            region=settings.digitalocean_region,
            size=settings.digitalocean_size,
            image=settings.digitalocean_image,
            ssh_key_ids=[k.strip() for k in settings.digitalocean_ssh_key_ids.split(",") if k.strip()],
            ssh_private_key_path=settings.ssh_private_key_path,
            ssh_user=settings.ssh_user,
        )
    if settings.vm_provider == "docker":
        from vm_provisioner.backends.docker_backend import DockerBackend

        return DockerBackend(image=settings.docker_image, network=settings.docker_network)
    raise UnsupportedProviderError(settings.vm_provider, kind="vm")


def create_provisioner(settings: Settings) -> VMProvisioner:
    return VMProvisioner(
        backend=create_backend(settings),
        poll_interval=settings.vm_poll_interval_seconds,
        max_attempts=settings.vm_poll_max_attempts,
        command_timeout=settings.vm_command_timeout_seconds,
    )
