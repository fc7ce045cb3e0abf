"""DigitalOcean backend: droplets booted with a desktop, browser and noVNC stream."""

from __future__ import annotations

import asyncio
import os
from typing import Optional

import httpx
import structlog

from orchestrator.models.vm import VMProvider
from orchestrator.services.errors import UpstreamError

from .base import STREAM_PORT, CommandResult, Instance, VMBackendDriver

logger = structlog.get_logger()

READY_MARKER = "/var/lib/prpilot/ready"

# The command arrives on stdin so it never shows up in ssh's argv
REMOTE_SHELL = """bash -lc 'eval "$(cat)"'"""

# cloud-init script: desktop on :1, VNC → noVNC on 6080, browser + automation tools.
BOOT_SCRIPT = f"""#!/bin/bash
set -e
export DEBIAN_FRONTEND=noninteractive
apt-get update
apt-get install -y curl wget git build-essential xvfb x11vnc xfce4 xdotool scrot \\
    chromium-browser novnc websockify
curl -fsSL https://deb.nodesource.com/setup_20.x | bash -
apt-get install -y nodejs

useradd -m -s /bin/bash prpilot || true
echo "prpilot ALL=(ALL) NOPASSWD:ALL" > /etc/sudoers.d/prpilot

cat > /etc/systemd/system/xvfb.service << EOF
[Unit]
Description=X Virtual Frame Buffer
After=network.target
[Service]
ExecStart=/usr/bin/Xvfb :1 -screen 0 1280x800x24
User=prpilot
[Install]
WantedBy=multi-user.target
EOF

cat > /etc/systemd/system/xfce.service << EOF
[Unit]
Description=XFCE session
After=xvfb.service
[Service]
Environment=DISPLAY=:1
ExecStart=/usr/bin/startxfce4
User=prpilot
[Install]
WantedBy=multi-user.target
EOF

cat > /etc/systemd/system/x11vnc.service << EOF
[Unit]
Description=X11 VNC server
After=xvfb.service
[Service]
ExecStart=/usr/bin/x11vnc -forever -shared -nopw -display :1
User=prpilot
[Install]
WantedBy=multi-user.target
EOF

cat > /etc/systemd/system/novnc.service << EOF
[Unit]
Description=noVNC
After=x11vnc.service
[Service]
ExecStart=/usr/bin/websockify --web /usr/share/novnc {STREAM_PORT} localhost:5900
User=prpilot
[Install]
WantedBy=multi-user.target
EOF

systemctl daemon-reload
for svc in xvfb xfce x11vnc novnc; do
  systemctl enable --now $svc.service
done

mkdir -p $(dirname {READY_MARKER})
touch {READY_MARKER}
"""


class DigitalOceanBackend(VMBackendDriver):
    """Droplets via the DigitalOcean v2 API; commands over the system ssh client."""

    provider = VMProvider.DIGITALOCEAN

    def __init__(
        self,
        token: str,
        region: str = "nyc1",
        size: str = "s-2vcpu-2gb",
        image: str = "ubuntu-22-04-x64",
        ssh_key_ids: Optional[list[str]] = None,
        ssh_private_key_path: str = "~/.ssh/id_ed25519",
        ssh_user: str = "root",
        base_url: str = "https://api.digitalocean.com/v2",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.token = token
        self.region = region
        self.size = size
        self.image = image
        self.ssh_key_ids = ssh_key_ids or []
        self.ssh_private_key_path = os.path.expanduser(ssh_private_key_path)
        self.ssh_user = ssh_user
        self.base_url = base_url
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json",
                },
                timeout=30.0,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _check(resp: httpx.Response) -> None:
        if resp.status_code >= 300:
            raise UpstreamError("digitalocean", resp.status_code, resp.text)

    async def create_instance(self, name: str, tags: list[str]) -> str:
        resp = await self.client.post(
            "/droplets",
            json={
                "name": name,
                "region": self.region,
                "size": self.size,
                "image": self.image,
                "ssh_keys": self.ssh_key_ids,
                "backups": False,
                "ipv6": False,
                "monitoring": True,
                "tags": tags,
                "user_data": BOOT_SCRIPT,
            },
        )
        self._check(resp)
        droplet = resp.json()["droplet"]
        await logger.ainfo("Droplet created", droplet_id=droplet["id"], name=name)
        return str(droplet["id"])

    async def get_instance(self, instance_id: str) -> Instance:
        resp = await self.client.get(f"/droplets/{instance_id}")
        self._check(resp)
        droplet = resp.json()["droplet"]
        return Instance(
            id=str(droplet["id"]),
            status=droplet.get("status", ""),
            address=self._public_ipv4(droplet),
            raw=droplet,
        )

    @staticmethod
    def _public_ipv4(droplet: dict) -> Optional[str]:
        for network in (droplet.get("networks") or {}).get("v4", []):
            if network.get("type") == "public":
                return network.get("ip_address")
        return None

    async def is_ready(self, instance: Instance) -> bool:
        if instance.status != "active" or not instance.address:
            return False
        # Droplet is up; wait for the boot script to finish too
        result = await self.exec(instance, f"test -f {READY_MARKER}", timeout=15)
        return result.ok

    async def delete_instance(self, instance_id: str) -> None:
        resp = await self.client.delete(f"/droplets/{instance_id}")
        if resp.status_code == 404:
            return
        self._check(resp)

    def stream_url(self, instance: Instance) -> Optional[str]:
        if not instance.address:
            return None
        return f"http://{instance.address}:{STREAM_PORT}/vnc.html?autoconnect=true"

    async def exec(self, instance: Instance, command: str, timeout: int = 120) -> CommandResult:
        if not instance.address:
            return CommandResult(1, "", "Instance has no public address")

        proc = await asyncio.create_subprocess_exec(
            "ssh",
            "-i",
            self.ssh_private_key_path,
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            "UserKnownHostsFile=/dev/null",
            "-o",
            "ConnectTimeout=10",
            "-o",
            "LogLevel=ERROR",
            f"{self.ssh_user}@{instance.address}",
            REMOTE_SHELL,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(command.encode()), timeout=timeout)
        except asyncio.TimeoutError:
            await logger.awarning("Command timed out in VM", instance_id=instance.id, timeout=timeout)
            return CommandResult(124, "", f"Command timed out after {timeout}s")
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

        return CommandResult(
            proc.returncode if proc.returncode is not None else 1,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )
