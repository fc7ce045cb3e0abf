"""A disposable test machine owned by a single review."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class VMState(str, Enum):
    CREATING = "creating"
    PROVISIONING = "provisioning"
    READY = "ready"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"
    ERROR = "error"


class VMProvider(str, Enum):
    DIGITALOCEAN = "digitalocean"
    DOCKER = "docker"


class VM(BaseModel):
    """A single provisioned instance."""

    id: str = Field(default_factory=lambda: f"vm-{uuid.uuid4().hex[:12]}")
    provider: VMProvider = VMProvider.DIGITALOCEAN
    state: VMState = VMState.CREATING
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ready_at: Optional[datetime] = None
    destroyed_at: Optional[datetime] = None
    instance_id: Optional[str] = None  # Droplet ID or container ID
    ip_address: Optional[str] = None
    stream_url: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None

    def mark_ready(self, ip_address: Optional[str], stream_url: Optional[str]) -> None:
        self.state = VMState.READY
        self.ip_address = ip_address
        self.stream_url = stream_url
        self.ready_at = datetime.now(timezone.utc)

    def mark_destroyed(self) -> None:
        self.state = VMState.DESTROYED
        self.destroyed_at = datetime.now(timezone.utc)
