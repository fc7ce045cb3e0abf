"""Central configuration for prpilot."""

from __future__ import annotations

import logging
import os
from functools import lru_cache

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env file before reading any env vars
load_dotenv()


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Core
    env: str = os.getenv("PRPILOT_ENV", "development")
    log_level: str = os.getenv("PRPILOT_LOG_LEVEL", "INFO")
    host: str = os.getenv("PRPILOT_HOST", "0.0.0.0")
    port: int = int(os.getenv("PRPILOT_PORT", "8000"))
    store_path: str = os.getenv("PRPILOT_STORE_PATH", "/tmp/prpilot-reviews.json")

    # GitHub
    github_token: str = os.getenv("GITHUB_TOKEN", "")
    github_api_url: str = os.getenv("GITHUB_API_URL", "https://api.github.com")
    github_webhook_secret: str = os.getenv("GITHUB_WEBHOOK_SECRET", "")

    # Completion gateway (Cloudflare AI Gateway in front of every provider)
    ai_gateway_account_id: str = os.getenv("AI_GATEWAY_ACCOUNT_ID", "")
    ai_gateway_id: str = os.getenv("AI_GATEWAY_ID", "prpilot")
    groq_api_key: str = os.getenv("GROQ_API_KEY", "")
    perplexity_api_key: str = os.getenv("PERPLEXITY_API_KEY", "")
    google_ai_studio_api_key: str = os.getenv("GOOGLE_AI_STUDIO_API_KEY", "")
    cloudflare_api_token: str = os.getenv("CLOUDFLARE_API_TOKEN", "")
    completion_timeout_seconds: float = float(os.getenv("COMPLETION_TIMEOUT_SECONDS", "120"))
    completion_max_tokens: int = int(os.getenv("COMPLETION_MAX_TOKENS", "4096"))

    # Models per phase
    generate_provider: str = os.getenv("GENERATE_PROVIDER", "google-ai-studio")
    generate_model: str = os.getenv("GENERATE_MODEL", "gemini-2.5-flash")
    agent_provider: str = os.getenv("AGENT_PROVIDER", "google-ai-studio")
    agent_model: str = os.getenv("AGENT_MODEL", "gemini-2.5-pro")
    agent_max_steps: int = int(os.getenv("AGENT_MAX_STEPS", "40"))

    # VM provider selection
    vm_provider: str = os.getenv("VM_PROVIDER", "digitalocean")  # "digitalocean" or "docker"
    vm_poll_interval_seconds: float = float(os.getenv("VM_POLL_INTERVAL_SECONDS", "5"))
    vm_poll_max_attempts: int = int(os.getenv("VM_POLL_MAX_ATTEMPTS", "60"))
    vm_command_timeout_seconds: int = int(os.getenv("VM_COMMAND_TIMEOUT_SECONDS", "300"))

    # DigitalOcean
    digitalocean_token: str = os.getenv("DIGITALOCEAN_TOKEN", "")
    digitalocean_region: str = os.getenv("DIGITALOCEAN_REGION", "nyc1")
    digitalocean_size: str = os.getenv("DIGITALOCEAN_SIZE", "s-2vcpu-2gb")
    digitalocean_image: str = os.getenv("DIGITALOCEAN_IMAGE", "ubuntu-22-04-x64")
    digitalocean_ssh_key_ids: str = os.getenv("DIGITALOCEAN_SSH_KEY_IDS", "")
    ssh_private_key_path: str = os.getenv("SSH_PRIVATE_KEY_PATH", "~/.ssh/id_ed25519")
    ssh_user: str = os.getenv("SSH_USER", "root")

    # Docker fallback
    docker_image: str = os.getenv("DOCKER_IMAGE", "prpilot/desktop:latest")
    docker_network: str = os.getenv("DOCKER_NETWORK", "bridge")

    # Review pipeline
    setup_config_path: str = os.getenv("SETUP_CONFIG_PATH", ".prpilot.yaml")
    vm_repo_path: str = os.getenv("VM_REPO_PATH", "/home/prpilot/repo")
    tree_max_depth: int = int(os.getenv("TREE_MAX_DEPTH", "3"))
    max_important_files: int = int(os.getenv("MAX_IMPORTANT_FILES", "10"))
    file_content_limit: int = int(os.getenv("FILE_CONTENT_LIMIT", "20000"))

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    def validate_required_keys(self) -> list[str]:
        """Check that required API keys are configured for the selected providers.

        Returns a list of warning messages for missing configuration.
        """
        warnings: list[str] = []

        if not self.github_token:
            warnings.append("GITHUB_TOKEN is not set — GitHub operations will fail")
        if self.is_production and not self.github_webhook_secret:
            warnings.append("GITHUB_WEBHOOK_SECRET is not set — webhooks are unauthenticated")
        if not self.ai_gateway_account_id:
            warnings.append("AI_GATEWAY_ACCOUNT_ID is not set — completions will fail")

        provider_keys = {
            "groq": self.groq_api_key,
            "perplexity-ai": self.perplexity_api_key,
            "google-ai-studio": self.google_ai_studio_api_key,
            "workers-ai": self.cloudflare_api_token,
        }
        for provider in {self.generate_provider, self.agent_provider}:
            if provider in provider_keys and not provider_keys[provider]:
                warnings.append(f"No API key configured for completion provider {provider!r}")

        if self.vm_provider == "digitalocean" and not self.digitalocean_token:
            warnings.append("VM_PROVIDER=digitalocean requires DIGITALOCEAN_TOKEN")

        return warnings


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Apply the configured log level to structlog's bound loggers."""
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )
