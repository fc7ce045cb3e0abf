"""
prpilot orchestrator — FastAPI application.

Run with: uvicorn orchestrator.app:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from agent_runner.runner import AgentRunner
from completion_gateway.gateway import create_gateway
from git_integration.providers.github_provider import GitHubProvider
from orchestrator.api import routes
from orchestrator.api.routes import router, set_dependencies
from orchestrator.services.config import configure_logging, get_settings
from orchestrator.services.pipeline import ReviewPipeline, ReviewStore
from vm_provisioner.provisioner import create_provisioner

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()

    # Initialize components
    code_host = GitHubProvider(token=settings.github_token, base_url=settings.github_api_url)
    gateway = create_gateway(settings)
    provisioner = create_provisioner(settings)
    agent_runner = AgentRunner(
        gateway=gateway,
        provider=settings.agent_provider,
        model=settings.agent_model,
        max_steps=settings.agent_max_steps,
    )
    store = ReviewStore(settings.store_path)
    pipeline = ReviewPipeline(
        code_host=code_host,
        gateway=gateway,
        provisioner=provisioner,
        agent_runner=agent_runner,
        store=store,
        settings=settings,
    )

    # Wire up dependencies
    set_dependencies(pipeline, store)

    # ── Required API key checks ───────────────────────────────────
    for w in settings.validate_required_keys():
        await logger.awarning("Configuration warning", message=w)

    # Reviews interrupted by a restart pick up where they left off
    resume_task = asyncio.create_task(pipeline.resume_incomplete())

    await logger.ainfo(
        "prpilot started",
        env=settings.env,
        vm_provider=settings.vm_provider,
        generate_model=f"{settings.generate_provider}/{settings.generate_model}",
        agent_model=f"{settings.agent_provider}/{settings.agent_model}",
    )

    yield

    # Shutdown: cancelled reviews still stop their VMs on the way out
    running = [resume_task, *routes._background]
    for task in running:
        task.cancel()
    await asyncio.gather(*running, return_exceptions=True)

    await gateway.close()
    await code_host.close()
    await provisioner.backend.close()
    await logger.ainfo("prpilot shut down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="prpilot",
        description="prpilot — automated end-to-end UI testing of pull requests",
        version="0.1.0",
        lifespan=lifespan,
    )

    # API routes
    app.include_router(router)

    return app


# For running with uvicorn directly
app = create_app()
