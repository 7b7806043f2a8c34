"""
Helpdesk SLA Engine - Runtime
=============================

Startup and shutdown of the engine inside a host process.

The host owns tickets and users, so it passes a factory that builds its
ticket repository and user directory for a database session. Everything
else (database, policy file watcher, notification dispatcher, periodic
sweep) is set up here.

Usage:
    async with engine_runtime(host_collaborators) as runtime:
        async with runtime.session() as (session, engine):
            await TicketLifecycleHooks(engine).on_ticket_saved(ticket, previous)
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Callable, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_sla.config import settings
from helpdesk_sla.infrastructure.database import (
    close_database, create_tables, get_session_context, init_database
)
from helpdesk_sla.services import HelpdeskSLAEngine, TicketLockRegistry, build_engine
from helpdesk_sla.shared.infrastructure.logging import get_logger, setup_logging
from helpdesk_sla.shared.infrastructure.notifications import WebhookNotificationDispatcher
from helpdesk_sla.sla.application import ISLAPolicyRepository, ITicketRepository, IUserDirectory
from helpdesk_sla.sla.infrastructure import (
    PolicyFileWatcher, SLASweepScheduler, YAMLPolicyRepository
)

logger = get_logger(__name__)

CollaboratorFactory = Callable[[AsyncSession], Tuple[ITicketRepository, IUserDirectory]]


@dataclass
class EngineRuntime:
    """Long-lived engine state shared by every request of the host."""
    collaborators: CollaboratorFactory
    dispatcher: WebhookNotificationDispatcher
    locks: TicketLockRegistry
    policy_repository: Optional[ISLAPolicyRepository] = None
    policy_watcher: Optional[PolicyFileWatcher] = None
    scheduler: Optional[SLASweepScheduler] = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[Tuple[AsyncSession, HelpdeskSLAEngine], None]:
        """One transaction with an engine wired on it."""
        async with get_session_context() as session:
            ticket_repo, user_directory = self.collaborators(session)
            engine = build_engine(
                session,
                ticket_repo,
                user_directory,
                self.dispatcher,
                policy_repository=self.policy_repository,
                locks=self.locks,
            )
            yield session, engine

    async def sweep(self) -> None:
        """Scheduled job: sweep open tickets in a fresh session."""
        try:
            async with self.session() as (_, engine):
                await engine.sweep_open_tickets()
        except Exception as e:
            logger.error(f"SLA sweep aborted: {e}", exc_info=True)


@asynccontextmanager
async def engine_runtime(
    collaborators: CollaboratorFactory,
    start_scheduler: bool = True
) -> AsyncGenerator[EngineRuntime, None]:
    """
    Engine lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load YAML policies and start watching the file (when it exists)
    4. Start the periodic sweep

    SHUTDOWN:
    1. Stop the sweep
    2. Stop the policy watcher
    3. Close the notification client
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk SLA Engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()
    await create_tables()

    policy_repository = None
    policy_watcher = None
    if settings.sla_policy_path.exists():
        logger.info("Loading SLA policies from file", extra={"path": str(settings.sla_policy_path)})
        policy_repository = YAMLPolicyRepository(settings.sla_policy_path)
        policy_watcher = PolicyFileWatcher(policy_repository)
        policy_watcher.start()

    runtime = EngineRuntime(
        collaborators=collaborators,
        dispatcher=WebhookNotificationDispatcher(),
        locks=TicketLockRegistry(),
        policy_repository=policy_repository,
        policy_watcher=policy_watcher,
    )

    if start_scheduler:
        runtime.scheduler = SLASweepScheduler(interval_seconds=settings.sla_sweep_interval_seconds)
        await runtime.scheduler.start(runtime.sweep)

    logger.info("Helpdesk SLA Engine started")

    try:
        yield runtime
    finally:
        # === SHUTDOWN ===
        logger.info("Shutting down Helpdesk SLA Engine")

        if runtime.scheduler:
            await runtime.scheduler.stop()

        if runtime.policy_watcher:
            runtime.policy_watcher.stop()

        await runtime.dispatcher.close()
        await close_database()
