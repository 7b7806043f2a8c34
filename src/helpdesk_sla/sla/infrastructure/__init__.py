"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA compliance tracking:
- Models: SQLAlchemy ORM models
- Repositories: Database and YAML-backed data access
- External: Policy file watcher and periodic sweep scheduler
"""

from helpdesk_sla.sla.infrastructure.models import SLAPolicyModel, SLAViolationModel
from helpdesk_sla.sla.infrastructure.repositories import (
    SQLAlchemySLAPolicyRepository,
    SQLAlchemyViolationRepository,
    YAMLPolicyRepository,
)
from helpdesk_sla.sla.infrastructure.external import (
    PolicyFileWatcher,
    SLASweepScheduler,
)

__all__ = [
    "SLAPolicyModel",
    "SLAViolationModel",
    "SQLAlchemySLAPolicyRepository",
    "SQLAlchemyViolationRepository",
    "YAMLPolicyRepository",
    "PolicyFileWatcher",
    "SLASweepScheduler",
]
