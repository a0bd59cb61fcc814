"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA monitoring:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and unit of work
- External: External service integrations (Slack, config watcher, scheduler)
"""

from inquiry_sla.sla.infrastructure.models import (
    InquiryModel,
    UserModel,
    SlaConfigModel,
    SlaViolationModel,
    EscalationLogModel,
)
from inquiry_sla.sla.infrastructure.repositories import (
    SQLAlchemyWorkItemRepository,
    SQLAlchemySlaConfigRepository,
    SQLAlchemyUserRepository,
    SQLAlchemyViolationRepository,
    SQLAlchemyUnitOfWork,
    YAMLSlaConfigRepository,
    sqlalchemy_uow_factory,
)
from inquiry_sla.sla.infrastructure.external import (
    CircuitBreaker,
    SLAConfigManager,
    SLAScheduler,
    SlackNotifier,
)

__all__ = [
    "InquiryModel",
    "UserModel",
    "SlaConfigModel",
    "SlaViolationModel",
    "EscalationLogModel",
    "SQLAlchemyWorkItemRepository",
    "SQLAlchemySlaConfigRepository",
    "SQLAlchemyUserRepository",
    "SQLAlchemyViolationRepository",
    "SQLAlchemyUnitOfWork",
    "YAMLSlaConfigRepository",
    "sqlalchemy_uow_factory",
    "CircuitBreaker",
    "SLAConfigManager",
    "SLAScheduler",
    "SlackNotifier",
]
