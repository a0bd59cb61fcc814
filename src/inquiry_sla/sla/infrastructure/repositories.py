"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from sqlalchemy import and_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inquiry_sla.config import Priority, Role, Severity, ViolationType, WorkItemStatus
from inquiry_sla.core import ConfigurationException, RepositoryException
from inquiry_sla.shared.infrastructure.logging import get_logger
from inquiry_sla.sla.application.services import (
    ISlaConfigRepository,
    IUnitOfWork,
    IUserRepository,
    IViolationRepository,
    IWorkItemRepository,
)
from inquiry_sla.sla.domain import EscalationRecord, SlaConfig, SlaViolation, User, WorkItem, as_utc
from inquiry_sla.sla.infrastructure.models import (
    EscalationLogModel,
    InquiryModel,
    SlaConfigModel,
    SlaViolationModel,
    UserModel,
)

logger = get_logger(__name__)

T = TypeVar("T")


def _optional_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC
    return as_utc(value) if value is not None else None


# ========== Model <-> Domain mapping ==========

def _to_work_item(model: InquiryModel) -> WorkItem:
    return WorkItem(
        id=model.id,
        application_id=model.application_id,
        priority=Priority(model.priority),
        status=WorkItemStatus(model.status),
        created_at=as_utc(model.created_at),
        updated_at=as_utc(model.updated_at),
        assigned_user_id=model.assigned_user_id,
        first_response_at=_optional_utc(model.first_response_at),
        title=model.title or "",
    )


def _to_user(model: UserModel) -> User:
    return User(
        id=model.id,
        email=model.email,
        name=model.name or "",
        role=Role(model.role),
        application_id=model.application_id,
        is_active=model.is_active,
        created_at=as_utc(model.created_at),
    )


def _to_sla_config(model: SlaConfigModel) -> SlaConfig:
    return SlaConfig(
        id=model.id,
        application_id=model.application_id,
        priority_level=Priority(model.priority_level),
        response_time_hours=model.response_time_hours,
        resolution_time_hours=model.resolution_time_hours,
        escalation_time_hours=model.escalation_time_hours,
        business_hours_only=model.business_hours_only,
        business_start_hour=model.business_start_hour,
        business_end_hour=model.business_end_hour,
        business_days=model.business_days,
        is_active=model.is_active,
        timezone=model.timezone or "UTC",
    )


def _to_escalation_record(model: EscalationLogModel) -> EscalationRecord:
    return EscalationRecord(
        id=model.id,
        violation_id=model.violation_id,
        work_item_id=model.work_item_id,
        from_user_id=model.from_user_id,
        to_user_id=model.to_user_id,
        escalated_by=model.escalated_by,
        reason=model.reason,
        notes=model.notes,
        previous_priority=Priority(model.previous_priority),
        new_priority=Priority(model.new_priority),
        escalated_at=as_utc(model.escalated_at),
    )


def _to_violation(
    model: SlaViolationModel,
    escalation: Optional[EscalationLogModel] = None
) -> SlaViolation:
    return SlaViolation(
        id=model.id,
        work_item_id=model.work_item_id,
        sla_config_id=model.sla_config_id,
        violation_type=ViolationType(model.violation_type),
        expected_time=as_utc(model.expected_time),
        detected_at=as_utc(model.detected_at),
        delay_hours=model.delay_hours,
        severity=Severity(model.severity),
        is_escalated=model.is_escalated,
        escalated_to_user_id=model.escalated_to_user_id,
        escalated_at=_optional_utc(model.escalated_at),
        is_resolved=model.is_resolved,
        resolved_at=_optional_utc(model.resolved_at),
        escalation=_to_escalation_record(escalation) if escalation else None,
    )


def _map_valid(
    models: Iterable,
    mapper: Callable[..., T],
    resource: str
) -> Tuple[List[T], List[str]]:
    """Map rows one at a time, setting aside rows that don't form a valid entity."""
    mapped: List[T] = []
    rejected: List[str] = []
    for model in models:
        try:
            mapped.append(mapper(model))
        except (ConfigurationException, ValueError) as e:
            logger.error(
                f"Skipping invalid {resource} row",
                extra={"resource": resource, "resource_id": model.id, "error": str(e)}
            )
            rejected.append(model.id)
    return mapped, rejected


# ========== Repositories ==========

class SQLAlchemyWorkItemRepository(IWorkItemRepository):
    """
    SQLAlchemy implementation of the inquiry repository.

    Reads inquiries and applies the escalation reassignment.
    """

    def __init__(self, session: AsyncSession):
        self._session = session
        self.rejected_ids: List[str] = []

    async def get_by_id(self, work_item_id: str) -> Optional[WorkItem]:
        # Bulk updates bypass the identity map
        model = await self._session.get(InquiryModel, work_item_id, populate_existing=True)
        return _to_work_item(model) if model else None

    async def get_for_update(self, work_item_id: str) -> Optional[WorkItem]:
        """Re-read an inquiry, row-locked until the transaction ends."""
        stmt = (
            select(InquiryModel)
            .where(InquiryModel.id == work_item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_work_item(model) if model else None

    async def list_open(
        self,
        application_id: str,
        priority: Optional[Priority] = None
    ) -> List[WorkItem]:
        """
        List open inquiries of an application, oldest first.

        Rows with an unknown priority or status are skipped; their ids are
        left in ``rejected_ids`` until the next call.
        """
        conditions = [
            InquiryModel.application_id == application_id,
            InquiryModel.status == WorkItemStatus.OPEN.value,
        ]
        if priority is not None:
            conditions.append(InquiryModel.priority == Priority(priority).value)

        stmt = select(InquiryModel).where(and_(*conditions)).order_by(InquiryModel.created_at.asc())
        result = await self._session.execute(stmt)
        work_items, self.rejected_ids = _map_valid(result.scalars().all(), _to_work_item, "inquiry")
        return work_items

    async def list_created_between(
        self,
        application_id: str,
        start: datetime,
        end: datetime
    ) -> List[WorkItem]:
        stmt = select(InquiryModel).where(
            and_(
                InquiryModel.application_id == application_id,
                InquiryModel.created_at >= as_utc(start),
                InquiryModel.created_at <= as_utc(end),
            )
        )
        result = await self._session.execute(stmt)
        return [_to_work_item(m) for m in result.scalars().all()]

    async def update_assignment(
        self,
        work_item_id: str,
        assigned_user_id: str,
        priority: Priority
    ) -> None:
        stmt = (
            update(InquiryModel)
            .where(InquiryModel.id == work_item_id)
            .values(
                assigned_user_id=assigned_user_id,
                priority=Priority(priority).value,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            raise RepositoryException(f"Inquiry {work_item_id} not found")


class SQLAlchemySlaConfigRepository(ISlaConfigRepository):
    """SLA configurations stored in the 'sla_configs' table."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self.rejected_ids: List[str] = []

    async def list_active(self) -> List[SlaConfig]:
        """Active configurations; invalid rows are skipped and noted in ``rejected_ids``."""
        stmt = (
            select(SlaConfigModel)
            .where(SlaConfigModel.is_active.is_(True))
            .order_by(SlaConfigModel.application_id, SlaConfigModel.priority_level)
        )
        result = await self._session.execute(stmt)
        configs, self.rejected_ids = _map_valid(result.scalars().all(), _to_sla_config, "sla_config")
        return configs

    async def get_by_id(self, config_id: str) -> Optional[SlaConfig]:
        model = await self._session.get(SlaConfigModel, config_id)
        return _to_sla_config(model) if model else None


class YAMLSlaConfigRepository(ISlaConfigRepository):
    """
    SLA configurations defined in ``sla_config.yaml``.

    Reads from the hot-reloading config manager, so each sweep sees the
    latest valid file contents.
    """

    def __init__(self, config_manager):
        self._manager = config_manager
        # The manager validates the whole file on load
        self.rejected_ids: List[str] = []

    async def list_active(self) -> List[SlaConfig]:
        return [c for c in self._manager.configs if c.is_active]

    async def get_by_id(self, config_id: str) -> Optional[SlaConfig]:
        for config in self._manager.configs:
            if config.id == config_id:
                return config
        return None


class SQLAlchemyUserRepository(IUserRepository):
    """Read-only user lookups for escalation routing."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, user_id: str) -> Optional[User]:
        model = await self._session.get(UserModel, user_id)
        return _to_user(model) if model else None

    async def list_by_role(
        self,
        role: Role,
        application_id: Optional[str] = None
    ) -> List[User]:
        """Active users with ``role``, most senior first."""
        stmt = select(UserModel).where(
            and_(
                UserModel.role == Role(role).value,
                UserModel.is_active.is_(True),
            )
        )
        if application_id is not None:
            stmt = stmt.where(UserModel.application_id == application_id)

        stmt = stmt.order_by(UserModel.created_at.asc(), UserModel.id.asc())
        result = await self._session.execute(stmt)
        return [_to_user(m) for m in result.scalars().all()]


class SQLAlchemyViolationRepository(IViolationRepository):
    """
    SQLAlchemy implementation of the violation repository.

    Handles persistence of SlaViolation entities and their escalation logs.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _escalations_for(self, violation_ids: List[str]) -> Dict[str, EscalationLogModel]:
        if not violation_ids:
            return {}
        stmt = select(EscalationLogModel).where(EscalationLogModel.violation_id.in_(violation_ids))
        result = await self._session.execute(stmt)
        return {m.violation_id: m for m in result.scalars().all()}

    async def _with_escalations(self, models: List[SlaViolationModel]) -> List[SlaViolation]:
        escalations = await self._escalations_for([m.id for m in models if m.is_escalated])
        return [_to_violation(m, escalations.get(m.id)) for m in models]

    async def get_by_id(self, violation_id: str) -> Optional[SlaViolation]:
        stmt = (
            select(SlaViolationModel)
            .where(SlaViolationModel.id == violation_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            return None
        violations = await self._with_escalations([model])
        return violations[0]

    async def exists(self, work_item_id: str, violation_type: ViolationType) -> bool:
        stmt = select(SlaViolationModel.id).where(
            and_(
                SlaViolationModel.work_item_id == work_item_id,
                SlaViolationModel.violation_type == ViolationType(violation_type).value,
            )
        )
        result = await self._session.execute(stmt)
        return result.first() is not None

    async def create(self, violation: SlaViolation) -> Optional[SlaViolation]:
        """
        Insert a violation, relying on the (work_item_id, violation_type)
        unique constraint to drop duplicates.
        """
        values = {
            "work_item_id": violation.work_item_id,
            "sla_config_id": violation.sla_config_id,
            "violation_type": ViolationType(violation.violation_type).value,
            "expected_time": as_utc(violation.expected_time),
            "detected_at": as_utc(violation.detected_at),
            "delay_hours": violation.delay_hours,
            "severity": Severity(violation.severity).value,
            "is_escalated": False,
            "is_resolved": False,
        }
        if violation.id:
            values["id"] = violation.id

        dialect = self._session.bind.dialect.name
        if dialect in ("postgresql", "sqlite"):
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = (
                insert(SlaViolationModel)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["work_item_id", "violation_type"])
                .returning(SlaViolationModel.id)
            )
            result = await self._session.execute(stmt)
            new_id = result.scalar_one_or_none()
            if new_id is None:
                return None
        else:
            model = SlaViolationModel(**values)
            try:
                async with self._session.begin_nested():
                    self._session.add(model)
            except IntegrityError:
                return None
            new_id = model.id

        violation.id = new_id
        violation.is_escalated = False
        violation.is_resolved = False
        return violation

    async def mark_escalated(
        self,
        violation_id: str,
        target_user_id: str,
        escalated_at: datetime
    ) -> bool:
        """Conditional update guarded on ``is_escalated = false``."""
        stmt = (
            update(SlaViolationModel)
            .where(
                and_(
                    SlaViolationModel.id == violation_id,
                    SlaViolationModel.is_escalated.is_(False),
                )
            )
            .values(
                is_escalated=True,
                escalated_to_user_id=target_user_id,
                escalated_at=as_utc(escalated_at),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def add_escalation_record(self, record: EscalationRecord) -> EscalationRecord:
        model = EscalationLogModel(
            violation_id=record.violation_id,
            work_item_id=record.work_item_id,
            from_user_id=record.from_user_id,
            to_user_id=record.to_user_id,
            escalated_by=record.escalated_by,
            reason=record.reason,
            notes=record.notes,
            previous_priority=Priority(record.previous_priority).value,
            new_priority=Priority(record.new_priority).value,
            escalated_at=as_utc(record.escalated_at),
        )
        self._session.add(model)
        await self._session.flush()

        record.id = model.id
        return record

    async def list_pending_escalation(
        self,
        violation_types: Iterable[ViolationType]
    ) -> List[SlaViolation]:
        types = [ViolationType(t).value for t in violation_types]
        if not types:
            return []
        stmt = (
            select(SlaViolationModel)
            .join(InquiryModel, InquiryModel.id == SlaViolationModel.work_item_id)
            .where(
                and_(
                    SlaViolationModel.is_escalated.is_(False),
                    SlaViolationModel.is_resolved.is_(False),
                    SlaViolationModel.violation_type.in_(types),
                    InquiryModel.status == WorkItemStatus.OPEN.value,
                )
            )
            .order_by(SlaViolationModel.detected_at.asc())
        )
        result = await self._session.execute(stmt)
        return [_to_violation(m) for m in result.scalars().all()]

    async def list_escalated_for_work_item(self, work_item_id: str) -> List[SlaViolation]:
        stmt = (
            select(SlaViolationModel)
            .where(
                and_(
                    SlaViolationModel.work_item_id == work_item_id,
                    SlaViolationModel.is_escalated.is_(True),
                )
            )
            .order_by(SlaViolationModel.escalated_at.desc())
        )
        result = await self._session.execute(stmt)
        return await self._with_escalations(list(result.scalars().all()))

    async def list_escalated_between(self, start: datetime, end: datetime) -> List[SlaViolation]:
        stmt = (
            select(SlaViolationModel)
            .where(
                and_(
                    SlaViolationModel.is_escalated.is_(True),
                    SlaViolationModel.escalated_at >= as_utc(start),
                    SlaViolationModel.escalated_at <= as_utc(end),
                )
            )
            .order_by(SlaViolationModel.escalated_at.desc())
        )
        result = await self._session.execute(stmt)
        return [_to_violation(m) for m in result.scalars().all()]

    async def list_for_work_items(self, work_item_ids: List[str]) -> List[SlaViolation]:
        if not work_item_ids:
            return []
        stmt = select(SlaViolationModel).where(SlaViolationModel.work_item_id.in_(work_item_ids))
        result = await self._session.execute(stmt)
        return [_to_violation(m) for m in result.scalars().all()]

    async def list(
        self,
        filters: dict,
        limit: int = 100,
        offset: int = 0
    ) -> List[SlaViolation]:
        """List violations with filters."""
        stmt = select(SlaViolationModel)

        # Apply filters
        conditions = []
        if "work_item_id" in filters:
            conditions.append(SlaViolationModel.work_item_id == filters["work_item_id"])

        if "violation_type" in filters:
            conditions.append(SlaViolationModel.violation_type == filters["violation_type"])

        if "severity" in filters:
            conditions.append(SlaViolationModel.severity == filters["severity"])

        if "is_escalated" in filters:
            conditions.append(SlaViolationModel.is_escalated.is_(bool(filters["is_escalated"])))

        if "is_resolved" in filters:
            conditions.append(SlaViolationModel.is_resolved.is_(bool(filters["is_resolved"])))

        if conditions:
            stmt = stmt.where(and_(*conditions))

        # Most recently detected first
        stmt = stmt.order_by(SlaViolationModel.detected_at.desc())
        stmt = stmt.limit(limit).offset(offset)

        result = await self._session.execute(stmt)
        return await self._with_escalations(list(result.scalars().all()))

    async def resolve_for_work_item(self, work_item_id: str, resolved_at: datetime) -> int:
        stmt = (
            update(SlaViolationModel)
            .where(
                and_(
                    SlaViolationModel.work_item_id == work_item_id,
                    SlaViolationModel.is_resolved.is_(False),
                )
            )
            .values(is_resolved=True, resolved_at=as_utc(resolved_at))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount


# ========== Unit of Work ==========

class SQLAlchemyUnitOfWork(IUnitOfWork):
    """
    Groups the repositories over one AsyncSession.

    ``config_repository`` replaces the database-backed SLA configurations,
    e.g. with ``YAMLSlaConfigRepository``.
    """

    def __init__(
        self,
        session: AsyncSession,
        config_repository: Optional[ISlaConfigRepository] = None
    ):
        self._session = session
        self.work_items = SQLAlchemyWorkItemRepository(session)
        self.sla_configs = config_repository or SQLAlchemySlaConfigRepository(session)
        self.users = SQLAlchemyUserRepository(session)
        self.violations = SQLAlchemyViolationRepository(session)

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()


def sqlalchemy_uow_factory(
    session_maker: async_sessionmaker[AsyncSession],
    config_repository: Optional[ISlaConfigRepository] = None
):
    """Build a unit-of-work factory for long-lived components such as SLAMonitor."""

    @asynccontextmanager
    async def factory() -> AsyncGenerator[SQLAlchemyUnitOfWork, None]:
        async with session_maker() as session:
            try:
                yield SQLAlchemyUnitOfWork(session, config_repository)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return factory
