"""Task/notification service: actionable and informational tasks tied to an entity."""
import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from procure_ledger.db.base import utcnow
from procure_ledger.models.task import TaskNotification, TaskType

logger = logging.getLogger(__name__)


@dataclass
class NewTask:
    task_type: TaskType
    category: str
    user_id: uuid.UUID
    title: str
    message: str
    entity_type: str
    entity_id: uuid.UUID
    assigned_by: uuid.UUID | None = None
    assigned_by_name: str | None = None
    link_url: str | None = None
    priority: str = "MEDIUM"
    auto_completable: bool = False


class TaskService(Protocol):
    async def create_task(self, task: NewTask) -> uuid.UUID:
        ...

    async def find_task_by_entity(
        self, entity_type: str, entity_id: uuid.UUID, category: str
    ) -> TaskNotification | None:
        ...

    async def complete_task(self, task_id: uuid.UUID, user_id: uuid.UUID, auto_completed: bool = False) -> None:
        ...


class SqlTaskService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_task(self, task: NewTask) -> uuid.UUID:
        row = TaskNotification(
            task_type=task.task_type.value,
            category=task.category,
            user_id=task.user_id,
            assigned_by=task.assigned_by,
            assigned_by_name=task.assigned_by_name,
            title=task.title,
            message=task.message,
            entity_type=task.entity_type,
            entity_id=task.entity_id,
            link_url=task.link_url,
            priority=task.priority,
            auto_completable=task.auto_completable,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.flush()
            task_id = row.id
            await session.commit()
        logger.info("Task %s created for user %s (%s %s)", task.category, task.user_id, task.entity_type, task.entity_id)
        return task_id

    async def find_task_by_entity(
        self, entity_type: str, entity_id: uuid.UUID, category: str
    ) -> TaskNotification | None:
        """Latest still-pending task for the entity in this category."""
        stmt = (
            select(TaskNotification)
            .where(
                TaskNotification.entity_type == entity_type,
                TaskNotification.entity_id == entity_id,
                TaskNotification.category == category,
                TaskNotification.status == "pending",
            )
            .order_by(TaskNotification.created_at.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalars().first()

    async def complete_task(self, task_id: uuid.UUID, user_id: uuid.UUID, auto_completed: bool = False) -> None:
        async with self._session_factory() as session:
            row = await session.get(TaskNotification, task_id)
            if row is None or row.status == "completed":
                return
            row.status = "completed"
            row.completed_at = utcnow()
            row.completed_by = user_id
            row.auto_completed = auto_completed
            await session.commit()


# ─── Best-effort wrappers ───

async def create_task_safely(tasks: TaskService, task: NewTask) -> uuid.UUID | None:
    """Create a task; a failure is logged and swallowed."""
    try:
        return await tasks.create_task(task)
    except Exception:
        logger.error("Failed to create %s task for %s %s", task.category, task.entity_type, task.entity_id, exc_info=True)
        return None


async def complete_entity_task_safely(
    tasks: TaskService, entity_type: str, entity_id: uuid.UUID, category: str, user_id: uuid.UUID
) -> bool:
    """Auto-complete the pending task for an entity, if there is one."""
    try:
        task = await tasks.find_task_by_entity(entity_type, entity_id, category)
        if task is None:
            return False
        await tasks.complete_task(task.id, user_id, auto_completed=True)
        logger.info("Auto-completed %s task %s", category, task.id)
        return True
    except Exception:
        logger.warning("Failed to auto-complete %s task for %s %s", category, entity_type, entity_id, exc_info=True)
        return False
