from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from procure_ledger.core.auth import AuthContext
from procure_ledger.core.config import Settings, get_settings
from procure_ledger.services.audit import AuditSink
from procure_ledger.services.tasks import TaskService


@dataclass
class ServiceContext:
    """Everything a workflow operation needs, passed explicitly.

    ``db`` carries the primary transaction; ``audit`` and ``tasks`` are the
    best-effort collaborators and never share it.
    """

    db: AsyncSession
    auth: AuthContext
    audit: AuditSink
    tasks: TaskService
    settings: Settings = field(default_factory=get_settings)
