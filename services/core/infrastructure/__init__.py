# Infrastructure Layer
from .uow import (
    UnitOfWork,
    DecisionRepository,
    AssumptionRepository,
    ConflictRepository,
    AuditLogger,
    create_uow_provider
)
