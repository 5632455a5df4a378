from app.models.audit import AuditEvent  # noqa: F401
from app.models.person import Person  # noqa: F401
from app.models.compliance import (  # noqa: F401
    Action,
    ActionPriority,
    ActionSourceType,
    ActionStatus,
    Attachment,
    ChangeSummary,
    DefencePack,
    Document,
    IssueStatus,
    ModuleInstance,
    RecommendationRule,
)
from app.models import guards  # noqa: F401,E402
