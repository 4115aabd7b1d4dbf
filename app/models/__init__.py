# Import all models so Base.metadata is populated before create_all.
from app.models.user import User  # noqa: F401
from app.models.session import Session  # noqa: F401
from app.models.persona import AnonymousPersona  # noqa: F401
from app.models.audit import AuditLogEvent  # noqa: F401
