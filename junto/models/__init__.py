from junto.models.base import Base
from junto.models.newsletter import Newsletter
from junto.models.scheduling_run import SchedulingRun
from junto.models.source import SourcePost, UserSource
from junto.models.user import User

__all__ = [
    "Base",
    "User",
    "UserSource",
    "SourcePost",
    "Newsletter",
    "SchedulingRun",
]
