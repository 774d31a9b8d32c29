# SQLAlchemy models
from .base import Base
from .mastery import (
    AppSetting,
    Assessment,
    ClassStandardStatus,
    CurriculumStandard,
    GradeEntryRow,
    QuickCheckRow,
)

__all__ = [
    # Base
    "Base",
    # Reference data
    "CurriculumStandard",
    # Evidence
    "Assessment",
    "GradeEntryRow",
    "QuickCheckRow",
    # Mastery state
    "ClassStandardStatus",
    "AppSetting",
]
