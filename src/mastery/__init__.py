"""
Standards Mastery Classification & Reconciliation Engine.

Components:
- ScoreAggregator: assessment evidence -> per-standard sum/count
- blend_quick_checks: folds informal marks in at reduced weight
- classify: percentage -> mastery band via per-class thresholds
- plan_reconciliation: merges suggestions with persisted (possibly manual) rows
- ManualStatusCycle: five-state ring a teacher advances directly
- InterventionWorkflow: remediation status for below/approaching standards
- MasteryEngine: orchestration for one (class, grade) selection
"""
from src.mastery.aggregator import ScoreAggregator, percent_of
from src.mastery.blender import (
    QUICK_CHECK_SCORES,
    QuickCheckWeighting,
    blend_quick_checks,
    blended_percentages,
)
from src.mastery.cache import EvidenceCache
from src.mastery.classifier import (
    DEFAULT_THRESHOLDS,
    classify,
    migrate_legacy_config,
    parse_threshold_config,
    resolve_thresholds,
)
from src.mastery.cycle import CYCLE_ORDER, ManualStatusCycle, next_status
from src.mastery.engine import MasteryEngine, ReconcileReport, SelectionToken
from src.mastery.exceptions import (
    InterventionNotEditableError,
    InvalidThresholdConfigError,
    MasteryError,
    StorageError,
    UnknownStandardError,
)
from src.mastery.intervention import InterventionWorkflow, is_intervention_editable
from src.mastery.interfaces import MasteryStores
from src.mastery.models import (
    AssessmentRecord,
    AssessmentSection,
    GradeEntry,
    InterventionStatus,
    MasteryStatus,
    QuickCheck,
    QuickCheckMark,
    StandardMasteryView,
    StatusRecord,
    ThresholdConfig,
)
from src.mastery.reconciliation import ReconcileAction, plan_reconciliation, reconcile_status
from src.mastery.summary import DomainSummary, summarize_by_domain

__all__ = [
    # Engine
    "MasteryEngine",
    "MasteryStores",
    "ReconcileReport",
    "SelectionToken",
    "EvidenceCache",
    # Pipeline stages
    "ScoreAggregator",
    "percent_of",
    "QUICK_CHECK_SCORES",
    "QuickCheckWeighting",
    "blend_quick_checks",
    "blended_percentages",
    "DEFAULT_THRESHOLDS",
    "classify",
    "migrate_legacy_config",
    "parse_threshold_config",
    "resolve_thresholds",
    "ReconcileAction",
    "plan_reconciliation",
    "reconcile_status",
    "CYCLE_ORDER",
    "ManualStatusCycle",
    "next_status",
    "InterventionWorkflow",
    "is_intervention_editable",
    "DomainSummary",
    "summarize_by_domain",
    # Models
    "AssessmentRecord",
    "AssessmentSection",
    "GradeEntry",
    "InterventionStatus",
    "MasteryStatus",
    "QuickCheck",
    "QuickCheckMark",
    "StandardMasteryView",
    "StatusRecord",
    "ThresholdConfig",
    # Errors
    "MasteryError",
    "StorageError",
    "InvalidThresholdConfigError",
    "InterventionNotEditableError",
    "UnknownStandardError",
]
