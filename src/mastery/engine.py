"""
Standards Mastery Engine.

Orchestrates one (class, grade) selection:

    evidence -> ScoreAggregator + quick-check blend -> classify
             -> reconcile against persisted rows -> StandardMasteryView[]

Selection handling:
- select() issues a SelectionToken; re-selecting the same key keeps it.
- Every async step captures the token and discards its result if the
  selection changed while it was in flight.
- Reconciliation runs once per token (run-once flag), re-armed by
  evidence or threshold writes made through the engine.
- Across engines, the stored reconciliation marker (a fingerprint of the
  reconciled suggestion set) keeps a plain refresh from reconciling again,
  so a teacher's manual status survives until evidence or thresholds change.

Failure handling:
- Computed percentages are only replaced after a successful recompute.
- Failed reconciliation writes are kept and can be retried on their own.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from config import Settings, get_settings
from src.curriculum.standards import Standard
from src.mastery.aggregator import ScoreAggregator
from src.mastery.blender import QuickCheckWeighting, blend_quick_checks, blended_percentages
from src.mastery.cache import EvidenceCache
from src.mastery.classifier import (
    DEFAULT_THRESHOLDS,
    classify,
    parse_threshold_config,
    resolve_thresholds,
    validate_thresholds,
)
from src.mastery.cycle import ManualStatusCycle
from src.mastery.exceptions import StorageError, UnknownStandardError
from src.mastery.intervention import (
    InterventionWorkflow,
    is_intervention_editable,
    surfaced_intervention,
)
from src.mastery.interfaces import MasteryStores
from src.mastery.models import (
    EvidenceBundle,
    InterventionStatus,
    MasteryStatus,
    QuickCheck,
    QuickCheckMark,
    StandardMasteryView,
    StatusRecord,
    ThresholdConfig,
)
from src.mastery.reconciliation import (
    ReconcileAction,
    ReconcileDecision,
    build_writes,
    plan_reconciliation,
    suggestion_fingerprint,
)


@dataclass(frozen=True)
class SelectionToken:
    """Identifies one selection; a new generation means a new selection."""

    class_name: str
    grade: int
    semester: str | None
    generation: int


@dataclass
class ReconcileReport:
    """What a reconciliation pass decided and wrote."""

    selection: SelectionToken
    decisions: list[ReconcileDecision] = field(default_factory=list)
    written: list[StatusRecord] = field(default_factory=list)
    skipped: bool = False
    discarded: bool = False

    @property
    def write_count(self) -> int:
        return len(self.written)

    @property
    def sticky_codes(self) -> list[str]:
        return [d.standard_code for d in self.decisions if d.action is ReconcileAction.STICKY]


class MasteryEngine:
    """
    Blend, classify and reconcile mastery for the current selection.

    Example:
        engine = MasteryEngine(stores)
        engine.select("Lily", 3)
        views = await engine.refresh()
    """

    def __init__(
        self,
        stores: MasteryStores,
        cache: EvidenceCache[EvidenceBundle] | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.stores = stores
        self.cache = cache if cache is not None else EvidenceCache(settings.evidence_cache_enabled)
        self.quick_check_weight = settings.quick_check_weight
        self.quick_check_weighting = QuickCheckWeighting(settings.quick_check_weighting)
        self.default_thresholds = self._default_from_settings(settings)

        self._aggregator = ScoreAggregator()
        self._cycle = ManualStatusCycle(stores.statuses)
        self._intervention = InterventionWorkflow(stores.statuses)

        self._generation = 0
        self._selection: SelectionToken | None = None
        self._reset_state()

    @staticmethod
    def _default_from_settings(settings: Settings) -> ThresholdConfig:
        cfg = ThresholdConfig(
            above=settings.default_above,
            on=settings.default_on,
            approaching=settings.default_approaching,
        )
        if not cfg.is_valid:
            logger.warning(f"Configured default thresholds {cfg.to_dict()} are invalid; using 86/71/61")
            return DEFAULT_THRESHOLDS
        return cfg

    def _reset_state(self) -> None:
        self._standards: list[Standard] = []
        self._percentages: dict[str, float] = {}
        self._thresholds: ThresholdConfig = self.default_thresholds
        self._statuses: dict[str, StatusRecord] = {}
        self._statuses_loaded = False
        self._reconciled: SelectionToken | None = None
        self._pending_writes: list[StatusRecord] = []
        self._pending_fingerprint: str | None = None

    # ========================================
    # Selection
    # ========================================

    @property
    def selection(self) -> SelectionToken | None:
        return self._selection

    def select(self, class_name: str, grade: int, semester: str | None = None) -> SelectionToken:
        """
        Make (class, grade, semester) the current selection.

        Re-selecting the current key returns the existing token, so a view
        refresh does not re-trigger reconciliation.
        """
        current = self._selection
        if current and (current.class_name, current.grade, current.semester) == (
            class_name,
            grade,
            semester,
        ):
            return current

        self._generation += 1
        self._selection = SelectionToken(class_name, grade, semester, self._generation)
        self._reset_state()
        logger.debug(f"Selected {class_name}/G{grade} (semester={semester}, gen={self._generation})")
        return self._selection

    def _require_selection(self) -> SelectionToken:
        if self._selection is None:
            raise RuntimeError("No class/grade selected; call select() first")
        return self._selection

    def _is_current(self, token: SelectionToken) -> bool:
        if token == self._selection:
            return True
        logger.info(
            f"Discarding stale result for {token.class_name}/G{token.grade} (gen={token.generation})"
        )
        return False

    # ========================================
    # Computed suggestions
    # ========================================

    @property
    def percentages(self) -> dict[str, float]:
        """Last successfully computed blended percentages."""
        return dict(self._percentages)

    @property
    def thresholds(self) -> ThresholdConfig:
        return self._thresholds

    @property
    def suggestions(self) -> dict[str, MasteryStatus]:
        """Classified suggestion for every standard with evidence."""
        return {code: classify(pct, self._thresholds) for code, pct in self._percentages.items()}

    @property
    def statuses(self) -> dict[str, StatusRecord]:
        return dict(self._statuses)

    @property
    def pending_writes(self) -> list[StatusRecord]:
        """Reconciliation writes that failed and await retry_failed_writes()."""
        return list(self._pending_writes)

    async def _load_evidence(self, token: SelectionToken) -> EvidenceBundle:
        async def loader() -> EvidenceBundle:
            # Stores may share one session, so reads stay sequential
            assessments, entries = await self.stores.assessments.load_assessments(
                token.class_name, token.grade, token.semester
            )
            marks = await self.stores.quick_checks.list_marks(token.class_name, token.grade)
            return EvidenceBundle(assessments=assessments, grade_entries=entries, quick_checks=marks)

        return await self.cache.get_or_load((token.class_name, token.grade, token.semester), loader)

    async def recompute(self) -> dict[str, float] | None:
        """
        Recompute blended percentages for the current selection.

        Returns:
            standard_code -> percentage, or None if the selection changed meanwhile

        Raises:
            StorageError: Evidence or threshold read failed (previous results kept)
        """
        token = self._require_selection()
        logger.info(f"Recomputing mastery for {token.class_name}/G{token.grade}")

        evidence = await self._load_evidence(token)
        raw_configs = await self.stores.thresholds.read_all()
        standards = await self.stores.standards.list_standards(token.grade)
        if not self._is_current(token):
            return None

        accumulators = self._aggregator.aggregate(evidence.assessments, evidence.grade_entries)
        blended = blend_quick_checks(
            accumulators,
            evidence.quick_checks,
            weight=self.quick_check_weight,
            weighting=self.quick_check_weighting,
        )

        self._standards = standards
        self._thresholds = resolve_thresholds(raw_configs, token.class_name, self.default_thresholds)
        self._percentages = blended_percentages(blended)
        logger.info(
            f"Computed {len(self._percentages)} suggestions for {token.class_name}/G{token.grade} "
            f"(thresholds={self._thresholds.to_dict()})"
        )
        return dict(self._percentages)

    # ========================================
    # Persisted state + reconciliation
    # ========================================

    async def load_statuses(self) -> dict[str, StatusRecord] | None:
        """Read persisted rows for the selection (None if stale on arrival)."""
        token = self._require_selection()
        rows = await self.stores.statuses.list_statuses(token.class_name, token.grade)
        if not self._is_current(token):
            return None
        self._statuses = {row.standard_code: row for row in rows}
        self._statuses_loaded = True
        return dict(self._statuses)

    async def reconcile(self, force: bool = False) -> ReconcileReport:
        """
        Reconcile current suggestions against persisted rows.

        Runs once per selection, and is skipped when the stored marker shows
        this exact suggestion set was already reconciled. force bypasses
        both guards. Only upserts; never deletes.

        Raises:
            StorageError: The batched write failed; the batch is kept for retry
        """
        token = self._require_selection()
        if self._reconciled == token and not force:
            return ReconcileReport(selection=token, skipped=True)

        if not self._statuses_loaded and await self.load_statuses() is None:
            return ReconcileReport(selection=token, discarded=True)

        suggestions = self.suggestions
        fingerprint = suggestion_fingerprint(self._percentages, suggestions)
        if not force:
            marker = await self.stores.reconciliations.read_marker(token.class_name, token.grade)
            if not self._is_current(token):
                return ReconcileReport(selection=token, discarded=True)
            if marker == fingerprint:
                self._reconciled = token
                logger.debug(
                    f"Suggestions for {token.class_name}/G{token.grade} unchanged since last "
                    "reconciliation; skipping"
                )
                return ReconcileReport(selection=token, skipped=True)

        decisions = plan_reconciliation(self._statuses, suggestions)
        writes = build_writes(decisions, self._statuses, token.class_name, token.grade)
        report = ReconcileReport(selection=token, decisions=decisions)

        if writes:
            try:
                await self.stores.statuses.upsert_statuses(writes)
            except StorageError:
                self._pending_writes = writes
                self._pending_fingerprint = fingerprint
                logger.warning(
                    f"Reconciliation write of {len(writes)} rows failed for "
                    f"{token.class_name}/G{token.grade}; kept for retry"
                )
                raise
            if not self._is_current(token):
                report.discarded = True
                return report
            self._apply(writes)
            report.written = writes

        for code in report.sticky_codes:
            logger.info(f"Kept teacher 'above' for {code} despite lower suggestion")

        self._pending_writes = []
        self._pending_fingerprint = None
        await self.stores.reconciliations.write_marker(token.class_name, token.grade, fingerprint)
        self._reconciled = token
        logger.info(
            f"Reconciled {token.class_name}/G{token.grade}: {report.write_count} writes, "
            f"{len(report.sticky_codes)} sticky"
        )
        return report

    async def retry_failed_writes(self) -> list[StatusRecord]:
        """
        Retry the last failed reconciliation batch without recomputing.

        Raises:
            StorageError: The retry failed too (batch stays pending)
        """
        token = self._require_selection()
        if not self._pending_writes:
            return []

        writes = list(self._pending_writes)
        await self.stores.statuses.upsert_statuses(writes)
        if not self._is_current(token):
            return []
        self._apply(writes)
        fingerprint = self._pending_fingerprint
        self._pending_writes = []
        self._pending_fingerprint = None
        if fingerprint is not None:
            await self.stores.reconciliations.write_marker(token.class_name, token.grade, fingerprint)
        self._reconciled = token
        logger.info(f"Retried {len(writes)} reconciliation writes for {token.class_name}/G{token.grade}")
        return writes

    def _apply(self, records: list[StatusRecord]) -> None:
        for record in records:
            self._statuses[record.standard_code] = record

    async def refresh(self) -> list[StandardMasteryView] | None:
        """
        Recompute, reconcile (once per selection) and build the output views.

        Returns None when the selection changed before the pass finished.
        """
        token = self._require_selection()
        if await self.recompute() is None:
            return None
        if await self.load_statuses() is None:
            return None
        report = await self.reconcile()
        if report.discarded or not self._is_current(token):
            return None
        return self.views()

    # ========================================
    # Output
    # ========================================

    def view(self, standard_code: str, domain: str | None = None) -> StandardMasteryView:
        """Effective state of one standard from in-memory data."""
        row = self._statuses.get(standard_code)
        pct = self._percentages.get(standard_code)
        suggested = classify(pct, self._thresholds)
        effective = row.status if row else suggested
        return StandardMasteryView(
            standard_code=standard_code,
            effective_status=effective,
            computed_percentage=pct,
            suggested_status=suggested,
            intervention_status=surfaced_intervention(
                effective, row.intervention_status if row else None
            ),
            has_manual_override=row is not None and row.is_manual,
            intervention_editable=is_intervention_editable(effective),
            domain=domain,
        )

    def views(self) -> list[StandardMasteryView]:
        """
        One view per reference standard, in curriculum order, followed by
        any evidenced or persisted code missing from the reference.
        """
        known = {s.code for s in self._standards}
        result = [self.view(s.code, s.domain) for s in self._standards]
        extras = sorted((set(self._percentages) | set(self._statuses)) - known)
        result.extend(self.view(code) for code in extras)
        return result

    def _domain_of(self, standard_code: str) -> str | None:
        for s in self._standards:
            if s.code == standard_code:
                return s.domain
        return None

    def _require_known(self, standard_code: str) -> None:
        if self._standards and standard_code not in {s.code for s in self._standards}:
            raise UnknownStandardError(f"Unknown standard: {standard_code}")

    # ========================================
    # Teacher actions
    # ========================================

    async def cycle(self, standard_code: str, actor: str) -> StandardMasteryView | None:
        """
        Advance one standard around the manual status ring.

        Returns the updated view, or None if the selection changed meanwhile.
        """
        token = self._require_selection()
        self._require_known(standard_code)
        if not self._statuses_loaded and await self.load_statuses() is None:
            return None

        record = await self._cycle.advance(
            self._statuses.get(standard_code),
            token.class_name,
            token.grade,
            standard_code,
            actor,
        )
        if not self._is_current(token):
            return None
        if record is None:
            self._statuses.pop(standard_code, None)
        else:
            self._statuses[standard_code] = record
        return self.view(standard_code, self._domain_of(standard_code))

    async def set_intervention(
        self,
        standard_code: str,
        intervention: InterventionStatus,
        actor: str,
    ) -> StandardMasteryView | None:
        """
        Set the intervention status of one standard.

        Raises:
            InterventionNotEditableError: Effective status is not below/approaching
        """
        token = self._require_selection()
        self._require_known(standard_code)
        if not self._statuses_loaded and await self.load_statuses() is None:
            return None

        effective = self.view(standard_code).effective_status
        record = await self._intervention.set_status(
            self._statuses.get(standard_code),
            effective,
            token.class_name,
            token.grade,
            standard_code,
            intervention,
            actor,
        )
        if not self._is_current(token):
            return None
        self._statuses[standard_code] = record
        return self.view(standard_code, self._domain_of(standard_code))

    async def record_quick_check(
        self,
        student_id: str,
        standard_code: str,
        mark: QuickCheckMark,
        created_at: datetime | None = None,
    ) -> QuickCheck:
        """Append a quick check for the current selection and drop cached evidence."""
        token = self._require_selection()
        quick_check = QuickCheck(
            student_id=student_id,
            standard_code=standard_code,
            class_name=token.class_name,
            grade=token.grade,
            mark=QuickCheckMark(mark),
            created_at=created_at or datetime.now(UTC),
        )
        await self.stores.quick_checks.append(quick_check)
        self.cache.invalidate(token.class_name, token.grade)
        self._reconciled = None
        logger.debug(f"Recorded quick check {quick_check.mark.value} on {standard_code} for {student_id}")
        return quick_check

    # ========================================
    # Thresholds
    # ========================================

    async def get_all_thresholds(self) -> dict[str, ThresholdConfig]:
        """Every stored class config, invalid entries replaced by the default."""
        raw = await self.stores.thresholds.read_all()
        return {
            name: resolve_thresholds(raw, name, self.default_thresholds) for name in sorted(raw)
        }

    async def update_thresholds(
        self,
        class_name: str,
        cfg: ThresholdConfig | Mapping[str, Any],
    ) -> ThresholdConfig:
        """
        Validate and store one class's thresholds (full record replace).

        Raises:
            InvalidThresholdConfigError: Ordering or range violated
        """
        if isinstance(cfg, ThresholdConfig):
            validated = validate_thresholds(cfg)
        else:
            validated = parse_threshold_config(cfg)

        configs = await self.stores.thresholds.read_all()
        configs[class_name] = validated.to_dict()
        await self.stores.thresholds.replace_all(configs)
        logger.info(f"Updated thresholds for {class_name}: {validated.to_dict()}")

        current = self._selection
        if current is not None and current.class_name == class_name:
            self._thresholds = validated
            self._reconciled = None
        return validated
