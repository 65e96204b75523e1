"""
Layered classification: rules -> learned model -> remote provider -> heuristics.

Each stage only sees the units earlier stages left unresolved, so the earliest
stage's verdict is the one that sticks. Stage-local failures never escape:

- the rule stage cannot fail
- a learned-model error means "unavailable" and the units fall through
- remote failures (unavailable, transport, unparseable reply, timeout) switch
  the remaining units to the heuristic stage

The pipeline does not retry; callers own retry and timeout policy (the
optional policy.remote_timeout is applied here as a convenience).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from tabq.classification import heuristics
from tabq.classification.deduplicator import dedupe
from tabq.classification.learned import LearnedModel
from tabq.classification.merge import first_verdict_wins
from tabq.classification.response_parser import parse
from tabq.classification.rules_engine import DEFAULT_RULES, RulesEngine
from tabq.classification.types import CategorizedTabs, ClassificationResult, StageVerdict
from tabq.config import CLASSIFY_BATCH_MAX
from tabq.errors import (
    PipelineExhausted,
    ProviderReplyUnparseable,
    ProviderRequestFailed,
    ProviderUnavailable,
    ValidationError,
)
from tabq.infrastructure.circuitbreaker import ReplyCircuitBreaker
from tabq.llm.prompts import build_categorization_prompt
from tabq.llm.providers import RemoteProvider, get_provider
from tabq.observability.confidence import REMOTE_CONFIDENCE
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter, log_event, time_block
from tabq.storage.models import (
    Category,
    ClassificationPolicy,
    ClassificationUnit,
    Provenance,
    RemoteConfig,
    TabInstance,
)

logger = get_logger(__name__)

ProviderFactory = Callable[[RemoteConfig], RemoteProvider]

REMOTE_STAGE_ERRORS = (
    ProviderUnavailable,
    ProviderRequestFailed,
    ProviderReplyUnparseable,
    asyncio.TimeoutError,
)


def _validate_units(units: Sequence[ClassificationUnit]) -> None:
    if len(units) > CLASSIFY_BATCH_MAX:
        raise ValidationError(f"too many units ({len(units)} > {CLASSIFY_BATCH_MAX})")
    seen: set[str] = set()
    for unit in units:
        if not isinstance(unit, ClassificationUnit):
            raise ValidationError("classify() expects ClassificationUnit items")
        if not unit.duplicate_ids:
            raise ValidationError(f"unit {unit.unit_id} has no instance ids")
        if unit.unit_id in seen:
            raise ValidationError(f"duplicate unit id {unit.unit_id}")
        seen.add(unit.unit_id)


class ClassificationPipeline:
    def __init__(
        self,
        provider_factory: ProviderFactory = get_provider,
        learned_model: LearnedModel | None = None,
        circuit_breaker: ReplyCircuitBreaker | None = None,
    ) -> None:
        self.provider_factory = provider_factory
        self.learned_model = learned_model
        self.circuit_breaker = circuit_breaker or ReplyCircuitBreaker()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _learned_stage(self, units: list[ClassificationUnit]) -> dict[str, StageVerdict]:
        if self.learned_model is None:
            return {}
        try:
            return self.learned_model.classify(units)
        except Exception as e:
            # A broken model is treated exactly like a missing one
            counter("pipeline.learned_failed")
            logger.debug("Learned model unavailable: %s", e)
            return {}

    async def _remote_stage(
        self, units: list[ClassificationUnit], policy: ClassificationPolicy
    ) -> dict[str, StageVerdict]:
        """
        One provider round trip for all remaining units.

        Raises:
            ProviderUnavailable, ProviderRequestFailed, ProviderReplyUnparseable,
            asyncio.TimeoutError
        """
        if not self.circuit_breaker.allow_request():
            counter("pipeline.remote_circuit_open")
            raise ProviderUnavailable(
                f"provider circuit open (invalid reply rate {self.circuit_breaker.invalid_rate():.0%})"
            )

        provider = self.provider_factory(policy.remote)
        prompt = build_categorization_prompt(units, policy.remote.custom_prompt)

        with time_block("pipeline.remote.latency"):
            call = provider.complete(prompt)
            if policy.remote_timeout:
                raw = await asyncio.wait_for(call, timeout=policy.remote_timeout)
            else:
                raw = await call

        try:
            parsed = parse(raw, valid_ids=[unit.unit_id for unit in units])
        except ProviderReplyUnparseable:
            self.circuit_breaker.record(False)
            raise
        self.circuit_breaker.record(True)

        return {
            unit_id: StageVerdict(
                category=category, provenance=Provenance.REMOTE, confidence=REMOTE_CONFIDENCE
            )
            for unit_id, category in parsed.items()
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def classify(
        self, units: Sequence[ClassificationUnit], policy: ClassificationPolicy | None = None
    ) -> ClassificationResult:
        """
        Assign one category per unit.

        Units the remote reply does not mention end up in result.unresolved
        (displayed as Uncategorized). The heuristic stage only runs when the
        remote stage is disabled or fails.

        Raises:
            ValidationError: For malformed units
            PipelineExhausted: If a unit has no verdict after every stage

        Side Effects:
            - Calls the remote provider (network) when enabled
            - Records parse outcomes in the circuit breaker
            - Increments pipeline.* telemetry counters
        """
        policy = policy or ClassificationPolicy()
        units = list(units)
        _validate_units(units)
        result = ClassificationResult()
        if not units:
            return result

        rules = policy.rules if policy.rules is not None else DEFAULT_RULES
        by_id = {unit.unit_id: unit for unit in units}

        def remaining(*stages: Mapping[str, Any]) -> list[ClassificationUnit]:
            return [u for u in units if not any(u.unit_id in stage for stage in stages)]

        rule_verdicts = RulesEngine(rules).classify(units)
        result.stages_run.append("rules")

        learned_verdicts: dict[str, StageVerdict] = {}
        if policy.use_learned:
            learned_verdicts = self._learned_stage(remaining(rule_verdicts))
            result.stages_run.append("learned")

        pending = remaining(rule_verdicts, learned_verdicts)
        remote_verdicts: dict[str, StageVerdict] = {}
        heuristic_verdicts: dict[str, StageVerdict] = {}

        if pending:
            remote_ok = False
            if policy.use_remote:
                result.stages_run.append("remote")
                try:
                    remote_verdicts = await self._remote_stage(pending, policy)
                    remote_ok = True
                except REMOTE_STAGE_ERRORS as e:
                    result.remote_error = str(e) or type(e).__name__
                    counter(f"pipeline.remote_failed.{type(e).__name__}")
                    logger.warning("Remote stage failed, using heuristics: %s", result.remote_error)

            if remote_ok:
                result.unresolved = [u.unit_id for u in pending if u.unit_id not in remote_verdicts]
            else:
                heuristic_verdicts = heuristics.classify(pending)
                result.stages_run.append("heuristics")

        result.verdicts = first_verdict_wins(
            rule_verdicts, learned_verdicts, remote_verdicts, heuristic_verdicts
        )

        missing = [uid for uid in by_id if uid not in result.verdicts and uid not in result.unresolved]
        if missing:
            counter("pipeline.exhausted")
            raise PipelineExhausted(missing)

        log_event(
            "pipeline.classified",
            units=len(units),
            rules=len(rule_verdicts),
            learned=len(learned_verdicts),
            remote=len(remote_verdicts),
            heuristic=len(heuristic_verdicts),
            unresolved=len(result.unresolved),
        )
        return result

    async def categorize_tabs(
        self,
        instances: Iterable[TabInstance | Mapping[str, Any]],
        exclude_addresses: Iterable[str] = (),
        policy: ClassificationPolicy | None = None,
    ) -> CategorizedTabs:
        """
        Full flow: dedupe, classify, then lay units out per category.

        Already-saved units skip classification and are shown under CanClose
        with already_saved set.
        """
        deduped = dedupe(instances, exclude_addresses)
        result = await self.classify(deduped.units, policy)

        categorized: dict[Category, list[ClassificationUnit]] = {c: [] for c in Category}
        for unit in deduped.units:
            verdict = result.verdicts.get(unit.unit_id)
            if verdict is None:
                categorized[Category.UNCATEGORIZED].append(unit)
                continue
            unit.provenance = verdict.provenance
            unit.confidence = verdict.confidence
            categorized[verdict.category].append(unit)

        for unit in deduped.excluded_units:
            unit.provenance = Provenance.PERSISTED
            categorized[Category.CAN_CLOSE].append(unit)

        duplicate_index = {
            unit.address: list(unit.duplicate_ids)
            for units in categorized.values()
            for unit in units
        }
        return CategorizedTabs(
            categorized=categorized,
            duplicate_index=duplicate_index,
            result=result,
            covered_addresses=set(duplicate_index),
        )
