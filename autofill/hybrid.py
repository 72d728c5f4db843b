"""
Hybrid autofill - decides how a page gets filled.

    DETECT       match the URL against platform configs
    CONFIG_FILL  run the platform config (ATS engine)
                 fill ratio >= threshold  -> DONE (method=config)
    FALLBACK     collect the fields still empty, get decisions from the
                 mapping cache, the AI service or the heuristic mapper,
                 apply them
    DONE         report filled/total and the method used
                 (config, ai, heuristic, hybrid)

Nothing here raises for fill problems: every failure shrinks the result
instead of aborting the run.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from storage.mapping_cache import MappingCache

from .agent_client import AgentClient
from .ats_detector import detect_platform
from .ats_engine import ATSEngine, InterpreterResult
from .cache_client import RemoteMappingCache
from .config import CACHE_SERVER_URL, REPAIRED_CONFIDENCE_CAP, EngineSettings
from .dom import Document, assign_value
from .errors import AutofillError, RunCancelled, UpstreamAgentError, ValueAssignmentError
from .field_collector import FieldHandle, collect_fields
from .field_mapper import HeuristicMapper
from .matcher import exact_option, match_option
from .models import (
    ACTION_CHECK,
    ACTION_FILL,
    ACTION_SELECT,
    ACTION_SKIP,
    METHOD_AI,
    METHOD_CONFIG,
    METHOD_HEURISTIC,
    METHOD_HYBRID,
    FillDecision,
    FillReport,
    FormFieldDescriptor,
    as_text,
    coerce_decision,
)
from .platforms import PlatformConfig, get_platforms
from .profile import Profile
from .session import RunContext, RunGuard, default_guard
from .signature import field_keys, page_signature

logger = logging.getLogger(__name__)

QA_FIELD_KINDS = ("text", "textarea")


def default_cache(settings: EngineSettings):
    """Remote cache when a server URL is configured, local JSON cache otherwise."""
    if CACHE_SERVER_URL:
        return RemoteMappingCache()
    return MappingCache(trust_threshold=settings.cache_trust_threshold, alpha=settings.confirmation_alpha)


class HybridAutofill:
    """Orchestrates config, cache, AI and heuristic filling for a page."""

    def __init__(self, platforms: Optional[Mapping[str, PlatformConfig]] = None,
                 agent: Optional[AgentClient] = None,
                 cache=None,
                 mapper: Optional[HeuristicMapper] = None,
                 qa_bank=None,
                 settings: Optional[EngineSettings] = None,
                 guard: Optional[RunGuard] = None):
        self.settings = settings or EngineSettings()
        self.platforms = platforms if platforms is not None else get_platforms()
        self.agent = agent if agent is not None else AgentClient()
        self.cache = cache if cache is not None else default_cache(self.settings)
        self.mapper = mapper or HeuristicMapper()
        self.qa_bank = qa_bank
        self.guard = guard or default_guard

    # ============ Entry point ============

    def run(self, document: Document, profile: Profile) -> FillReport:
        """Fill the page. Always returns a report."""
        with self.guard.acquire(document.key) as acquired:
            if not acquired:
                logger.warning(f"[Hybrid] Run already in progress for {document.url}, skipping")
                return FillReport(url=document.url, busy=True)

            ctx = RunContext(document, profile, self.settings)
            detach = document.on_teardown(ctx.cancel)
            report = FillReport(url=document.url)
            try:
                self._run(ctx, report)
            except RunCancelled:
                report.cancelled = True
                logger.info(f"[Hybrid] Stopped: {ctx.cancel_reason}")
            finally:
                detach()

        logger.info(f"[Hybrid] Done: {report.filled_count}/{report.total_count} via {report.method}")
        return report

    def _run(self, ctx: RunContext, report: FillReport):
        url = ctx.document.url
        platform_id = detect_platform(url, self.platforms)
        config_result = None

        if platform_id:
            report.platform = platform_id
            config_result = ATSEngine(ctx).run(self.platforms[platform_id])
            report.filled_count = config_result.filled_count
            report.total_count = config_result.total_count
            if config_result.cancelled:
                raise RunCancelled(ctx.cancel_reason)
            if config_result.sufficed(self.settings.fill_ratio_threshold):
                report.method = METHOD_CONFIG
                return
            logger.info(
                f"[Hybrid] Config filled {config_result.filled_count}/{config_result.total_count}, "
                f"falling back for the rest"
            )
        else:
            logger.info(f"[Hybrid] No platform config for {url}, using generic fill")

        origin = self._fallback(ctx, report, config_result)
        report.method = METHOD_HYBRID if platform_id else origin

    # ============ Fallback ============

    def _pending(self, handles: List[FieldHandle], filled: Set[str]) -> List[FieldHandle]:
        """Fields still to fill: empty, and not a field the config already filled."""
        pending = []
        for handle in handles:
            descriptor = handle.descriptor
            if descriptor.current_value:
                continue
            rule = self.mapper.classify(descriptor)
            if rule is not None and rule.canonical in filled:
                continue
            pending.append(handle)
        return pending

    def _fallback(self, ctx: RunContext, report: FillReport,
                  config_result: Optional[InterpreterResult]) -> str:
        filled = set()
        base_filled = 0
        if config_result is not None:
            filled = {Profile.attribute_for(name) for name in config_result.filled_fields}
            base_filled = config_result.filled_count

        try:
            handles = collect_fields(ctx.document.root())
        except RunCancelled:
            raise
        except AutofillError as e:
            logger.warning(f"[Hybrid] Could not read form fields: {e}")
            report.errors.append(str(e))
            return METHOD_HEURISTIC

        pending = self._pending(handles, filled)
        if config_result is not None:
            report.total_count = max(config_result.total_count, base_filled + len(pending))
        else:
            report.total_count = len(pending)
        if not pending:
            return METHOD_HEURISTIC

        ctx.check()
        descriptors = [h.descriptor for h in pending]
        decisions, origin, signature, cached = self._decide(ctx, descriptors)
        report.page_signature = signature
        report.cached = cached

        decisions = self._complete(ctx, descriptors, decisions)

        applied, attempted = self._apply(ctx, decisions, {h.field_id: h for h in pending}, report)
        report.filled_count = base_filled + applied
        report.decisions = decisions

        if self.settings.auto_confirm and signature and attempted:
            success = applied / attempted >= self.settings.fill_ratio_threshold
            self._confirm(signature, success)

        if origin == METHOD_AI:
            self._auto_save_answers(decisions, descriptors)
        return origin

    def _decide(self, ctx: RunContext, descriptors: List[FormFieldDescriptor]
                ) -> Tuple[List[FillDecision], str, str, bool]:
        """Decisions for the pending fields, through the mapping cache."""
        signature = page_signature(descriptors)
        keys = field_keys(descriptors)
        computed: Dict[str, Any] = {}

        def compute():
            decisions, origin = self._request_decisions(ctx, descriptors)
            computed["decisions"], computed["origin"] = decisions, origin
            return self._to_mappings(decisions, descriptors, keys, ctx.profile, origin)

        try:
            lookup = self.cache.get_or_compute(signature, compute, url=ctx.document.url)
        except (AutofillError, OSError) as e:
            logger.warning(f"[Hybrid] Mapping cache unavailable: {e}")
            if "decisions" not in computed:
                compute()
            return computed["decisions"], computed["origin"], signature, False

        if lookup.cached:
            decisions = self._from_mappings(lookup.mappings, descriptors, keys, ctx.profile)
            sources = {m.get("source") for m in lookup.mappings}
            origin = METHOD_AI if METHOD_AI in sources else METHOD_HEURISTIC
            logger.info(f"[Hybrid] Reusing cached mapping {signature} ({len(decisions)} decisions)")
            return decisions, origin, signature, True

        return computed["decisions"], computed["origin"], signature, False

    def _request_decisions(self, ctx: RunContext, descriptors: List[FormFieldDescriptor]
                           ) -> Tuple[List[FillDecision], str]:
        """AI decisions when the service is configured and answers; heuristic ones otherwise."""
        if self.agent is not None and self.agent.available:
            try:
                raw = self.agent.fill_fields(descriptors, ctx.profile, ctx.document.url)
                return self.validate(raw, descriptors), METHOD_AI
            except UpstreamAgentError as e:
                logger.warning(f"[Hybrid] AI service failed, using heuristics: {e}")
        return self.mapper.map_fields(descriptors, ctx.profile), METHOD_HEURISTIC

    def validate(self, decisions: List[FillDecision], descriptors: List[FormFieldDescriptor]
                 ) -> List[FillDecision]:
        """
        Clean up decisions from the AI service.

        Drops unknown field ids and duplicates, moves select values onto real
        options (fuzzy-matched values get their confidence capped), and makes
        value types agree with the field kind.
        """
        by_id = {d.field_id: d for d in descriptors}
        seen = set()
        valid = []
        for decision in decisions:
            descriptor = by_id.get(decision.field_id)
            if descriptor is None:
                logger.debug(f"[Hybrid] Dropping decision for unknown field {decision.field_id}")
                continue
            if decision.field_id in seen:
                continue
            seen.add(decision.field_id)
            if decision.action == ACTION_SKIP:
                valid.append(decision)
                continue

            if descriptor.is_enumerable and descriptor.options:
                option = exact_option(as_text(decision.value), descriptor.options)
                if option is None:
                    option = match_option(as_text(decision.value), descriptor.options)
                    if option is not None:
                        decision.confidence = min(decision.confidence, REPAIRED_CONFIDENCE_CAP)
                        decision.reasoning += f" (Matched to closest option: {option.text})"
                if option is not None:
                    decision.value = option.value

            coerced = coerce_decision(decision, descriptor)
            if coerced is None:
                logger.debug(f"[Hybrid] Dropping decision with unusable value for {decision.field_id}")
                continue
            valid.append(coerced)
        return valid

    def _complete(self, ctx: RunContext, descriptors: List[FormFieldDescriptor],
                  decisions: List[FillDecision]) -> List[FillDecision]:
        """Give undecided fields a heuristic pass, then a saved-answer lookup."""
        decided = {d.field_id for d in decisions}
        for descriptor in descriptors:
            if descriptor.field_id in decided:
                continue
            decision = self.mapper.decide(descriptor, ctx.profile)
            if decision is None:
                decision = self._saved_answer(descriptor)
            if decision is not None:
                decisions.append(decision)
                decided.add(descriptor.field_id)
        return decisions

    def _saved_answer(self, descriptor: FormFieldDescriptor) -> Optional[FillDecision]:
        if self.qa_bank is None or descriptor.element_type not in QA_FIELD_KINDS:
            return None
        question = descriptor.label or descriptor.surrounding_text or descriptor.placeholder
        if not question:
            return None
        try:
            match = self.qa_bank.find_similar(question, threshold=self.settings.qa_match_threshold)
        except OSError as e:
            logger.warning(f"[Hybrid] Q&A bank unavailable: {e}")
            return None
        if match is None:
            return None
        entry, score = match
        return FillDecision(
            descriptor.field_id, ACTION_FILL, entry.answer_text, score,
            f"Saved answer: {entry.question_text[:60]}",
        )

    def _apply(self, ctx: RunContext, decisions: List[FillDecision],
               handles: Dict[str, FieldHandle], report: FillReport) -> Tuple[int, int]:
        """Write decisions into the page. Returns (applied, attempted)."""
        applied = attempted = 0
        for decision in decisions:
            if decision.action == ACTION_SKIP:
                continue
            ctx.check()
            handle = handles.get(decision.field_id)
            if handle is None:
                continue
            attempted += 1
            node = handle.node_for(decision.value)
            if node is None:
                report.errors.append(f"{decision.field_id}: no option {decision.value!r}")
                continue
            try:
                assign_value(node, decision.value)
                applied += 1
                logger.info(f"[Hybrid] ✅ {decision.field_id} ({decision.reasoning}, {decision.confidence:.2f})")
            except ValueAssignmentError as e:
                report.errors.append(f"{decision.field_id}: {e}")
                logger.warning(f"[Hybrid] ❌ {decision.field_id}: {e}")
        return applied, attempted

    def _confirm(self, signature: str, success: bool):
        try:
            self.cache.confirm(signature, success)
        except (AutofillError, OSError) as e:
            logger.warning(f"[Hybrid] Could not confirm {signature}: {e}")

    def _auto_save_answers(self, decisions: List[FillDecision], descriptors: List[FormFieldDescriptor]):
        """Keep free-text AI answers in the Q&A bank for next time."""
        if self.qa_bank is None or not self.settings.auto_save_answers:
            return
        by_id = {d.field_id: d for d in descriptors}
        for decision in decisions:
            descriptor = by_id.get(decision.field_id)
            if descriptor is None or descriptor.element_type != "textarea":
                continue
            if decision.source_field or decision.action != ACTION_FILL or not decision.value:
                continue
            question = descriptor.label or descriptor.surrounding_text
            if not question:
                continue
            if self.qa_bank.find_similar_answers(question, top_n=1, threshold=self.settings.qa_match_threshold):
                continue
            try:
                self.qa_bank.create(question, decision.value, tags=["auto"], auto_saved=True)
            except OSError as e:
                logger.warning(f"[Hybrid] Could not save answer for {decision.field_id}: {e}")

    # ============ Cache payloads ============

    def _to_mappings(self, decisions: List[FillDecision], descriptors: List[FormFieldDescriptor],
                     keys: Dict[str, str], profile: Profile, origin: str) -> List[Dict[str, Any]]:
        """Structural form of decisions: which profile attribute goes where. No personal values."""
        by_id = {d.field_id: d for d in descriptors}
        mappings = []
        for decision in decisions:
            descriptor = by_id.get(decision.field_id)
            if descriptor is None or decision.action == ACTION_SKIP:
                continue
            canonical = decision.source_field or profile.find_attribute(decision.value)
            if canonical is None and descriptor.is_enumerable:
                option = exact_option(as_text(decision.value), descriptor.options)
                if option is not None:
                    canonical = profile.find_attribute(option.text)
            entry = {
                "field_key": keys[decision.field_id],
                "canonical": canonical,
                "action": decision.action,
                "confidence": decision.confidence,
                "source": origin,
            }
            if canonical is None:
                if decision.action not in (ACTION_SELECT, ACTION_CHECK):
                    continue
                entry["value"] = decision.value
            mappings.append(entry)
        return mappings

    def _from_mappings(self, mappings: List[Dict[str, Any]], descriptors: List[FormFieldDescriptor],
                       keys: Dict[str, str], profile: Profile) -> List[FillDecision]:
        """Turn a cached mapping back into decisions using the current profile."""
        by_key = {keys[d.field_id]: d for d in descriptors}
        decisions = []
        for mapping in mappings:
            descriptor = by_key.get(mapping.get("field_key"))
            if descriptor is None:
                continue
            confidence = mapping.get("confidence", 0.0)
            canonical = mapping.get("canonical")
            if canonical:
                decision = self.mapper.decide_for(
                    descriptor, canonical, profile, confidence, f"Cached mapping: {canonical}",
                )
            elif "value" in mapping:
                decision = coerce_decision(
                    FillDecision(descriptor.field_id, mapping.get("action", ACTION_SELECT),
                                 mapping["value"], confidence, "Cached answer"),
                    descriptor,
                )
            else:
                decision = None
            if decision is not None:
                decisions.append(decision)
        return decisions
