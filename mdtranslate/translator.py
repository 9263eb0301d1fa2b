"""High-level orchestration for Markdown translation."""

from __future__ import annotations

import asyncio
import json
import pathlib
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from .configuration import TranslatorConfig
from .documents import MarkdownDocument, ensure_markdown_path, match_trailing_newline
from .errors import (
    BatchFailedError,
    CountMismatchError,
    ErrorRecord,
    GlossaryJudgeError,
    MdTranslateError,
    NonRetryableRequestError,
    OverwriteRefusedError,
    ResponseParseError,
    UntranslatedAfterRetriesError,
)
from .eventlog import EventLogger, NullEventLogger
from .glossary import (
    build_glossary_entries,
    check_glossary,
    flatten_missing_entries,
    terms_in_text,
    union_entries,
)
from .policy import RetryPolicy, extract_status_code
from .prompts import (
    PromptSet,
    build_judge_messages,
    build_translation_messages,
    build_translation_payload,
)
from .providers import ChatProvider
from .responses import (
    JudgeDecision,
    normalize_translations,
    parse_judge_decisions,
    parse_model_response,
)
from .segmenter import BatchPlanner, estimate_tokens
from .structures import ChatMessage, ChatRequest, GlossaryEntry, ProgressUpdate, Segment
from .untranslated import is_likely_untranslated

ProgressCallback = Callable[[ProgressUpdate], None]
Sleeper = Callable[[float], Awaitable[Any]]
Notifier = Callable[[str], None]


def print_notice(message: str) -> None:
    print(message, file=sys.stderr)


class BatchState(Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    ESCALATED = "escalated"
    EXHAUSTED = "exhausted"


@dataclass
class BatchRun:
    """Mutable state of one batch across its attempts."""

    batch_ids: List[int]
    pending: List[int] = field(default_factory=list)
    attempt: int = 0
    missing_entries: List[GlossaryEntry] = field(default_factory=list)
    has_success: bool = False
    state: BatchState = BatchState.PENDING

    def __post_init__(self) -> None:
        if not self.pending:
            self.pending = list(self.batch_ids)


@dataclass
class TranslationStats:
    """Counters shared across a run, including nested code block runs."""

    segments: int = 0
    batches: int = 0
    singleton_fallbacks: int = 0
    records: List[ErrorRecord] = field(default_factory=list)


class TranslationEngine:
    """Translates ordered segments in size-bounded batches."""

    def __init__(
        self,
        *,
        config: TranslatorConfig,
        provider: ChatProvider,
        prompts: PromptSet,
        glossary_entries: Sequence[GlossaryEntry] = (),
        logger: Optional[EventLogger] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleeper = asyncio.sleep,
        notify: Notifier = print_notice,
        stats: Optional[TranslationStats] = None,
    ) -> None:
        self.config = config
        self.provider = provider
        self.prompts = prompts
        self.glossary_entries = list(glossary_entries)
        self.logger: EventLogger = logger or NullEventLogger()
        self.policy = policy or RetryPolicy(
            base_delay_ms=config.retry_base_delay_ms,
            max_delay_ms=config.retry_max_delay_ms,
        )
        self._sleep = sleep
        self._notify = notify
        self.stats = stats or TranslationStats()

    # --- Public API -------------------------------------------------------

    async def translate_segments(
        self,
        segments: Sequence[Segment],
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[str]:
        """Return one translation per segment, in segment order."""

        translations: List[Optional[str]] = [None] * len(segments)
        segment_terms = [terms_in_text(segment.text, self.glossary_entries) for segment in segments]

        pending_ids: List[int] = []
        for segment in segments:
            if segment.text.strip():
                pending_ids.append(segment.segment_id)
            else:
                translations[segment.segment_id] = segment.text

        total = len(pending_ids)
        done = 0
        self._report(on_progress, ProgressUpdate(done=1, total=1) if total == 0 else ProgressUpdate(0, total))

        planner = BatchPlanner(
            max_chars=self.config.batch_char_limit,
            max_tokens=self.config.max_batch_tokens,
            max_segments=self.config.max_batch_segments,
            base_tokens=self.estimate_base_tokens(segment_terms),
        )
        batches = planner.plan(pending_ids, segments)
        self.stats.segments += len(segments)
        self.stats.batches += len(batches)

        for batch in batches:
            try:
                await self.translate_batch(batch.segment_ids, segments, segment_terms, translations)
                done += len(batch.segment_ids)
                self._report(on_progress, ProgressUpdate(done, total))
            except (CountMismatchError, BatchFailedError) as exc:
                if len(batch.segment_ids) <= 1:
                    raise
                self.stats.singleton_fallbacks += 1
                self._warn(
                    "batch_fallback_to_singletons",
                    "Batch translation failed. Retrying with single-segment batches.",
                    {"batch_id": batch.batch_id, "segment_ids": batch.segment_ids, "error": str(exc)},
                )
                for segment_id in batch.segment_ids:
                    await self.translate_batch([segment_id], segments, segment_terms, translations)
                    done += 1
                    self._report(on_progress, ProgressUpdate(done, total))

        return [value if value is not None else "" for value in translations]

    def estimate_base_tokens(self, segment_terms: Sequence[Sequence[GlossaryEntry]]) -> int:
        """Fixed cost of a request: system prompt plus an empty envelope."""

        scaffold = build_translation_payload(
            segments=[],
            glossary_entries=union_entries(segment_terms),
            source_language=self.config.source_language,
            target_language=self.config.target_language,
        )
        messages = build_translation_messages(self.prompts.translate, scaffold)
        return sum(estimate_tokens(message.content) for message in messages)

    # --- Batch state machine ---------------------------------------------

    def _transition(self, run: BatchRun, state: BatchState, **details: Any) -> None:
        previous = run.state
        run.state = state
        self.logger.info(
            "batch_state",
            {
                "segment_ids": run.batch_ids,
                "from": previous.value,
                "to": state.value,
                "attempt": run.attempt,
                "pending": list(run.pending),
                **details,
            },
        )

    async def translate_batch(
        self,
        batch_ids: Sequence[int],
        segments: Sequence[Segment],
        segment_terms: Sequence[Sequence[GlossaryEntry]],
        translations: List[Optional[str]],
    ) -> BatchRun:
        """Run the attempt loop for one batch, writing into ``translations``."""

        run = BatchRun(batch_ids=list(batch_ids))
        retry_times = self.config.retry_times
        salvaged = False

        while run.pending and run.attempt < retry_times:
            run.attempt += 1
            pending = list(run.pending)
            try:
                results = await self._translate_attempt(pending, segments, segment_terms, run.missing_entries)
            except Exception as exc:
                decision = self.policy.decide(exc, run.attempt - 1)
                if not decision.retryable:
                    self.logger.error(
                        "non_retryable_error",
                        {"error": str(exc), "category": decision.category.value, "pending": pending},
                    )
                    if not run.has_success:
                        self._transition(run, BatchState.ESCALATED, reason="non_retryable")
                        raise NonRetryableRequestError(
                            f"Request rejected and not retryable: {exc}",
                            status_code=extract_status_code(exc),
                        ) from exc
                    self._warn(
                        "non_retryable_error_salvaged",
                        "Request rejected and not retryable. Using last available translations.",
                        {"error": str(exc), "abandoned_ids": pending},
                    )
                    run.pending = []
                    self._transition(run, BatchState.EXHAUSTED, reason="non_retryable")
                    return run

                if run.attempt >= retry_times:
                    if isinstance(exc, CountMismatchError) and len(run.batch_ids) > 1:
                        self._transition(run, BatchState.ESCALATED, reason="count_mismatch")
                        raise
                    if not run.has_success:
                        failed = BatchFailedError(attempts=retry_times, pending_ids=pending, cause=exc)
                        self.logger.error(
                            "translation_batch_failed",
                            {"error": str(failed), "pending_count": len(pending), "attempts": retry_times},
                        )
                        self._transition(run, BatchState.ESCALATED, reason="batch_failed")
                        raise failed from exc
                    self._warn(
                        "translation_retries_exhausted",
                        "Translation retries exhausted. Using last available translations.",
                        {"error": str(exc), "pending_count": len(pending)},
                    )
                    salvaged = True
                    break

                self.logger.warn(
                    "translation_retry_scheduled",
                    {
                        "error": str(exc),
                        "category": decision.category.value,
                        "delay_seconds": decision.delay_seconds,
                        "attempt": run.attempt,
                    },
                )
                self._notify(
                    f"Translation attempt failed ({decision.category.value}). "
                    f"Retrying in {decision.delay_seconds:.2f}s. Error: {exc}"
                )
                await self._sleep(decision.delay_seconds)
                continue

            run.has_success = True
            for segment_id, value in zip(pending, results):
                translations[segment_id] = value

            unresolved = await self._review_attempt(run, pending, results, segments, segment_terms)
            if not unresolved:
                run.pending = []
                self._transition(run, BatchState.RESOLVED)
                return run
            run.pending = unresolved

        if run.pending:
            self._finish_with_leftovers(run, segments, translations, salvaged=salvaged)
        return run

    async def _review_attempt(
        self,
        run: BatchRun,
        pending: Sequence[int],
        results: Sequence[str],
        segments: Sequence[Segment],
        segment_terms: Sequence[Sequence[GlossaryEntry]],
    ) -> List[int]:
        """Return the ids that still need another attempt."""

        missing_map = check_glossary(pending, segment_terms, results)
        untranslated = [
            segment_id
            for segment_id, value in zip(pending, results)
            if is_likely_untranslated(segments[segment_id].text, value)
        ]
        if untranslated:
            sample = ", ".join(str(i) for i in untranslated[:5])
            overflow = f" ... +{len(untranslated) - 5}" if len(untranslated) > 5 else ""
            self._warn(
                "untranslated_segments_detected",
                f"Detected untranslated segments. Retrying. Segment ids: {sample}{overflow}",
                {"count": len(untranslated), "segment_ids": untranslated},
            )

        if missing_map:
            by_id = dict(zip(pending, results))
            try:
                decisions = await self._judge(missing_map, by_id, segments)
            except GlossaryJudgeError as exc:
                self._warn(
                    "glossary_judge_failed",
                    f"Glossary judge failed. Continuing with retries. Error: {exc}",
                    {"error": str(exc), "segment_ids": list(missing_map)},
                )
                decisions = {}
            for segment_id, decision in decisions.items():
                if decision.accept:
                    missing_map.pop(segment_id, None)

        flagged = set(missing_map) | set(untranslated)
        unresolved = [segment_id for segment_id in pending if segment_id in flagged]
        if unresolved:
            run.missing_entries = flatten_missing_entries(missing_map)
            if run.missing_entries:
                missing_list = ", ".join(f"{e.source} -> {e.target}" for e in run.missing_entries)
                self._notify(f"Glossary check failed. Retrying. Missing terms: {missing_list}")
            else:
                self._notify("Retrying unresolved untranslated segments.")
        return unresolved

    def _finish_with_leftovers(
        self,
        run: BatchRun,
        segments: Sequence[Segment],
        translations: Sequence[Optional[str]],
        *,
        salvaged: bool,
    ) -> None:
        still_untranslated = [
            segment_id
            for segment_id in run.pending
            if is_likely_untranslated(segments[segment_id].text, translations[segment_id])
        ]
        if still_untranslated:
            error = UntranslatedAfterRetriesError(
                attempts=self.config.retry_times,
                pending_ids=still_untranslated,
            )
            self.logger.error(
                "untranslated_segments_after_retries",
                {"error": str(error), "segment_ids": still_untranslated},
            )
            self._transition(run, BatchState.ESCALATED, reason="untranslated")
            raise error

        missing_list = ", ".join(f"{e.source} -> {e.target}" for e in run.missing_entries)
        self._warn(
            "glossary_check_failed_after_retries",
            "Glossary check failed after retries. Using last available translations. "
            f"Missing terms: {missing_list}",
            {
                "missing_terms": [entry.as_payload() for entry in run.missing_entries],
                "segment_ids": list(run.pending),
                "salvaged_after_error": salvaged,
            },
        )
        self._transition(run, BatchState.EXHAUSTED, reason="glossary")

    # --- Remote calls -----------------------------------------------------

    async def _call(self, messages: Sequence[ChatMessage], *, kind: str) -> str:
        request = ChatRequest(
            model=self.config.model,
            messages=tuple(messages),
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            timeout=self.config.timeout_seconds,
        )
        try:
            return await asyncio.wait_for(self.provider.complete(request), timeout=request.timeout)
        except Exception as exc:
            self.logger.error(
                "chat_completion_failed",
                {
                    "type": kind,
                    "error": str(exc) or type(exc).__name__,
                    "request": {"messages": [message.as_payload() for message in messages]},
                },
            )
            raise

    async def _translate_attempt(
        self,
        pending: Sequence[int],
        segments: Sequence[Segment],
        segment_terms: Sequence[Sequence[GlossaryEntry]],
        missing_entries: Sequence[GlossaryEntry],
    ) -> List[str]:
        payload = build_translation_payload(
            segments=[{"id": segment_id, "text": segments[segment_id].text} for segment_id in pending],
            glossary_entries=union_entries(segment_terms[segment_id] for segment_id in pending),
            missing_entries=missing_entries,
            source_language=self.config.source_language,
            target_language=self.config.target_language,
        )
        messages = build_translation_messages(self.prompts.translate, payload)
        content = await self._call(messages, kind="translation")

        try:
            parsed = parse_model_response(content)
            return normalize_translations(parsed, pending)
        except CountMismatchError as exc:
            self.logger.error(
                "translation_count_mismatch",
                {
                    "type": "translation",
                    "error": str(exc),
                    "expected": exc.expected,
                    "actual": exc.actual,
                    "missing_ids": exc.missing_ids,
                    "response": content,
                },
            )
            raise
        except ResponseParseError as exc:
            self.logger.error(
                "parse_translation_response_failed",
                {"type": "translation", "error": str(exc), "response": content},
            )
            raise

    async def _judge(
        self,
        missing_map: Mapping[int, Sequence[GlossaryEntry]],
        by_id: Mapping[int, str],
        segments: Sequence[Segment],
    ) -> Dict[int, JudgeDecision]:
        if not self.prompts.judge or not missing_map:
            return {}

        items = [
            {
                "id": segment_id,
                "source": segments[segment_id].text,
                "translation": by_id.get(segment_id, ""),
                "missing_terms": [entry.as_payload() for entry in missing],
            }
            for segment_id, missing in missing_map.items()
        ]
        messages = build_judge_messages(self.prompts.judge, {"items": items})
        try:
            content = await self._call(messages, kind="glossary_judge")
        except Exception as exc:
            raise GlossaryJudgeError(f"Glossary judge request failed: {exc}") from exc

        try:
            return parse_judge_decisions(parse_model_response(content))
        except ResponseParseError as exc:
            self.logger.error(
                "parse_judge_response_failed",
                {"type": "glossary_judge", "error": str(exc), "response": content},
            )
            raise GlossaryJudgeError(f"Glossary judge response parse failed: {exc}") from exc

    # --- Side channels ----------------------------------------------------

    def _warn(self, event: str, message: str, payload: Any) -> None:
        self.stats.records.append(
            ErrorRecord(event=event, message=message, details=json.dumps(payload, ensure_ascii=False, default=str))
        )
        self.logger.warn(event, payload)
        self._notify(message)

    @staticmethod
    def _report(on_progress: Optional[ProgressCallback], update: ProgressUpdate) -> None:
        if on_progress is not None:
            on_progress(update)


async def translate_markdown(
    source: str,
    *,
    config: TranslatorConfig,
    provider: ChatProvider,
    glossary: Optional[Mapping[str, str]] = None,
    prompts: Optional[PromptSet] = None,
    on_progress: Optional[ProgressCallback] = None,
    logger: Optional[EventLogger] = None,
    translate_code_blocks: bool = False,
    report_progress: bool = True,
    policy: Optional[RetryPolicy] = None,
    sleep: Sleeper = asyncio.sleep,
    notify: Notifier = print_notice,
    stats: Optional[TranslationStats] = None,
) -> str:
    """Translate a Markdown document, preserving its structure.

    Fenced blocks that hold Markdown are translated by a recursive call when
    ``translate_code_blocks`` is set; nested runs never report progress.
    """

    config = config.normalized()
    document = MarkdownDocument(source)
    code_blocks = document.extract_markdown_code_blocks() if translate_code_blocks else []
    segments = document.extract_segments()
    progress = on_progress if report_progress else None

    if not segments and not code_blocks:
        TranslationEngine._report(progress, ProgressUpdate(done=1, total=1))
        return source

    run_stats = stats if stats is not None else TranslationStats()
    engine = TranslationEngine(
        config=config,
        provider=provider,
        prompts=prompts or PromptSet(),
        glossary_entries=build_glossary_entries(glossary or {}),
        logger=logger,
        policy=policy,
        sleep=sleep,
        notify=notify,
        stats=run_stats,
    )
    translations = await engine.translate_segments(segments, progress)
    for segment, value in zip(segments, translations):
        segment.apply(value)

    for block in code_blocks:
        inner = await translate_markdown(
            block.content,
            config=config,
            provider=provider,
            glossary=glossary,
            prompts=prompts,
            logger=logger,
            translate_code_blocks=translate_code_blocks,
            report_progress=False,
            policy=policy,
            sleep=sleep,
            notify=notify,
            stats=run_stats,
        )
        block.apply(match_trailing_newline(block.content, inner))

    return document.render()


@dataclass
class TranslationSummary:
    """Report returned after processing a document."""

    input_path: pathlib.Path
    output_path: Optional[pathlib.Path]
    total_segments: int
    total_batches: int
    singleton_fallbacks: int
    model: str
    target_language: str
    source_language: str
    elapsed_seconds: float
    warnings: List[str] = field(default_factory=list)


class TranslationRunner:
    """Reads a Markdown file, translates it and writes the result."""

    def __init__(
        self,
        *,
        input_path: pathlib.Path,
        output_path: Optional[pathlib.Path],
        config: TranslatorConfig,
        provider: ChatProvider,
        glossary: Optional[Mapping[str, str]] = None,
        prompts: Optional[PromptSet] = None,
        logger: Optional[EventLogger] = None,
        translate_code_blocks: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        verbose: bool = False,
    ) -> None:
        self.input_path = input_path
        self.output_path = output_path
        self.config = config
        self.provider = provider
        self.glossary = glossary or {}
        self.prompts = prompts or PromptSet()
        self.logger = logger
        self.translate_code_blocks = translate_code_blocks
        self.on_progress = on_progress
        self.verbose = verbose

    async def run(self) -> tuple[str, TranslationSummary]:
        """Translate the input file; ``output_path`` None means no file is written."""

        start_time = time.time()
        source = self.input_path.read_text(encoding="utf-8")
        stats = TranslationStats()

        output = await translate_markdown(
            source,
            config=self.config,
            provider=self.provider,
            glossary=self.glossary,
            prompts=self.prompts,
            on_progress=self.on_progress,
            logger=self.logger,
            translate_code_blocks=self.translate_code_blocks,
            stats=stats,
        )

        if self.output_path is not None:
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
            self.output_path.write_text(output, encoding="utf-8")

        if self.verbose:
            print_notice(
                f"Translated {stats.segments} segments in {stats.batches} batches "
                f"from {self.input_path}."
            )

        summary = TranslationSummary(
            input_path=self.input_path,
            output_path=self.output_path,
            total_segments=stats.segments,
            total_batches=stats.batches,
            singleton_fallbacks=stats.singleton_fallbacks,
            model=self.config.model,
            target_language=self.config.target_language,
            source_language=self.config.source_language,
            elapsed_seconds=time.time() - start_time,
            warnings=[record.message for record in stats.records],
        )
        return output, summary


def validate_paths(
    input_path: pathlib.Path,
    output_path: Optional[pathlib.Path],
    force_overwrite: bool,
) -> None:
    """Validate input/output path combinations and overwrite policy."""

    if not input_path.exists():
        raise FileNotFoundError(
            "Input file not found. Please provide a readable Markdown file."
        )
    if not input_path.is_file():
        raise MdTranslateError("Input path must be a file.")
    ensure_markdown_path(input_path)

    if output_path is None:
        return
    if input_path.resolve() == output_path.resolve():
        raise OverwriteRefusedError(
            "The output path matches the input document. Refusing to overwrite the source file."
        )
    if output_path.exists() and not force_overwrite:
        raise OverwriteRefusedError(
            "The output file already exists, rename it or use the overwrite flag."
        )
