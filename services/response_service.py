"""
Response Service Module

Drafts, edits, dismisses and posts replies to opportunities.

Generation is a two-stage pipeline:
1. Analysis: extract keywords and topic from the opportunity text
2. Knowledge search with those keywords (failures degrade to no snippets)
3. Generation: draft the reply from profile, snippets and constraints
4. Constraint validation: drafts over the platform limit are never stored

Each generated draft gets the next version number for its opportunity.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from config import settings
from data.models import (
    KnowledgeChunk, Opportunity, OpportunityAnalysis, OpportunityStatus, PlatformConstraints,
    Profile, Response, ResponseMetadata, ResponseStatus
)
from data.protocols import EngagementStore
from services.protocols import ContentSource, GenerationClient, KnowledgeSearchClient
from utils.exceptions import (
    DuplicateKeyError, InvalidStateError, NotFoundError, OperationCancelledError, ValidationError
)
from utils.helpers import KeyedLocks, retry_with_backoff, truncate_text, utc_now
from utils.logger import get_logger, sanitize_error
from utils.prompt_builder import build_analysis_prompt, build_generation_prompt
from utils.response_validators import (
    validate_constraints, validate_post_result, validate_response_for_posting
)

# Concurrent writers on another process can still claim a version first
_VERSION_INSERT_ATTEMPTS = 3


class PipelineStage(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    SEARCHING = "searching"
    GENERATING = "generating"
    VALIDATING = "validating"
    DONE = "done"


@dataclass
class GenerationRun:
    """Progress and timings of one generate_response call."""
    opportunity_id: str
    version: int
    stage: PipelineStage = PipelineStage.IDLE
    started: float = field(default_factory=time.monotonic)
    timings_ms: Dict[str, int] = field(default_factory=dict)
    _stage_started: float = 0.0

    def enter(self, stage: PipelineStage) -> None:
        now = time.monotonic()
        if self.stage != PipelineStage.IDLE:
            self.timings_ms[self.stage.value] = int((now - self._stage_started) * 1000)
        self.stage = stage
        self._stage_started = now

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class ResponseService:
    """Service for AI-drafted replies and their lifecycle."""

    def __init__(self, store: EngagementStore, generation_client: GenerationClient,
                 knowledge_client: Optional[KnowledgeSearchClient], source: ContentSource,
                 clock: Optional[Callable[[], datetime]] = None,
                 logger: Optional[logging.Logger] = None,
                 sleep: Optional[Callable[[float], None]] = None,
                 max_attempts: int = settings.GENERATION_MAX_ATTEMPTS,
                 base_delay: float = settings.GENERATION_BASE_DELAY_SECONDS):
        self._store = store
        self._generation = generation_client
        self._knowledge = knowledge_client
        self._source = source
        self._clock = clock or utc_now
        self._log = logger or get_logger(__name__)
        self._sleep = sleep
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._opportunity_locks = KeyedLocks()

    # =========================================================================
    # Generation
    # =========================================================================

    def generate_response(self, opportunity_id: str, account_id: str, profile_id: str,
                          cancel_event: Optional[threading.Event] = None) -> Response:
        """
        Generate a new draft reply for an opportunity.

        Args:
            opportunity_id: Opportunity to respond to
            account_id: Account the draft belongs to
            profile_id: Profile supplying voice and principles
            cancel_event: Set it to abort the run, including a pending backoff wait

        Returns:
            Response: The stored draft with the next version number

        Raises:
            NotFoundError: Opportunity or profile missing
            InvalidStateError: Opportunity is no longer pending or has expired
            ConstraintViolationError: Draft exceeds the platform length limit
            GenerationError: Analysis or generation failed after all attempts
            OperationCancelledError: cancel_event was set
        """
        opportunity = self._store.get_opportunity(opportunity_id)
        if opportunity is None:
            raise NotFoundError("Opportunity", opportunity_id)

        profile = self._store.get_profile(profile_id)
        if profile is None:
            raise NotFoundError("Profile", profile_id)

        self._ensure_accepting_responses(opportunity, action="generate a response for")

        with self._opportunity_locks.get(opportunity_id):
            version = self._store.max_response_version(opportunity_id) + 1
            run = GenerationRun(opportunity_id=opportunity_id, version=version)
            try:
                response = self._run_pipeline(run, opportunity, account_id, profile, cancel_event)
            except Exception as e:
                self._log.error(f"Generation for {opportunity_id} v{version} failed at "
                                f"{run.stage.value}: {sanitize_error(e)}")
                raise

        self._log.info(f"Draft v{response.version} stored for opportunity {opportunity_id} "
                       f"({len(response.text)} chars, {response.metadata.kb_chunks_used} snippets, "
                       f"{response.metadata.generation_time_ms}ms)")
        return response

    def _run_pipeline(self, run: GenerationRun, opportunity: Opportunity, account_id: str,
                      profile: Profile, cancel_event: Optional[threading.Event]) -> Response:
        constraints = self._source.get_constraints()

        self._advance(run, PipelineStage.ANALYZING, cancel_event)
        analysis_prompt = build_analysis_prompt(opportunity.text)
        analysis: OpportunityAnalysis = self._with_retry(
            lambda: self._generation.analyze(analysis_prompt), "analysis", cancel_event)
        self._log.debug(f"Analysis: topic={analysis.main_topic!r} keywords={analysis.keywords}")

        self._advance(run, PipelineStage.SEARCHING, cancel_event)
        chunks = self._search_knowledge(analysis.keywords)

        self._advance(run, PipelineStage.GENERATING, cancel_event)
        generation_prompt = build_generation_prompt(profile, chunks, constraints, opportunity.text)
        text = self._with_retry(
            lambda: self._generation.generate(generation_prompt), "generation", cancel_event)

        self._advance(run, PipelineStage.VALIDATING, cancel_event)
        validate_constraints(text, constraints)

        metadata = self._build_metadata(run, analysis, chunks, constraints, profile)
        response = self._insert_draft(run, opportunity.id, account_id, text, metadata)
        run.enter(PipelineStage.DONE)
        return response

    def _advance(self, run: GenerationRun, stage: PipelineStage,
                 cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError(f"Generation cancelled before {stage.value}")
        run.enter(stage)
        self._log.debug(f"[{run.opportunity_id} v{run.version}] {stage.value}")

    def _with_retry(self, func, stage_name: str, cancel_event: Optional[threading.Event]):
        def on_retry(attempt, error, delay):
            self._log.warning(f"{stage_name.capitalize()} attempt {attempt}/{self.max_attempts} failed: "
                              f"{sanitize_error(error)}. Retrying in {delay:g}s")

        return retry_with_backoff(
            func,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            cancel_event=cancel_event,
            sleep=self._sleep,
            on_retry=on_retry
        )

    def _search_knowledge(self, keywords: List[str]) -> List[KnowledgeChunk]:
        """Query the knowledge index; any failure means no snippets, never an aborted run."""
        if self._knowledge is None:
            return []
        try:
            return self._knowledge.search(keywords)
        except Exception as e:
            self._log.warning(f"Knowledge search unavailable, continuing without snippets: "
                              f"{sanitize_error(e)}")
            return []

    def _build_metadata(self, run: GenerationRun, analysis: OpportunityAnalysis,
                        chunks: List[KnowledgeChunk], constraints: PlatformConstraints,
                        profile: Profile) -> ResponseMetadata:
        return ResponseMetadata(
            analysis_keywords=list(analysis.keywords),
            main_topic=analysis.main_topic,
            domain=analysis.domain,
            question=analysis.question,
            kb_chunks_used=len(chunks),
            max_length=constraints.max_length,
            model=getattr(self._generation, "model_name", "unknown"),
            generation_time_ms=run.elapsed_ms(),
            analysis_time_ms=run.timings_ms.get(PipelineStage.ANALYZING.value, 0),
            search_time_ms=run.timings_ms.get(PipelineStage.SEARCHING.value, 0),
            response_time_ms=run.timings_ms.get(PipelineStage.GENERATING.value, 0),
            used_principles=bool(profile.principles),
            used_voice=bool(profile.voice and profile.voice.style)
        )

    def _insert_draft(self, run: GenerationRun, opportunity_id: str, account_id: str,
                      text: str, metadata: ResponseMetadata) -> Response:
        for attempt in range(1, _VERSION_INSERT_ATTEMPTS + 1):
            now = self._clock()
            response = Response(
                opportunity_id=opportunity_id,
                account_id=account_id,
                text=text,
                version=run.version,
                metadata=metadata,
                generated_at=now,
                status=ResponseStatus.DRAFT,
                updated_at=now
            )
            try:
                self._store.insert_response(response)
                return response
            except DuplicateKeyError:
                if attempt == _VERSION_INSERT_ATTEMPTS:
                    raise
                run.version = self._store.max_response_version(opportunity_id) + 1
                self._log.warning(f"Version taken for {opportunity_id}, retrying as v{run.version}")

    # =========================================================================
    # Draft lifecycle
    # =========================================================================

    def get_responses(self, opportunity_id: str) -> List[Response]:
        """All versions for an opportunity, oldest first."""
        return self._store.list_responses(opportunity_id)

    def _get_response(self, response_id: str) -> Response:
        response = self._store.get_response(response_id)
        if response is None:
            raise NotFoundError("Response", response_id)
        return response

    def update_response(self, response_id: str, text: str) -> Response:
        """
        Replace the text of a draft.

        Raises:
            NotFoundError: Response missing
            InvalidStateError: Response is not a draft
            ValidationError: Text is empty
        """
        if not text or not text.strip():
            raise ValidationError("Response text cannot be empty")

        response = self._get_response(response_id)
        if response.status != ResponseStatus.DRAFT:
            raise InvalidStateError(response.status.value, ResponseStatus.DRAFT.value, action="update")

        now = self._clock()
        if not self._store.update_response_text(response_id, text, now):
            current = self._get_response(response_id)
            raise InvalidStateError(current.status.value, ResponseStatus.DRAFT.value, action="update")

        response.text = text
        response.updated_at = now
        self._log.info(f"Response {response_id} updated ({len(text)} chars)")
        return response

    def dismiss_response(self, response_id: str) -> Response:
        """Mark a draft as dismissed. The record is kept."""
        response = self._get_response(response_id)
        if response.status != ResponseStatus.DRAFT:
            raise InvalidStateError(response.status.value, ResponseStatus.DRAFT.value, action="dismiss")

        now = self._clock()
        if not self._store.dismiss_response(response_id, now):
            current = self._get_response(response_id)
            raise InvalidStateError(current.status.value, ResponseStatus.DRAFT.value, action="dismiss")

        response.status = ResponseStatus.DISMISSED
        response.dismissed_at = now
        response.updated_at = now
        self._log.info(f"Response {response_id} dismissed")
        return response

    def post_response(self, response_id: str) -> Response:
        """
        Publish a draft as a reply on the platform.

        The response becomes 'posted' and its opportunity 'responded' in a
        single store operation once the platform has accepted the post.

        Returns:
            Response: The posted response with platform id, URL and posted_at

        Raises:
            NotFoundError: Response or opportunity missing
            InvalidStateError: Response is not a draft or the opportunity is closed
            ConstraintViolationError: Text exceeds the platform limit
            PlatformError: The platform rejected the post
            ValidationError: The platform returned an incomplete result
        """
        response = self._get_response(response_id)
        validate_response_for_posting(response)

        opportunity = self._store.get_opportunity(response.opportunity_id)
        if opportunity is None:
            raise NotFoundError("Opportunity", response.opportunity_id)
        self._ensure_accepting_responses(opportunity, action="post a response to")

        validate_constraints(response.text, self._source.get_constraints())

        self._log.info(f"Posting response {response_id}: {truncate_text(response.text, 60)}")
        try:
            result = self._source.post(opportunity.post_id, response.text)
        except Exception as e:
            self._log.error(f"Posting response {response_id} failed: {sanitize_error(e)}")
            raise
        validate_post_result(result)

        if not self._store.mark_response_posted(response_id, result.post_id,
                                                result.post_url, result.posted_at):
            current = self._get_response(response_id)
            self._log.error(f"Reply {result.post_id} is live but response {response_id} "
                            f"could not be marked posted (status {current.status.value})")
            raise InvalidStateError(current.status.value, ResponseStatus.DRAFT.value, action="post")

        parent = self._store.get_opportunity(response.opportunity_id)
        if parent is not None and parent.status != OpportunityStatus.RESPONDED:
            self._log.warning(f"Reply {result.post_id} went live after opportunity "
                              f"{parent.id} became {parent.status.value}; status kept")

        response.status = ResponseStatus.POSTED
        response.posted_at = result.posted_at
        response.updated_at = result.posted_at
        response.platform_post_id = result.post_id
        response.platform_post_url = result.post_url
        self._log.info(f"Response {response_id} posted: {result.post_url}")
        return response

    def _ensure_accepting_responses(self, opportunity: Opportunity, action: str) -> None:
        if opportunity.status != OpportunityStatus.PENDING:
            raise InvalidStateError(opportunity.status.value, OpportunityStatus.PENDING.value,
                                    action=action, entity="opportunity")
        if opportunity.is_expired(self._clock()):
            raise InvalidStateError(OpportunityStatus.EXPIRED.value, OpportunityStatus.PENDING.value,
                                    action=action, entity="opportunity")
