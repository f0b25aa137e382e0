"""Assistant engine - the turn pipeline and session-level operations.

user turn -> classify -> route/execute tools -> extract draft
          -> confirmation update -> one store write

Every operation runs under the session's lock and ends in at most one
``save(expected_version)``. A fatal tool failure or a cancellation ends the
turn before the write, so the stored session is never partially updated.
"""

import logging
from uuid import UUID, uuid4

from redis.asyncio import Redis

from backend.app.adapters.platform import FixturePlatformGateway, PlatformGateway
from backend.app.config import Settings
from backend.app.db.engine import create_session_factory, get_async_engine
from backend.app.db.inmemory import InMemorySessionRepository
from backend.app.db.locks import InMemorySessionLockManager, RedisSessionLockManager, SessionLockManager
from backend.app.db.repositories import SessionRepository
from backend.app.db.sql_repositories import SqlSessionRepository
from backend.app.errors import (
    ClassificationLowConfidence,
    ExtractionIncomplete,
    InvalidTransitionError,
    ModuleActionRequired,
    ToolInvocationFailure,
    TurnCancelledError,
)
from backend.app.llm.client import LLMClient, build_llm_client
from backend.app.models.common import (
    ConfirmationPhase,
    DataType,
    MessageRole,
    ModuleAction,
    SessionStatus,
    UseCase,
)
from backend.app.models.drafts import DraftRecord, section_slice
from backend.app.models.intent import IntentResult
from backend.app.models.session import Session, ToolInvocation
from backend.app.models.tools import ToolRequest
from backend.app.models.turns import (
    ConfirmationPrompt,
    CreateSessionRequest,
    DraftActionResponse,
    ModuleStateResponse,
    SectionsPatch,
    SectionsResponse,
    SessionView,
    TurnResponse,
)
from backend.app.orchestration.classifier import IntentClassifier
from backend.app.orchestration.confirmation import ConfirmationController
from backend.app.orchestration.context import authoritative_section, build_labelled_context
from backend.app.orchestration.extractor import StructuredExtractor
from backend.app.orchestration.router import ToolRouter
from backend.app.orchestration.sequencer import MODULE_DATA_TYPES, ModuleSequencer, modules_from_config
from backend.app.orchestration.state import TurnState
from backend.app.tools.catalog import build_default_registry
from backend.app.tools.executor import BreakerRegistry, CancelToken, ToolCancelledError, ToolConfig, ToolExecutor
from backend.app.utils.logging import StructuredToolLogger
from backend.app.utils.metrics import PrometheusToolMetrics, record_turn

logger = logging.getLogger(__name__)

# Draft type a use case gathers outside onboarding
USE_CASE_DATA_TYPES: dict[UseCase, DataType] = {
    UseCase.register: DataType.journey_summary,
    UseCase.improve_profile: DataType.profile_summary,
}

# Module actions that write to the user's account
OWNER_REQUIRED_ACTIONS = frozenset({"update_user_profile", "create_boat"})

CLARIFYING_REPLY = (
    "I'm not sure what you'd like to do. Are you looking for sailing trips, "
    "improving your profile, or registering for a leg?"
)
UNAVAILABLE_REPLY = "Posting crew demands and alerts isn't available yet. I can help you search for trips instead."


class AssistantEngine:
    """Runs turns and draft/module/section operations against the session store."""

    def __init__(
        self,
        *,
        repository: SessionRepository,
        locks: SessionLockManager,
        llm: LLMClient,
        classifier: IntentClassifier,
        router: ToolRouter,
        extractor: StructuredExtractor,
        controller: ConfirmationController,
        sequencer: ModuleSequencer,
        invocation_retention: int | None = None,
    ) -> None:
        self.repository = repository
        self.locks = locks
        self.llm = llm
        self.classifier = classifier
        self.router = router
        self.extractor = extractor
        self.controller = controller
        self.sequencer = sequencer
        self.invocation_retention = invocation_retention

    # Sessions

    async def create_session(self, owner_id: UUID | None, request: CreateSessionRequest | None = None) -> Session:
        request = request or CreateSessionRequest()
        session = await self.repository.create(
            owner_id,
            skipper_profile=request.skipper_profile,
            crew_requirements=request.crew_requirements,
            journey_details=request.journey_details,
        )
        if request.start_onboarding:
            session = await self.repository.save(self.sequencer.start(session), session.version)
        logger.info(f"[session] created {session.id} owner={owner_id}")
        return session

    async def get_view(self, session_id: UUID) -> SessionView:
        """Session plus confirmation prompts, disabled while a turn holds the lock."""
        session = await self.repository.load(session_id)
        disabled = await self.locks.is_held(session_id)
        return SessionView(
            session=session,
            confirmations=[self.controller.prompt_for(d, disabled=disabled) for d in session.open_drafts()],
        )

    async def link_owner(self, session_id: UUID, owner_id: UUID, expected_version: int) -> Session:
        async with self.locks.hold(session_id):
            return await self.repository.link_owner(session_id, owner_id, expected_version)

    # Sections

    async def get_sections(self, session_id: UUID) -> SectionsResponse:
        session = await self.repository.load(session_id)
        return _sections_response(session)

    async def patch_sections(self, session_id: UUID, patch: SectionsPatch) -> SectionsResponse:
        """Replace the sections present in the patch; omitted ones are untouched."""
        async with self.locks.hold(session_id):
            session = await self.repository.load(session_id)
            for label in session.sections():
                if label.value in patch.model_fields_set:
                    session = session.with_section(label, getattr(patch, label.value))
            saved = await self.repository.save(session, patch.expected_version)
        return _sections_response(saved)

    # Turns

    async def handle_turn(
        self, session_id: UUID, message: str, cancel_token: CancelToken | None = None
    ) -> TurnResponse:
        """Process one user turn end to end.

        Raises:
            SessionNotFound: Unknown or expired session
            SessionBusyError: Another turn kept the session locked too long
            ToolInvocationFailure: A fatal tool failed; nothing was written
            TurnCancelledError: Cancelled before the write; nothing was written
            VersionConflict: The session changed underneath the turn
        """
        async with self.locks.hold(session_id):
            session = await self.repository.load(session_id)
            state = TurnState(
                session=session,
                latest_turn=message,
                expected_version=session.version,
                cancel_token=cancel_token or CancelToken(),
            )
            try:
                intent = await self._run_turn(state)
                if state.cancel_token.cancelled:
                    raise TurnCancelledError("Turn cancelled before commit", session_id=session_id)
            except ToolCancelledError as e:
                record_turn(state.use_case_label, "cancelled", state.elapsed_ms)
                raise TurnCancelledError("Turn cancelled during tool execution", session_id=session_id) from e
            except TurnCancelledError:
                record_turn(state.use_case_label, "cancelled", state.elapsed_ms)
                raise
            except ToolInvocationFailure:
                record_turn(state.use_case_label, "tool_failure", state.elapsed_ms)
                raise

            saved = await self.repository.save(state.session, state.expected_version)

        record_turn(state.use_case_label, "ok", state.elapsed_ms)
        confirmation = None
        if state.draft_id is not None:
            draft = saved.get_draft(state.draft_id)
            if draft is not None and draft.is_open:
                confirmation = self.controller.prompt_for(draft)
        return TurnResponse(
            session_id=saved.id,
            version=saved.version,
            status=saved.status,
            message=saved.conversation[-1],
            intent=intent,
            tool_invocations=state.outcome.invocations,
            confirmation=confirmation,
            notices=state.notices,
        )

    async def _run_turn(self, state: TurnState) -> IntentResult:
        session = state.session
        logger.info(f"[turn] session={session.id} turn={state.turn_id}")

        # Classify against the history before this turn
        intent = await self.classifier.classify(session, state.latest_turn)
        state.intent = intent
        state.session = session.with_message(MessageRole.user, state.latest_turn)

        module = self.sequencer.current_module(state.session)
        module_data_type = MODULE_DATA_TYPES.get(module.id) if module else None
        use_case = intent.use_case

        if use_case == UseCase.post_demand_or_alert:
            self._finish(state, UNAVAILABLE_REPLY)
            return intent

        if use_case == UseCase.unknown:
            try:
                state.data_type = self._unclassified_data_type(state, intent, module_data_type)
            except ClassificationLowConfidence as e:
                logger.info(f"[turn] {e.message}, asking to clarify")
                self._finish(state, CLARIFYING_REPLY)
                return intent
        else:
            state.requests = await self.router.route(use_case, state.session, state.latest_turn)
            state.outcome = await self.router.execute(
                state.requests,
                session_id=state.session_id,
                turn_id=state.turn_id,
                use_case=use_case,
                cancel_token=state.cancel_token,
            )
            if state.outcome.fatal_failures:
                failed = state.outcome.fatal_failures[0]
                raise ToolInvocationFailure(
                    f"{failed.tool_name} failed; please try again",
                    session_id=state.session.id,
                    tool_name=failed.tool_name,
                    reason=failed.failure.reason if failed.failure else "",
                )
            for inv in state.outcome.recoverable_failures:
                state.notices.append(
                    {
                        "type": "partial_results",
                        "tool_name": inv.tool_name,
                        "reason": inv.failure.reason if inv.failure else "",
                    }
                )
            state.data_type = module_data_type or USE_CASE_DATA_TYPES.get(use_case)
            state.session = state.session.model_copy(update={"last_use_case": use_case})

        if state.data_type is not None:
            await self._update_draft(state, state.data_type)

        state.cancel_token.throw_if_cancelled()
        confirmation = None
        if state.draft_id is not None:
            draft = state.session.get_draft(state.draft_id)
            if draft is not None:
                confirmation = self.controller.prompt_for(draft)
        reply = await self.llm.compose_reply(
            use_case=use_case,
            latest_turn=state.latest_turn,
            invocations=state.outcome.invocations,
            confirmation=confirmation,
            missing_fields=state.missing_fields,
            stored_context=build_labelled_context(state.session, state.data_type),
        )
        self._finish(state, reply)
        return intent

    async def _update_draft(self, state: TurnState, data_type: DataType) -> None:
        """Create or refine the draft for the turn's data type, then try to present it."""
        session = state.session
        open_draft = session.open_draft(data_type)

        if open_draft is not None:
            session = await self.controller.request_edit(
                session, open_draft.id, state.latest_turn, state.outcome.invocations
            )
            draft_id = open_draft.id
        else:
            draft = await self.extractor.extract(
                data_type,
                session.conversation,
                state.outcome.invocations,
                section=section_slice(data_type, session.section(authoritative_section(data_type))),
            )
            session = self.controller.propose(session, draft)
            draft_id = draft.id

        try:
            session = self.controller.present(session, draft_id)
        except ExtractionIncomplete as e:
            state.missing_fields = e.missing_fields
            logger.info(f"[turn] draft {draft_id} incomplete, asking for {e.missing_fields}")

        state.session = session
        state.draft_id = draft_id

    def _unclassified_data_type(
        self, state: TurnState, intent: IntentResult, module_data_type: DataType | None
    ) -> DataType:
        """Draft type an unclassified turn feeds: the pending draft, else the current module's."""
        pending = self._pending_draft(state.session, module_data_type)
        if pending is not None:
            return pending.data_type
        if module_data_type is not None:
            return module_data_type
        raise ClassificationLowConfidence(
            f"Low confidence ({intent.confidence:.2f}) and nothing pending",
            session_id=state.session.id,
            confidence=intent.confidence,
        )

    @staticmethod
    def _pending_draft(session: Session, module_data_type: DataType | None) -> DraftRecord | None:
        """Open draft an unclassified turn most likely refers to."""
        if module_data_type is not None:
            return session.open_draft(module_data_type)
        drafts = session.open_drafts()
        return max(drafts, key=lambda d: d.updated_at) if drafts else None

    def _finish(self, state: TurnState, reply: str) -> None:
        state.reply = reply
        state.session = state.session.with_message(
            MessageRole.assistant, reply, state.outcome.invocations, keep_invocations=self.invocation_retention
        )

    # Drafts

    async def confirm_draft(self, session_id: UUID, draft_id: UUID) -> DraftActionResponse:
        async with self.locks.hold(session_id):
            session = await self.repository.load(session_id)
            confirmed = self.controller.confirm(session, draft_id)
            if confirmed is not session:
                session = await self.repository.save(confirmed, session.version)
        return _draft_response(session, draft_id)

    async def edit_draft(self, session_id: UUID, draft_id: UUID, feedback: str) -> DraftActionResponse:
        """Refine a draft from feedback; presents it again if complete."""
        async with self.locks.hold(session_id):
            session = await self.repository.load(session_id)
            edited = await self.controller.request_edit(session, draft_id, feedback)
            missing: list[str] = []
            try:
                edited = self.controller.present(edited, draft_id)
            except ExtractionIncomplete as e:
                missing = e.missing_fields
            saved = await self.repository.save(edited, session.version)
        response = _draft_response(saved, draft_id)
        response.missing_fields = missing
        return response

    async def cancel_draft(self, session_id: UUID, draft_id: UUID) -> DraftActionResponse:
        async with self.locks.hold(session_id):
            session = await self.repository.load(session_id)
            discarded = self.controller.discard(session, draft_id)
            if discarded is not session:
                session = await self.repository.save(discarded, session.version)
        return _draft_response(session, draft_id)

    # Modules

    async def advance_module(self, session_id: UUID, action: ModuleAction) -> ModuleStateResponse:
        """Skip, Next or Back on the current onboarding module.

        Next runs the module's bound tool with the latest confirmed draft of
        the module's data type. An anonymous session asked to save account
        data moves to awaiting-auth instead of advancing.
        """
        async with self.locks.hold(session_id):
            session = await self.repository.load(session_id)
            expected = session.version
            invocation: ToolInvocation | None = None

            module = self.sequencer.current_module(session)
            if action == ModuleAction.next and module is not None:
                if module.action in OWNER_REQUIRED_ACTIONS and session.owner_id is None:
                    logger.info(f"[modules] {module.id} needs an owner, session {session.id} awaiting auth")
                    saved = await self.repository.save(
                        session.model_copy(update={"status": SessionStatus.awaiting_auth}), expected
                    )
                    return self._module_response(saved, None)

                invocation = await self._run_module_action(session, module.id, module.action)
                session = session.with_message(
                    MessageRole.tool,
                    f"{module.action} completed for module {module.id}",
                    [invocation],
                    keep_invocations=self.invocation_retention,
                )
                session = self.sequencer.advance(session, action, action_succeeded=True)
            else:
                session = self.sequencer.advance(session, action)

            saved = await self.repository.save(session, expected)
        return self._module_response(saved, invocation)

    async def _run_module_action(self, session: Session, module_id: str, tool_name: str) -> ToolInvocation:
        data_type = MODULE_DATA_TYPES[module_id]
        confirmed = [
            d for d in session.drafts if d.data_type == data_type and d.phase == ConfirmationPhase.persisted
        ]
        if not confirmed:
            raise ModuleActionRequired(
                f"Confirm a {data_type.value} before continuing",
                session_id=session.id,
                module_id=module_id,
                data_type=data_type.value,
            )
        arguments = dict(max(confirmed, key=lambda d: d.updated_at).fields)
        if tool_name in OWNER_REQUIRED_ACTIONS:
            arguments["owner_id"] = str(session.owner_id)

        outcome = await self.router.execute(
            [ToolRequest(tool_name=tool_name, arguments=arguments)],
            session_id=str(session.id),
            turn_id=uuid4().hex,
            module_id=module_id,
        )
        invocation = outcome.invocations[0]
        if invocation.failure is not None:
            raise ToolInvocationFailure(
                f"{tool_name} failed; please try again",
                session_id=session.id,
                tool_name=tool_name,
                module_id=module_id,
                reason=invocation.failure.reason,
            )
        return invocation

    def _module_response(self, session: Session, invocation: ToolInvocation | None) -> ModuleStateResponse:
        return ModuleStateResponse(
            session_id=session.id,
            version=session.version,
            status=session.status,
            current_module=self.sequencer.current_module(session),
            modules=session.modules.ordered() if session.modules else [],
            tool_invocation=invocation,
        )


def _sections_response(session: Session) -> SectionsResponse:
    return SectionsResponse(
        session_id=session.id,
        version=session.version,
        skipper_profile=session.skipper_profile,
        crew_requirements=session.crew_requirements,
        journey_details=session.journey_details,
    )


def _draft_response(session: Session, draft_id: UUID) -> DraftActionResponse:
    draft = session.get_draft(draft_id)
    if draft is None:
        raise InvalidTransitionError(f"Draft {draft_id} vanished", session_id=session.id, draft_id=draft_id)
    confirmation: ConfirmationPrompt | None = None
    if draft.is_open:
        confirmation = ConfirmationController.prompt_for(draft)
    return DraftActionResponse(
        session_id=session.id,
        version=session.version,
        status=session.status,
        draft_id=draft.id,
        draft_status=draft.status.value,
        confirmation=confirmation,
        missing_fields=list(draft.missing_fields),
    )


def build_engine(
    settings: Settings,
    *,
    repository: SessionRepository | None = None,
    locks: SessionLockManager | None = None,
    llm: LLMClient | None = None,
    gateway: PlatformGateway | None = None,
    tool_config: ToolConfig | None = None,
    breakers: BreakerRegistry | None = None,
) -> AssistantEngine:
    """Wire an engine from settings; any collaborator can be passed in instead."""
    if repository is None:
        if settings.database_url:
            repository = SqlSessionRepository(
                create_session_factory(get_async_engine()), ttl_days=settings.session_ttl_days
            )
        else:
            repository = InMemorySessionRepository(ttl_days=settings.session_ttl_days)
    if locks is None:
        if settings.redis_url:
            locks = RedisSessionLockManager(
                Redis.from_url(settings.redis_url), timeout_sec=settings.session_lock_timeout_sec
            )
        else:
            locks = InMemorySessionLockManager()
    llm = llm or build_llm_client(settings)

    executor = ToolExecutor(
        tool_config or ToolConfig.from_settings(settings),
        metrics=PrometheusToolMetrics(),
        logger=StructuredToolLogger(),
        breakers=breakers,
    )
    router = ToolRouter(
        build_default_registry(gateway or FixturePlatformGateway()),
        executor,
        llm,
        window_messages=settings.classifier_window_messages,
    )
    extractor = StructuredExtractor(llm, window_messages=settings.extractor_window_messages)
    return AssistantEngine(
        repository=repository,
        locks=locks,
        llm=llm,
        classifier=IntentClassifier(
            llm,
            threshold=settings.classifier_confidence_threshold,
            window_messages=settings.classifier_window_messages,
        ),
        router=router,
        extractor=extractor,
        controller=ConfirmationController(extractor, settings.max_refinement_iterations),
        sequencer=ModuleSequencer(modules_from_config(settings.onboarding_modules)),
        invocation_retention=settings.tool_invocation_retention,
    )

