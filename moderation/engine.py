"""
Moderation - Decision Engine.

============================================================
PURPOSE
============================================================
Decides whether chat text may be processed and, on a
violation, applies the next enforcement action from the
escalation ladder, keeping the violation ledger in step.

============================================================
FAILURE POLICY
============================================================
- Classifier failure: fail OPEN (message is processed)
- Enforcement failure: reported in the outcome, never raised
- Ledger/log persistence failure: logged, never raised
- Ban lookup failure: fail OPEN (not banned)
- Invalid scope or configuration: rejected outcome

============================================================
SERIALISATION
============================================================
Violation handling for one (subject, scope) is serialised by a
keyed asyncio lock in-process. Across instances, the ledger row
is versioned and updated BEFORE the enforcement call; a losing
writer gets a conflict, reloads and retries without enforcing.

============================================================
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from core.clock import ClockProtocol, get_clock
from core.exceptions import ConfigurationError, EnforcementError
from core.identifiers import normalize_scope, normalize_subject, truncate
from core.locks import KeyedLock
from moderation.classifier import ContentClassifier
from moderation.config import EscalationStep, ModerationConfig, ModerationConfigResolver
from moderation.enforcement import EnforcementChannel
from moderation.models import ModerationActionLogRecord
from moderation.repository import ModerationLogRepository, ViolationRepository
from moderation.types import (
    BanStatus,
    ModerationAction,
    ModerationResult,
    ViolationEntry,
    ViolationOutcome,
    ViolationSummary,
    ViolationType,
)
from storage.repositories.exceptions import (
    ConcurrencyConflictError,
    DuplicateRecordError,
)


logger = logging.getLogger(__name__)


SAFE_FALLBACK_RESPONSE = (
    "I apologize, but I'm unable to provide a response to that question. "
    "Please feel free to ask me something else about video games!"
)

MESSAGE_EXCERPT_LIMIT = 500
USER_LOG_PREVIEW = 100
AI_LOG_PREVIEW = 200

DEFAULT_MAX_ATTEMPTS = 3


class ModerationEngine:
    """
    Moderation decision engine.

    Usage:
        engine = ModerationEngine(db.session_factory, classifier, enforcement)
        result = await engine.check_message_content(text, user, channel)
        if result.is_offensive:
            outcome = await engine.handle_violation(user, channel, result, text)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        classifier: ContentClassifier,
        enforcement: EnforcementChannel,
        config_resolver: Optional[ModerationConfigResolver] = None,
        clock: Optional[ClockProtocol] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self._session_factory = session_factory
        self._classifier = classifier
        self._enforcement = enforcement
        self._configs = config_resolver or ModerationConfigResolver()
        self._clock = clock or get_clock()
        self._max_attempts = max_attempts
        self._locks = KeyedLock()

    @property
    def configs(self) -> ModerationConfigResolver:
        return self._configs

    # =========================================================
    # CONTENT CHECKS
    # =========================================================

    async def check_message_content(
        self,
        text: str,
        subject_id: str,
        scope_id: str,
    ) -> ModerationResult:
        """
        Check a user message.

        Never raises. Disabled moderation returns clean without
        calling the classifier; classifier failures fail open.
        """
        subject = normalize_subject(subject_id)
        config = await self._config_or_none(scope_id)
        if config is None:
            return ModerationResult.clean("Moderation configuration unavailable")

        if not config.enabled:
            return ModerationResult.clean()

        verdict = await self._classify(text, subject, normalize_scope(scope_id), config)
        if verdict is None:
            return ModerationResult.clean("Moderation check failed, allowing message")

        if not verdict.is_offensive:
            return ModerationResult.clean()

        logger.warning(
            f"Offensive content from {subject} in {normalize_scope(scope_id)}: "
            f"terms={verdict.offending_terms} text={truncate(text, USER_LOG_PREVIEW)!r}"
        )
        return ModerationResult(
            is_offensive=True,
            offending_terms=list(verdict.offending_terms),
            should_process=False,
            reason=f"Message contains inappropriate content: {', '.join(verdict.offending_terms)}",
        )

    async def check_ai_response(
        self,
        text: str,
        subject_id: str,
        scope_id: str,
    ) -> ModerationResult:
        """
        Check a response the bot generated.

        A hit is logged for review but never touches the subject's
        violation ledger; the subject did not author the text.
        """
        subject = normalize_subject(subject_id)
        scope = normalize_scope(scope_id)
        config = await self._config_or_none(scope_id)
        if config is None:
            return ModerationResult.clean("Moderation configuration unavailable")

        if not config.enabled or not config.check_ai_responses:
            return ModerationResult.clean()

        verdict = await self._classify(text, subject, scope, config, source="ai")
        if verdict is None:
            return ModerationResult.clean("Moderation check failed, allowing message")

        if not verdict.is_offensive:
            return ModerationResult.clean()

        reason = "AI response contained inappropriate content"
        logger.warning(
            f"AI response flagged in {scope} (asked by {subject}): "
            f"terms={verdict.offending_terms} text={truncate(text, AI_LOG_PREVIEW)!r}"
        )

        if config.log_all_actions:
            await self._write_action_log(
                subject=subject,
                scope=scope,
                violation_type=ViolationType.AI_INAPPROPRIATE,
                offending_terms=verdict.offending_terms,
                message_content=text,
                action=ModerationAction.WARNING,
                duration_seconds=None,
                reason=reason,
                total_violations=0,
                success=True,
            )

        return ModerationResult(
            is_offensive=True,
            offending_terms=list(verdict.offending_terms),
            should_process=False,
            reason=reason,
        )

    async def sanitize_ai_response(
        self,
        text: str,
        subject_id: str,
        scope_id: str,
    ) -> Tuple[str, ModerationResult]:
        """Return the text to send (fallback if flagged) and the check result."""
        result = await self.check_ai_response(text, subject_id, scope_id)
        if result.is_offensive:
            return SAFE_FALLBACK_RESPONSE, result
        return text, result

    @staticmethod
    def should_process_message(result: ModerationResult) -> bool:
        return result.should_process

    @staticmethod
    def get_safe_fallback_response() -> str:
        return SAFE_FALLBACK_RESPONSE

    # =========================================================
    # VIOLATION HANDLING
    # =========================================================

    async def handle_violation(
        self,
        subject_id: str,
        scope_id: str,
        result: ModerationResult,
        message_text: str = "",
        violation_type: ViolationType = ViolationType.OFFENSIVE_CONTENT,
    ) -> ViolationOutcome:
        """
        Record a violation and apply the next enforcement action.

        Never raises. The outcome reports the action and whether
        the enforcement call succeeded.
        """
        subject = normalize_subject(subject_id)
        scope = normalize_scope(scope_id)

        if not subject:
            logger.error(f"Violation rejected: missing subject id (scope={scope!r})")
            return ViolationOutcome.rejected_result("Subject id is required")

        try:
            config = await self._configs.resolve(scope)
        except ConfigurationError as e:
            logger.error(f"Violation rejected for {subject} in {scope!r}: {e.message}")
            return ViolationOutcome.rejected_result(e.message)

        reason = self._build_reason(result)
        excerpt = truncate(message_text, MESSAGE_EXCERPT_LIMIT)

        if not self._enforcement.supports_enforcement(scope):
            return await self._warn_only(subject, scope, config, result, excerpt, reason, violation_type)

        async with self._locks.hold((subject, scope)):
            for attempt in range(1, self._max_attempts + 1):
                try:
                    return await self._escalate(
                        subject, scope, config, result, excerpt, reason, violation_type
                    )
                except (ConcurrencyConflictError, DuplicateRecordError) as e:
                    logger.warning(
                        f"Ledger conflict for {subject} in {scope} "
                        f"(attempt {attempt}/{self._max_attempts}): {e.message}"
                    )
                except Exception as e:
                    logger.error(
                        f"Violation ledger unavailable for {subject} in {scope}: {e}",
                        extra={"context": {"subject": subject, "scope": scope}},
                        exc_info=True,
                    )
                    return ViolationOutcome(
                        action=None,
                        success=False,
                        reason="Violation ledger unavailable",
                    )

        logger.error(f"Giving up on violation for {subject} in {scope} after conflicts")
        return ViolationOutcome(
            action=None,
            success=False,
            reason="Violation ledger conflict",
        )

    async def _escalate(
        self,
        subject: str,
        scope: str,
        config: ModerationConfig,
        result: ModerationResult,
        excerpt: str,
        reason: str,
        violation_type: ViolationType,
    ) -> ViolationOutcome:
        """
        One attempt: reserve the violation slot, enforce, finalise.

        Conflicts raised before enforcement propagate for retry.
        """
        async with self._session_factory() as session:
            repo = ViolationRepository(session)

            record = await repo.get(subject, scope)
            if record is None:
                record = await repo.create(subject, scope)

            if record.is_banned:
                logger.info(f"{subject} already banned in {scope}, no action taken")
                return ViolationOutcome(
                    action=None,
                    success=False,
                    total_violations=record.warning_count,
                    reason="Subject already banned",
                    already_banned=True,
                )

            total_violations = record.warning_count + 1
            step = config.action_for(total_violations)
            now = self._clock.now()

            event = repo.append_event(
                record,
                occurred_at=now,
                action=step.action.value,
                offending_terms=result.offending_terms,
                message_excerpt=excerpt,
                duration_seconds=step.duration_seconds,
            )
            record.warning_count = total_violations
            if step.action == ModerationAction.TIMEOUT:
                record.timeout_count += 1
                record.last_timeout_at = now
                record.last_timeout_duration = step.duration_seconds
            elif step.action == ModerationAction.BAN:
                record.is_banned = True
                record.banned_at = now
                record.ban_reason = reason

            # Conflicts surface here, before anything is enforced
            await repo.save("reserve_violation")

            success, error = await self._apply(step, subject, scope, reason)
            event.success = success

            try:
                await repo.commit()
            except Exception as e:
                logger.error(
                    f"Failed to persist violation for {subject} in {scope}: {e}",
                    extra={"context": {"action": step.action.value}},
                    exc_info=True,
                )

        logger.info(
            f"Moderation {step.action.value} for {subject} in {scope} "
            f"(violation #{total_violations}, duration={step.duration_seconds}, "
            f"success={success})"
        )

        if config.log_all_actions:
            await self._write_action_log(
                subject=subject,
                scope=scope,
                violation_type=violation_type,
                offending_terms=result.offending_terms,
                message_content=excerpt,
                action=step.action,
                duration_seconds=step.duration_seconds,
                reason=reason,
                total_violations=total_violations,
                success=success,
                error_message=error,
            )

        return ViolationOutcome(
            action=step.action,
            success=success,
            total_violations=total_violations,
            duration_seconds=step.duration_seconds,
            reason=reason,
        )

    async def _warn_only(
        self,
        subject: str,
        scope: str,
        config: ModerationConfig,
        result: ModerationResult,
        excerpt: str,
        reason: str,
        violation_type: ViolationType,
    ) -> ViolationOutcome:
        """Scopes without timeout/ban primitives only ever get a warning."""
        step = EscalationStep(ModerationAction.WARNING)
        success, error = await self._apply(step, subject, scope, reason)

        logger.info(f"Moderation warning for {subject} in {scope} (warning-only scope)")

        if config.log_all_actions:
            await self._write_action_log(
                subject=subject,
                scope=scope,
                violation_type=violation_type,
                offending_terms=result.offending_terms,
                message_content=excerpt,
                action=ModerationAction.WARNING,
                duration_seconds=None,
                reason=reason,
                total_violations=1,
                success=success,
                error_message=error,
            )

        return ViolationOutcome(
            action=ModerationAction.WARNING,
            success=success,
            total_violations=1,
            reason=reason,
        )

    async def _apply(
        self,
        step: EscalationStep,
        subject: str,
        scope: str,
        reason: str,
    ) -> Tuple[bool, Optional[str]]:
        """Call the enforcement channel. Returns (success, error_message)."""
        try:
            if step.action == ModerationAction.WARNING:
                ok = await self._enforcement.warn(
                    subject, scope, self._warning_message(subject)
                )
            elif step.action == ModerationAction.TIMEOUT:
                ok = await self._enforcement.timeout(
                    subject, scope, step.duration_seconds, reason
                )
            elif step.action == ModerationAction.BAN:
                ok = await self._enforcement.ban(subject, scope, reason)
            else:
                return False, f"Unsupported action: {step.action.value}"
        except EnforcementError as e:
            logger.error(f"Enforcement {step.action.value} failed for {subject} in {scope}: {e.message}")
            return False, e.message
        except Exception as e:
            logger.error(
                f"Enforcement {step.action.value} failed for {subject} in {scope}: {e}",
                exc_info=True,
            )
            return False, str(e)

        if not ok:
            logger.error(f"Enforcement {step.action.value} rejected for {subject} in {scope}")
            return False, "Enforcement channel reported failure"
        return True, None

    # =========================================================
    # BAN STATUS
    # =========================================================

    async def is_banned(self, subject_id: str, scope_id: str) -> bool:
        """Ban lookup. Fails open on storage errors."""
        status = await self.get_ban_status(subject_id, scope_id)
        return status.is_banned

    async def get_ban_status(self, subject_id: str, scope_id: str) -> BanStatus:
        """Ban state from the ledger. Fails open on storage errors."""
        subject = normalize_subject(subject_id)
        scope = normalize_scope(scope_id)
        try:
            async with self._session_factory() as session:
                record = await ViolationRepository(session).get(subject, scope)
        except Exception as e:
            logger.error(f"Ban lookup failed for {subject} in {scope}, allowing: {e}")
            return BanStatus(is_banned=False)

        if record is None or not record.is_banned:
            return BanStatus(is_banned=False)

        return BanStatus(
            is_banned=True,
            is_permanent=True,
            banned_at=record.banned_at,
            reason=record.ban_reason,
        )

    async def unban(self, subject_id: str, scope_id: str) -> bool:
        """
        Lift a ban.

        Violation counts are kept; the next violation escalates from
        the recorded count.
        """
        subject = normalize_subject(subject_id)
        scope = normalize_scope(scope_id)

        try:
            config = await self._configs.resolve(scope)
        except ConfigurationError as e:
            logger.error(f"Unban rejected for {subject} in {scope!r}: {e.message}")
            return False

        try:
            success = bool(await self._enforcement.unban(subject, scope))
            error = None if success else "Enforcement channel reported failure"
        except Exception as e:
            logger.error(f"Unban failed for {subject} in {scope}: {e}", exc_info=True)
            success, error = False, str(e)

        total_violations = 0
        if success:
            async with self._locks.hold((subject, scope)):
                total_violations = await self._clear_ban(subject, scope)

        logger.info(f"Unban for {subject} in {scope} (success={success})")

        if config.log_all_actions:
            await self._write_action_log(
                subject=subject,
                scope=scope,
                violation_type=ViolationType.OTHER,
                offending_terms=[],
                message_content="",
                action=ModerationAction.UNBAN,
                duration_seconds=None,
                reason="Manual unban",
                total_violations=total_violations,
                success=success,
                error_message=error,
            )
        return success

    async def _clear_ban(self, subject: str, scope: str) -> int:
        try:
            async with self._session_factory() as session:
                repo = ViolationRepository(session)
                record = await repo.get(subject, scope)
                if record is None:
                    return 0
                record.is_banned = False
                record.banned_at = None
                record.ban_reason = None
                await repo.commit()
                return record.warning_count
        except Exception as e:
            logger.error(f"Failed to clear ban for {subject} in {scope}: {e}", exc_info=True)
            return 0

    # =========================================================
    # QUERIES
    # =========================================================

    async def get_violation_history(
        self,
        subject_id: str,
        scope_id: str,
    ) -> Optional[ViolationSummary]:
        """Ledger row and history for (subject, scope), or None."""
        subject = normalize_subject(subject_id)
        scope = normalize_scope(scope_id)
        async with self._session_factory() as session:
            record = await ViolationRepository(session).get(subject, scope)
            if record is None:
                return None

            return ViolationSummary(
                subject_id=record.subject_id,
                scope_id=record.scope_id,
                warning_count=record.warning_count,
                timeout_count=record.timeout_count,
                is_banned=record.is_banned,
                banned_at=record.banned_at,
                last_timeout_at=record.last_timeout_at,
                last_timeout_duration=record.last_timeout_duration,
                history=[
                    ViolationEntry(
                        occurred_at=event.occurred_at,
                        offending_terms=list(event.offending_terms or []),
                        message_excerpt=event.message_excerpt,
                        action=ModerationAction(event.action),
                        duration_seconds=event.duration_seconds,
                        success=event.success,
                    )
                    for event in record.events
                ],
            )

    async def get_recent_actions(
        self,
        scope_id: str,
        limit: int = 50,
        subject_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Audit log entries for a scope, newest first."""
        scope = normalize_scope(scope_id)
        subject = normalize_subject(subject_id) if subject_id else None
        async with self._session_factory() as session:
            entries = await ModerationLogRepository(session).get_recent(
                scope, limit=limit, subject_id=subject
            )

        return [
            {
                "timestamp": entry.created_at.isoformat(),
                "subject_id": entry.subject_id,
                "violation_type": entry.violation_type,
                "offending_terms": list(entry.offending_terms or []),
                "action": entry.action,
                "duration_seconds": entry.duration_seconds,
                "reason": entry.reason,
                "total_violations": entry.total_violations,
                "success": entry.success,
                "error_message": entry.error_message,
            }
            for entry in entries
        ]

    # =========================================================
    # HELPERS
    # =========================================================

    async def _config_or_none(self, scope_id: str) -> Optional[ModerationConfig]:
        try:
            return await self._configs.resolve(scope_id)
        except ConfigurationError as e:
            logger.error(f"Moderation config error for scope {scope_id!r}: {e.message}")
            return None

    async def _classify(
        self,
        text: str,
        subject: str,
        scope: str,
        config: ModerationConfig,
        source: str = "user",
    ):
        """Run the classifier. Returns None on any failure."""
        correlation_id = f"{source}:{scope}:{subject}:{uuid.uuid4().hex}"
        try:
            return await self._classifier.classify(
                text, correlation_id, strict=config.strict_mode
            )
        except Exception as e:
            logger.error(f"Content classification failed [{correlation_id}]: {e}")
            return None

    async def _write_action_log(
        self,
        subject: str,
        scope: str,
        violation_type: ViolationType,
        offending_terms: List[str],
        message_content: str,
        action: ModerationAction,
        duration_seconds: Optional[int],
        reason: Optional[str],
        total_violations: int,
        success: bool,
        error_message: Optional[str] = None,
    ) -> None:
        """Append an audit entry. Failures are logged only."""
        entry = ModerationActionLogRecord(
            created_at=self._clock.now(),
            scope_id=scope,
            subject_id=subject,
            violation_type=violation_type.value,
            offending_terms=list(offending_terms),
            message_content=truncate(message_content, MESSAGE_EXCERPT_LIMIT),
            action=action.value,
            duration_seconds=duration_seconds,
            reason=reason,
            total_violations=total_violations,
            success=success,
            error_message=error_message,
        )
        try:
            async with self._session_factory() as session:
                repo = ModerationLogRepository(session)
                await repo.add(entry)
                await repo.commit()
        except Exception as e:
            logger.error(
                f"Failed to write moderation log for {subject} in {scope}: {e}",
                extra={"context": {"action": action.value}},
                exc_info=True,
            )

    @staticmethod
    def _build_reason(result: ModerationResult) -> str:
        if result.offending_terms:
            return f"Inappropriate language: {', '.join(result.offending_terms)}"
        return result.reason or "Inappropriate content"

    @staticmethod
    def _warning_message(subject: str) -> str:
        return (
            f"@{subject} please keep chat friendly. "
            f"Further violations will result in a timeout."
        )
