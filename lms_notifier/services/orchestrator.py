import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from lms_notifier.db.models import Subject
from lms_notifier.db.store import Store
from lms_notifier.providers.delivery_channel import DeliveryChannel, channel_is_ready
from lms_notifier.providers.extraction import (
    ExtractionProvider,
    ExtractionSession,
    validate_activities,
)
from lms_notifier.schemas.activity_schemas import RawActivity, UpcomingActivity
from lms_notifier.schemas.collection_schemas import (
    CollectionRunResult,
    DeliveryReport,
    SubjectResult,
    SubjectRunStatus,
    SubjectTarget,
)
from lms_notifier.services.ingestion_service import (
    ActivityIngestionService,
    Created,
    SkipReason,
)
from lms_notifier.services.message_formatter import MessageFormatter
from lms_notifier.services.notification_scheduler import NotificationScheduler
from lms_notifier.utils.datetime_utils import naive_utc_now
from lms_notifier.utils.errors import (
    ChannelNotReadyError,
    DeliveryError,
    ExtractionError,
    FatalResourceError,
)
from lms_notifier.utils.logging import get_logger

logger = get_logger()

STAGE_AUTHENTICATION = "authentication"
STAGE_NAVIGATION = "navigation"
STAGE_EXTRACTION = "extraction"
STAGE_STORAGE = "storage"

STAGE_FAILURE_MESSAGES = {
    STAGE_AUTHENTICATION: "Login failed. Please check credentials.",
    STAGE_NAVIGATION: "Failed to navigate to the activity calendar.",
    STAGE_EXTRACTION: "Failed to read activities from the activity calendar.",
}


class CollectionOrchestrator:
    """
    Collects activities for subjects one at a time and stores them.

    Each subject goes through authenticate, navigate and extract; a failing
    stage ends that subject with an error result and the run carries on. A
    cool-down is paid between consecutive subjects whatever their outcome.
    After the last subject, each subject's activities due within the horizon
    are sent as one digest message.
    """

    def __init__(
        self,
        store: Store,
        channel: DeliveryChannel,
        provider: ExtractionProvider,
        formatter: Optional[MessageFormatter] = None,
        cooldown: float = 60,
        stage_timeout: float = 120,
        horizon_days: int = 7,
        recheck_wait: float = 30,
        message_delay: float = 2,
        send_timeout: float = 30,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = naive_utc_now,
    ):
        self.store = store
        self.channel = channel
        self.provider = provider
        self.formatter = formatter or MessageFormatter()
        self.cooldown = cooldown
        self.stage_timeout = stage_timeout
        self.horizon = timedelta(days=horizon_days)
        self.recheck_wait = recheck_wait
        self.message_delay = message_delay
        self.send_timeout = send_timeout
        self._sleep = sleep
        self._clock = clock

    async def run(self, subjects: Sequence[SubjectTarget]) -> CollectionRunResult:
        logger.info(f"Starting collection run for {len(subjects)} subject(s)")
        results: List[SubjectResult] = []

        for index, target in enumerate(subjects):
            logger.info(
                f"Processing subject {index + 1}/{len(subjects)}: {target.identifier}"
            )
            results.append(await self._process_subject(target))

            if index < len(subjects) - 1:
                logger.info(f"Cooling down for {self.cooldown}s before next subject")
                await self._sleep(self.cooldown)

        delivery = await self._deliver_upcoming(results)
        succeeded = sum(1 for r in results if r.status == SubjectRunStatus.SUCCESS)
        run_result = CollectionRunResult(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
            delivery=delivery,
        )
        logger.info(
            f"Collection run complete: {succeeded}/{len(results)} subjects succeeded, "
            f"{delivery.delivered} digest(s) delivered"
        )
        return run_result

    async def _run_stage(self, stage: str, step: Callable[[], Awaitable[Any]]) -> Any:
        try:
            outcome = await asyncio.wait_for(step(), timeout=self.stage_timeout)
        except asyncio.TimeoutError as e:
            raise ExtractionError(
                stage, f"{stage.capitalize()} timed out after {self.stage_timeout}s"
            ) from e
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(stage, f"{stage.capitalize()} error: {e}") from e

        if outcome is False:
            raise ExtractionError(stage, STAGE_FAILURE_MESSAGES[stage])
        return outcome

    async def _extract(self, target: SubjectTarget) -> List[Mapping[str, Any]]:
        session: Optional[ExtractionSession] = None
        try:
            try:
                session = self.provider.open_session(target)
            except Exception as e:
                raise ExtractionError(
                    STAGE_AUTHENTICATION, f"Could not open a session: {e}"
                ) from e

            await self._run_stage(STAGE_AUTHENTICATION, session.authenticate)
            await self._run_stage(STAGE_NAVIGATION, session.navigate)
            records = await self._run_stage(STAGE_EXTRACTION, session.extract)
            return list(records or [])
        finally:
            if session is not None:
                await self._close_session(session, target)

    async def _close_session(
        self, session: ExtractionSession, target: SubjectTarget
    ) -> None:
        try:
            await asyncio.wait_for(session.close(), timeout=self.stage_timeout)
        except Exception as e:
            logger.warning(f"Session teardown for {target.identifier} failed: {e}")

    async def _process_subject(self, target: SubjectTarget) -> SubjectResult:
        result = SubjectResult(
            identifier=target.identifier,
            destination=target.destination,
            status=SubjectRunStatus.SUCCESS,
        )

        try:
            records = await self._extract(target)
        except ExtractionError as e:
            logger.warning(f"Subject {target.identifier} failed at {e.stage}: {e.message}")
            result.status = SubjectRunStatus.ERROR
            result.error_stage = e.stage
            result.error = e.message
            return result

        activities = validate_activities(records)
        try:
            await self._store_activities(target, activities, result)
        except (OperationalError, InterfaceError) as e:
            # a busy or locked database still answers a ping
            if not self.store.ping():
                raise FatalResourceError(f"Store became unreachable: {e}") from e
            return self._storage_failed(target, result, e)
        except SQLAlchemyError as e:
            return self._storage_failed(target, result, e)

        logger.info(
            f"Subject {target.identifier}: {result.activities_seen} seen, "
            f"{result.activities_saved} saved, {result.notifications_scheduled} scheduled, "
            f"{len(result.upcoming)} due within {self.horizon.days} days"
        )
        return result

    @staticmethod
    def _storage_failed(
        target: SubjectTarget, result: SubjectResult, error: Exception
    ) -> SubjectResult:
        logger.error(f"Storing activities for {target.identifier} failed: {error}")
        result.status = SubjectRunStatus.ERROR
        result.error_stage = STAGE_STORAGE
        result.error = "Failed to store activities"
        return result

    @staticmethod
    def _upsert_subject(db: Session, target: SubjectTarget) -> Subject:
        result = Store.insert_unique(
            db,
            Subject(
                identifier=target.identifier,
                credential_ref=target.credential_ref,
                destination=target.destination,
                is_active=True,
            ),
            select(Subject).where(Subject.identifier == target.identifier),
        )
        subject = result.record
        if subject.destination != target.destination:
            logger.info(f"Updating destination for subject {target.identifier}")
            subject.destination = target.destination
        db.commit()
        return subject

    async def _store_activities(
        self,
        target: SubjectTarget,
        activities: List[RawActivity],
        result: SubjectResult,
    ) -> None:
        now = self._clock()
        horizon_end = now + self.horizon
        upcoming: List[UpcomingActivity] = []
        result.activities_seen = len(activities)

        with self.store.session() as db:
            subject = self._upsert_subject(db, target)
            result.subject_active = subject.is_active
            if not subject.is_active:
                logger.info(f"Subject {target.identifier} is inactive, no digest will be sent")
            ingestion = ActivityIngestionService(db)
            scheduler = NotificationScheduler(db)

            for raw in activities:
                outcome = await ingestion.ingest(subject.id, raw, now)
                if isinstance(outcome, Created):
                    scheduled = await scheduler.schedule_notifications(
                        outcome.activity, now
                    )
                    # activity and its notifications land in one commit
                    db.commit()
                    result.activities_saved += 1
                    result.notifications_scheduled += len(scheduled)
                elif outcome.reason == SkipReason.PAST:
                    result.past_activities += 1
                    continue

                result.future_activities += 1
                if raw.due_date <= horizon_end:
                    upcoming.append(
                        UpcomingActivity(
                            course_code=raw.course_code,
                            activity_type=raw.activity_type,
                            title=raw.title,
                            due_date=raw.due_date,
                            link=raw.link,
                        )
                    )

        result.upcoming = sorted(upcoming, key=lambda item: item.due_date)

    async def _channel_available(self) -> bool:
        if await channel_is_ready(self.channel, self.send_timeout):
            return True
        logger.warning(
            f"Delivery channel not ready, checking again in {self.recheck_wait}s"
        )
        await self._sleep(self.recheck_wait)
        return await channel_is_ready(self.channel, self.send_timeout)

    async def _deliver_upcoming(self, results: List[SubjectResult]) -> DeliveryReport:
        now = self._clock()
        outbox: List[Tuple[SubjectResult, str]] = [
            (r, self.formatter.format_digest(r.identifier, r.upcoming, now))
            for r in results
            if r.status == SubjectRunStatus.SUCCESS and r.subject_active and r.upcoming
        ]
        report = DeliveryReport()
        if not outbox:
            return report

        if not await self._channel_available():
            logger.warning(
                f"Delivery channel unavailable, {len(outbox)} digest(s) not sent"
            )
            report.channel_available = False
            return report

        for index, (subject_result, text) in enumerate(outbox):
            if index:
                await self._sleep(self.message_delay)
            report.attempted += 1
            try:
                await asyncio.wait_for(
                    self.channel.send(subject_result.destination, text),
                    timeout=self.send_timeout,
                )
            except asyncio.TimeoutError:
                report.failed += 1
                logger.warning(f"Digest to {subject_result.identifier} timed out")
            except (DeliveryError, ChannelNotReadyError) as e:
                report.failed += 1
                logger.warning(f"Digest to {subject_result.identifier} failed: {e.message}")
            except Exception as e:
                report.failed += 1
                logger.exception(f"Digest to {subject_result.identifier} failed: {e}")
            else:
                report.delivered += 1
                logger.info(f"Sent upcoming digest to {subject_result.identifier}")

        return report
