"""
Unit tests for JobProcessor.

Tests the preference gates, context decisions (defer, auto-snooze),
medication dose checks, delivery hand-off and unexpected error handling.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import update

from notifier.src.models import (
    EntityType,
    JobStatus,
    NotificationJob,
    ReminderDeliveryLog,
    ReminderOccurrence,
)
from notifier.src.services.delivery_service import DeliveryService
from notifier.src.services.exceptions import CalendarApiError, CalendarNotConnectedError
from notifier.src.services.freebusy_cache_service import FreeBusyCacheService
from notifier.src.services.job_processor import JobOutcome, JobProcessor
from notifier.src.services.lifecycle_service import LifecycleService
from notifier.src.utils.intervals import BusyInterval


BUSY_SETTINGS = {"calendarBusy": {"enabled": True, "snoozeMinutes": 15}}


@pytest.fixture
def freebusy():
    service = MagicMock(spec=FreeBusyCacheService)
    service.find_busy_interval.return_value = None
    return service


@pytest.fixture
def processor(test_db_session, mock_sender, freebusy):
    lifecycle = LifecycleService(test_db_session)
    delivery = DeliveryService(
        test_db_session,
        sender=mock_sender,
        lifecycle=lifecycle,
        app_url="https://app.example.com",
    )
    return JobProcessor(test_db_session, lifecycle, delivery, freebusy)


@pytest.fixture
def ready(sample_reminder, sample_profile, sample_subscription):
    """Active reminder, push-enabled profile and one subscription."""
    def _create(**reminder_kwargs):
        reminder = sample_reminder(**reminder_kwargs)
        sample_profile()
        sample_subscription()
        return reminder
    return _create


# ============================================================================
# Test: Claim ownership
# ============================================================================


class TestClaimOwnership:
    """Tests for jobs the attempt does not own."""

    def test_ignores_job_claimed_by_other_token(self, processor, claimed_job, now):
        job = claimed_job(claim_token="token-other")
        result = processor.process_job(job.id, now, "token-1")
        assert result.outcome == JobOutcome.IGNORED
        assert job.status == JobStatus.PROCESSING

    def test_ignores_missing_job(self, processor, now):
        assert processor.process_job("missing", now, "token-1").outcome == JobOutcome.IGNORED

    def test_claim_lost_mid_delivery(self, test_db_session, ready, claimed_job, mock_sender, now):
        """Should not finalize a job another attempt claimed while this one was sending."""
        ready()
        job = claimed_job()
        job_id = job.id

        def reclaim(*args, **kwargs):
            test_db_session.execute(
                update(NotificationJob)
                .where(NotificationJob.id == job_id)
                .values(claim_token="token-2")
            )

        mock_sender.send.side_effect = reclaim
        lifecycle = LifecycleService(test_db_session, claim_token="token-1")
        delivery = DeliveryService(
            test_db_session,
            sender=mock_sender,
            lifecycle=lifecycle,
            app_url="https://app.example.com",
        )
        processor = JobProcessor(test_db_session, lifecycle, delivery)

        result = processor.process_job(job_id, now, "token-1")

        assert result.outcome == JobOutcome.IGNORED
        assert result.reason == "claim_lost"
        test_db_session.expire_all()
        job = test_db_session.get(NotificationJob, job_id)
        assert job.status == JobStatus.PROCESSING
        assert job.claim_token == "token-2"
        assert test_db_session.query(ReminderDeliveryLog).one().is_sent


# ============================================================================
# Test: Gates
# ============================================================================


class TestGates:
    """Tests for reminder and recipient gates."""

    def test_sends_ready_job(self, processor, ready, claimed_job, mock_sender, now):
        """Should deliver and report the lag behind notify_at."""
        ready()
        job = claimed_job(notify_at=now - timedelta(seconds=90))
        result = processor.process_job(job.id, now, "token-1")
        assert result.outcome == JobOutcome.SENT
        assert result.lag_seconds == 90
        assert job.status == JobStatus.SENT
        mock_sender.send.assert_called_once()

    def test_missing_reminder_is_dead(self, processor, claimed_job, now):
        job = claimed_job(reminder_id="gone")
        result = processor.process_job(job.id, now, "token-1")
        assert result.reason == "reminder_inactive"
        assert job.status == JobStatus.FAILED
        assert job.retry_count == 0

    @pytest.mark.parametrize("kwargs", [
        {"is_active": False},
        {"household_id": None},
        {"created_by": None},
    ])
    def test_inactive_reminder_is_dead(self, processor, ready, claimed_job, now, kwargs):
        ready(**kwargs)
        job = claimed_job()
        assert processor.process_job(job.id, now, "token-1").reason == "reminder_inactive"
        assert job.status == JobStatus.FAILED

    def test_push_disabled(self, processor, sample_reminder, sample_profile, claimed_job, now):
        sample_reminder()
        sample_profile(notify_by_push=False)
        job = claimed_job()
        result = processor.process_job(job.id, now, "token-1")
        assert result.outcome == JobOutcome.SKIPPED
        assert job.last_error == "pref_push_off"

    def test_missing_profile(self, processor, sample_reminder, claimed_job, now):
        sample_reminder()
        job = claimed_job()
        assert processor.process_job(job.id, now, "token-1").reason == "pref_push_off"

    def test_recent_android_install(self, processor, ready, claimed_job, sample_installation, now):
        """Should leave delivery to the native app."""
        ready()
        sample_installation(last_seen_at=now - timedelta(days=2))
        job = claimed_job()
        result = processor.process_job(job.id, now, "token-1")
        assert result.reason == "mobile_app_present"
        assert job.status == JobStatus.SKIPPED

    @pytest.mark.parametrize("platform,age_days", [("android", 8), ("ios", 1)])
    def test_old_or_non_android_install_ignored(
        self, processor, ready, claimed_job, sample_installation, now, platform, age_days
    ):
        ready()
        sample_installation(platform=platform, last_seen_at=now - timedelta(days=age_days))
        job = claimed_job()
        assert processor.process_job(job.id, now, "token-1").outcome == JobOutcome.SENT


# ============================================================================
# Test: Context decisions
# ============================================================================


class TestContextDecisions:
    """Tests for time windows and calendar auto-snooze."""

    def test_outside_time_window_defers(self, processor, ready, claimed_job, mock_sender, now):
        """Should reschedule 15 minutes later without consuming a retry."""
        ready(context_settings={"timeWindow": {"enabled": True, "startHour": 11, "endHour": 20}})
        job = claimed_job()

        result = processor.process_job(job.id, now, "token-1")

        assert result.outcome == JobOutcome.RESCHEDULED
        assert result.reason == "outside_time_window"
        assert job.status == JobStatus.PENDING
        assert job.notify_at == now + timedelta(minutes=15)
        assert job.retry_count == 0
        mock_sender.send.assert_not_called()

    def test_profile_defaults_apply(self, processor, sample_reminder, sample_profile,
                                    sample_subscription, claimed_job, now):
        """Should use the creator's defaults when the reminder has no settings."""
        sample_reminder()
        sample_profile(context_defaults={
            "timeWindow": {"enabled": True, "daysOfWeek": ["saturday", "sunday"]},
        })
        sample_subscription()
        job = claimed_job()
        assert processor.process_job(job.id, now, "token-1").reason == "outside_day_window"

    def test_calendar_busy_snoozes_job_and_occurrence(
        self, processor, ready, claimed_job, sample_occurrence, freebusy, test_db_session, now
    ):
        """Should move the job and its open occurrence past the busy block."""
        ready(context_settings=BUSY_SETTINGS)
        occurrence = sample_occurrence()
        freebusy.find_busy_interval.return_value = BusyInterval(now, now + timedelta(minutes=30))
        job = claimed_job()

        result = processor.process_job(job.id, now, "token-1")

        snooze_until = now + timedelta(minutes=32)
        assert result.outcome == JobOutcome.RESCHEDULED
        assert result.reason == "calendar_busy"
        assert job.notify_at == snooze_until
        test_db_session.refresh(occurrence)
        assert occurrence.status == "snoozed"
        assert occurrence.snoozed_until == snooze_until
        freebusy.find_busy_interval.assert_called_once_with("user-1", now, "Europe/Bucharest")

    def test_second_busy_block_moves_snoozed_occurrence(
        self, processor, ready, claimed_job, sample_occurrence, freebusy, test_db_session, now
    ):
        """Should keep the occurrence in step with the job across back-to-back meetings."""
        ready(context_settings=BUSY_SETTINGS)
        occurrence = sample_occurrence()
        freebusy.find_busy_interval.return_value = BusyInterval(now, now + timedelta(minutes=30))
        job = claimed_job()
        processor.process_job(job.id, now, "token-1")

        second_cycle = now + timedelta(minutes=32)
        freebusy.find_busy_interval.return_value = BusyInterval(
            second_cycle, second_cycle + timedelta(minutes=60)
        )
        job.claim("token-2", second_cycle)
        test_db_session.commit()

        result = processor.process_job(job.id, second_cycle, "token-2")

        snooze_until = now + timedelta(minutes=94)
        assert result.outcome == JobOutcome.RESCHEDULED
        assert job.notify_at == snooze_until
        test_db_session.refresh(occurrence)
        assert occurrence.status == "snoozed"
        assert occurrence.snoozed_until == snooze_until

    def test_delivery_after_snooze_links_occurrence(
        self, processor, ready, claimed_job, sample_occurrence, freebusy, test_db_session, now
    ):
        """Should record the snoozed occurrence on the delivery log once the user is free."""
        ready(context_settings=BUSY_SETTINGS)
        sample_occurrence()
        freebusy.find_busy_interval.return_value = BusyInterval(now, now + timedelta(minutes=30))
        job = claimed_job()
        processor.process_job(job.id, now, "token-1")

        free_cycle = now + timedelta(minutes=32)
        freebusy.find_busy_interval.return_value = None
        job.claim("token-2", free_cycle)
        test_db_session.commit()

        result = processor.process_job(job.id, free_cycle, "token-2")

        assert result.outcome == JobOutcome.SENT
        log = test_db_session.query(ReminderDeliveryLog).one()
        assert log.reminder_occurrence_id == "occ-1"

    def test_done_occurrence_is_not_snoozed(
        self, processor, ready, claimed_job, sample_occurrence, freebusy, test_db_session, now
    ):
        """Should leave an occurrence the user already completed untouched."""
        ready(context_settings=BUSY_SETTINGS)
        occurrence = sample_occurrence(status="done")
        freebusy.find_busy_interval.return_value = BusyInterval(now, now + timedelta(minutes=30))
        job = claimed_job()

        processor.process_job(job.id, now, "token-1")

        test_db_session.refresh(occurrence)
        assert occurrence.status == "done"
        assert occurrence.snoozed_until is None

    def test_calendar_not_checked_when_disabled(self, processor, ready, claimed_job, freebusy, now):
        ready()
        job = claimed_job()
        processor.process_job(job.id, now, "token-1")
        freebusy.find_busy_interval.assert_not_called()

    def test_no_calendar_connection_sends(self, processor, ready, claimed_job, freebusy, now):
        ready(context_settings=BUSY_SETTINGS)
        freebusy.find_busy_interval.side_effect = CalendarNotConnectedError("user-1")
        job = claimed_job()
        assert processor.process_job(job.id, now, "token-1").outcome == JobOutcome.SENT

    def test_calendar_failure_retries(self, processor, ready, claimed_job, freebusy, now):
        ready(context_settings=BUSY_SETTINGS)
        freebusy.find_busy_interval.side_effect = CalendarApiError("boom", 503)
        job = claimed_job()

        result = processor.process_job(job.id, now, "token-1")

        assert result.outcome == JobOutcome.FAILED
        assert result.reason == "calendar_unavailable"
        assert job.status == JobStatus.PENDING
        assert job.retry_count == 1


# ============================================================================
# Test: Medication doses
# ============================================================================


class TestMedication:
    """Tests for medication dose jobs."""

    def test_missing_dose_is_dead(self, processor, ready, claimed_job, now):
        ready(kind="medication")
        job = claimed_job(entity_type=EntityType.MEDICATION_DOSE, entity_id="dose-1")
        result = processor.process_job(job.id, now, "token-1")
        assert result.reason == "dose_missing"
        assert job.status == JobStatus.FAILED

    def test_existing_dose_is_sent(self, processor, ready, claimed_job, sample_dose, now):
        ready(kind="medication")
        sample_dose()
        job = claimed_job(entity_type=EntityType.MEDICATION_DOSE, entity_id="dose-1")
        assert processor.process_job(job.id, now, "token-1").outcome == JobOutcome.SENT


# ============================================================================
# Test: Unexpected errors
# ============================================================================


class TestUnexpectedErrors:
    """Tests for errors outside the known failure paths."""

    def test_unexpected_error_becomes_retry(self, test_db_session, ready, claimed_job, now):
        """Should never raise and record a retryable failure."""
        ready()
        job = claimed_job()
        lifecycle = LifecycleService(test_db_session)
        delivery = MagicMock(spec=DeliveryService)
        delivery.deliver.side_effect = RuntimeError("boom")
        processor = JobProcessor(test_db_session, lifecycle, delivery)

        result = processor.process_job(job.id, now, "token-1")

        assert result.outcome == JobOutcome.FAILED
        assert result.reason == "boom"
        assert job.status == JobStatus.PENDING
        assert job.retry_count == 1
        assert job.last_error == "boom"

    def test_occurrence_lookup_ignores_other_times(
        self, processor, ready, claimed_job, sample_occurrence, test_db_session, now
    ):
        """Should send when the only occurrence row is for another time."""
        ready()
        sample_occurrence(occur_at=now - timedelta(days=1))
        job = claimed_job()
        assert processor.process_job(job.id, now, "token-1").outcome == JobOutcome.SENT
        assert test_db_session.query(ReminderOccurrence).one().status == "open"
