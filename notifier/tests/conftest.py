"""
Pytest configuration and fixtures for notifier tests.

Provides shared fixtures for:
- Test database engine, sessions and session factory
- Worker settings
- Sample data factories (jobs, reminders, profiles, subscriptions,
  calendar connections, occurrences, doses, device installations)
"""

import os
import pytest
from datetime import datetime, timedelta
from unittest.mock import MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ['NOTIFIER_DB_URL'] = 'sqlite:///:memory:'
os.environ.setdefault('NOTIFIER_ENV', 'test')

from notifier.src.config.settings import WorkerSettings
from notifier.src.models import (
    Base,
    CalendarConnection,
    Channel,
    DeviceInstallation,
    EntityType,
    JobStatus,
    MedicationDose,
    NotificationJob,
    Profile,
    PushSubscription,
    Reminder,
    ReminderOccurrence,
)
from notifier.src.services.push_sender import WebPushSender


# Tuesday 2026-03-03 08:00 UTC (10:00 in Europe/Bucharest)
NOW = datetime(2026, 3, 3, 8, 0, 0)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope='function')
def test_session_factory(test_db_engine):
    """Session factory bound to the test engine."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )


@pytest.fixture(scope='function')
def test_db_session(test_session_factory):
    """Create a test database session."""
    session = test_session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Utility Fixtures
# ============================================================================

@pytest.fixture
def now():
    """Fixed cycle time used by service tests."""
    return NOW


@pytest.fixture
def worker_settings():
    """Worker settings with VAPID configured and a single worker thread."""
    return WorkerSettings(
        WORKER_MAX_CONCURRENCY=1,
        WORKER_POLL_MS=100,
        WORKER_METRICS_INTERVAL_MS=60000,
        APP_URL="https://app.example.com/",
        VAPID_PUBLIC_KEY="test-public",
        VAPID_PRIVATE_KEY="test-private",
        VAPID_SUBJECT="mailto:ops@example.com",
    )


@pytest.fixture
def mock_sender():
    """A configured WebPushSender whose sends succeed."""
    sender = MagicMock(spec=WebPushSender)
    sender.is_configured = True
    sender.send.return_value = None
    return sender


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def sample_reminder(test_db_session):
    """Factory for creating sample Reminder rows."""
    counter = {'n': 0}

    def _create(
        title='Water the plants',
        household_id='household-1',
        is_active=True,
        created_by='user-1',
        context_settings=None,
        kind='task',
        medication_details=None,
        tz='Europe/Bucharest',
        reminder_id=None,
    ):
        counter['n'] += 1
        reminder = Reminder(
            id=reminder_id or f"reminder-{counter['n']}",
            title=title,
            household_id=household_id,
            is_active=is_active,
            created_by=created_by,
            context_settings=context_settings,
            kind=kind,
            medication_details=medication_details,
            tz=tz,
        )
        test_db_session.add(reminder)
        test_db_session.commit()
        return reminder
    return _create


@pytest.fixture
def sample_profile(test_db_session):
    """Factory for creating sample Profile rows."""
    def _create(
        user_id='user-1',
        time_zone='Europe/Bucharest',
        context_defaults=None,
        notify_by_push=True,
    ):
        profile = Profile(
            user_id=user_id,
            time_zone=time_zone,
            context_defaults=context_defaults,
            notify_by_push=notify_by_push,
        )
        test_db_session.add(profile)
        test_db_session.commit()
        return profile
    return _create


@pytest.fixture
def sample_job(test_db_session):
    """Factory for creating sample NotificationJob rows."""
    def _create(
        reminder_id='reminder-1',
        user_id='user-1',
        entity_type=EntityType.REMINDER,
        entity_id=None,
        channel=Channel.PUSH,
        notify_at=NOW,
        occurrence_at_utc=None,
        status=JobStatus.PENDING,
        retry_count=0,
        next_retry_at=None,
        claimed_at=None,
        claim_token=None,
    ):
        job = NotificationJob(
            reminder_id=reminder_id,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id or reminder_id,
            channel=channel,
            notify_at=notify_at,
            occurrence_at_utc=occurrence_at_utc,
            status=status,
            retry_count=retry_count,
            next_retry_at=next_retry_at,
            claimed_at=claimed_at,
            claim_token=claim_token,
        )
        test_db_session.add(job)
        test_db_session.commit()
        return job
    return _create


@pytest.fixture
def claimed_job(sample_job):
    """Factory for jobs already claimed by token 'token-1'."""
    def _create(**kwargs):
        kwargs.setdefault('status', JobStatus.PROCESSING)
        kwargs.setdefault('claimed_at', NOW)
        kwargs.setdefault('claim_token', 'token-1')
        return sample_job(**kwargs)
    return _create


@pytest.fixture
def sample_subscription(test_db_session):
    """Factory for creating sample PushSubscription rows."""
    counter = {'n': 0}

    def _create(user_id='user-1', endpoint=None, is_disabled=False):
        counter['n'] += 1
        subscription = PushSubscription(
            user_id=user_id,
            endpoint=endpoint or f"https://push.example.com/sub/{counter['n']}",
            p256dh='test-p256dh',
            auth='test-auth',
            is_disabled=is_disabled,
            created_at=NOW + timedelta(seconds=counter['n']),
        )
        test_db_session.add(subscription)
        test_db_session.commit()
        return subscription
    return _create


@pytest.fixture
def sample_connection(test_db_session):
    """Factory for creating sample CalendarConnection rows."""
    def _create(
        user_id='user-1',
        access_token='access-1',
        refresh_token='refresh-1',
        expires_at=NOW + timedelta(hours=1),
        cache=None,
        cache_time_min=None,
        cache_time_max=None,
        cache_fetched_at=None,
    ):
        connection = CalendarConnection(
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            freebusy_cache_json=cache,
            freebusy_cache_time_min=cache_time_min,
            freebusy_cache_time_max=cache_time_max,
            freebusy_cache_fetched_at=cache_fetched_at,
        )
        test_db_session.add(connection)
        test_db_session.commit()
        return connection
    return _create


@pytest.fixture
def sample_occurrence(test_db_session):
    """Factory for creating sample ReminderOccurrence rows."""
    def _create(reminder_id='reminder-1', occur_at=NOW, status='open', occurrence_id='occ-1'):
        occurrence = ReminderOccurrence(
            id=occurrence_id,
            reminder_id=reminder_id,
            occur_at=occur_at,
            status=status,
        )
        test_db_session.add(occurrence)
        test_db_session.commit()
        return occurrence
    return _create


@pytest.fixture
def sample_dose(test_db_session):
    """Factory for creating sample MedicationDose rows."""
    def _create(dose_id='dose-1', reminder_id='reminder-1', scheduled_at=NOW):
        dose = MedicationDose(
            id=dose_id,
            reminder_id=reminder_id,
            scheduled_at=scheduled_at,
        )
        test_db_session.add(dose)
        test_db_session.commit()
        return dose
    return _create


@pytest.fixture
def sample_installation(test_db_session):
    """Factory for creating sample DeviceInstallation rows."""
    counter = {'n': 0}

    def _create(user_id='user-1', platform='android', last_seen_at=NOW):
        counter['n'] += 1
        installation = DeviceInstallation(
            id=f"install-{counter['n']}",
            user_id=user_id,
            platform=platform,
            last_seen_at=last_seen_at,
        )
        test_db_session.add(installation)
        test_db_session.commit()
        return installation
    return _create
