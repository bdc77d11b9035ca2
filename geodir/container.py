"""
Service wiring.

`build_services` assembles the component graph on top of Postgres
repositories; `wire_services` does the same from any set of repositories, which
is how tests run the full pipeline in memory.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from geodir.config import Settings, get_settings
from geodir.confirmation.gate import ConfirmationGate
from geodir.confirmation.email import EmailConfirmationService
from geodir.confirmation.models import TokenSubject
from geodir.confirmation.repository import PostgresTokenRepository, TokenRepository
from geodir.db.port import RawQueryPool
from geodir.entries.repository import EntryRepository, PostgresEntryRepository
from geodir.entries.store import EntryStore
from geodir.events.bus import ChangeEventBus
from geodir.events.log import ChangeEventLog, PostgresChangeEventLog
from geodir.geo.index import SpatialIndex
from geodir.jobs.dispatcher import NotificationDispatcher
from geodir.jobs.pipeline import NotificationPipeline
from geodir.jobs.queue import DispatchQueue, PostgresDispatchQueue
from geodir.kernel.time import Clock, utc_now
from geodir.matching.matcher import BboxMatcher
from geodir.notifications.notifier import ConfirmationMailer, Notifier
from geodir.ratings.aggregator import RatingAggregator
from geodir.ratings.repository import PostgresRatingRepository, RatingRepository
from geodir.subscriptions.registry import SubscriptionRegistry
from geodir.subscriptions.repository import PostgresSubscriptionRepository, SubscriptionRepository
from geodir.users.repository import PostgresUserDirectory, UserDirectory


@dataclass(frozen=True)
class Repositories:
    entries: EntryRepository
    ratings: RatingRepository
    users: UserDirectory
    subscriptions: SubscriptionRepository
    tokens: TokenRepository
    change_events: ChangeEventLog
    dispatch_queue: DispatchQueue


@dataclass
class Services:
    settings: Settings
    repositories: Repositories
    entries: EntryStore
    ratings: RatingAggregator
    users: UserDirectory
    gate: ConfirmationGate
    email_confirmation: EmailConfirmationService
    registry: SubscriptionRegistry
    matcher: BboxMatcher
    dispatcher: NotificationDispatcher
    pipeline: NotificationPipeline
    bus: ChangeEventBus
    clock: Clock = utc_now


def postgres_repositories(pool: RawQueryPool, *, settings: Settings) -> Repositories:
    return Repositories(
        entries=PostgresEntryRepository(pool, event_max_attempts=settings.bus_max_attempts),
        ratings=PostgresRatingRepository(pool),
        users=PostgresUserDirectory(pool),
        subscriptions=PostgresSubscriptionRepository(pool),
        tokens=PostgresTokenRepository(pool),
        change_events=PostgresChangeEventLog(pool),
        dispatch_queue=PostgresDispatchQueue(pool),
    )


def wire_services(
    repositories: Repositories,
    *,
    notifier: Notifier,
    mailer: ConfirmationMailer | None = None,
    settings: Settings | None = None,
    clock: Clock = utc_now,
) -> Services:
    settings = settings or get_settings()

    gate = ConfirmationGate(
        repositories.tokens,
        repositories.users,
        ttls={
            TokenSubject.EMAIL: timedelta(hours=settings.email_token_ttl_hours),
            TokenSubject.SUBSCRIPTION: timedelta(hours=settings.subscription_token_ttl_hours),
        },
        clock=clock,
    )
    registry = SubscriptionRegistry(
        repositories.subscriptions,
        repositories.users,
        gate,
        index=SpatialIndex(max_level=settings.spatial_index_max_level),
        mailer=mailer,
        require_subscription_confirmation=settings.require_subscription_confirmation,
        clock=clock,
    )
    gate.add_listener(TokenSubject.EMAIL, registry.activate_user)
    gate.add_listener(TokenSubject.SUBSCRIPTION, registry.confirm_subscription)
    email_confirmation = EmailConfirmationService(gate, repositories.users, mailer)

    entries = EntryStore(repositories.entries, clock=clock)
    ratings = RatingAggregator(
        repositories.ratings,
        rating_min=settings.rating_min,
        rating_max=settings.rating_max,
        clock=clock,
    )
    matcher = BboxMatcher(registry.snapshot)
    dispatcher = NotificationDispatcher(
        repositories.dispatch_queue,
        notifier,
        repositories.users,
        entries,
        worker_count=settings.dispatch_worker_count,
        lease_seconds=settings.dispatch_lease_seconds,
        poll_interval_seconds=settings.dispatch_poll_interval_seconds,
        max_attempts=settings.dispatch_max_attempts,
        backoff_base_seconds=settings.dispatch_backoff_base_seconds,
        backoff_max_seconds=settings.dispatch_backoff_max_seconds,
        reaper_interval_seconds=settings.dispatch_reaper_interval_seconds,
        reaper_limit=settings.dispatch_reaper_limit,
        sent_key_cache_size=settings.dispatch_sent_key_cache_size,
        clock=clock,
    )
    pipeline = NotificationPipeline(registry, matcher, dispatcher)
    bus = ChangeEventBus(
        repositories.change_events,
        pipeline.handle,
        batch_size=settings.bus_batch_size,
        lease_seconds=settings.bus_lease_seconds,
        poll_interval_seconds=settings.bus_poll_interval_seconds,
        backoff_base_seconds=settings.dispatch_backoff_base_seconds,
        backoff_max_seconds=settings.dispatch_backoff_max_seconds,
        clock=clock,
    )
    entries.set_on_commit(bus.wake)

    return Services(
        settings=settings,
        repositories=repositories,
        entries=entries,
        ratings=ratings,
        users=repositories.users,
        gate=gate,
        email_confirmation=email_confirmation,
        registry=registry,
        matcher=matcher,
        dispatcher=dispatcher,
        pipeline=pipeline,
        bus=bus,
        clock=clock,
    )


def build_services(
    *,
    pool: RawQueryPool,
    notifier: Notifier,
    mailer: ConfirmationMailer | None = None,
    settings: Settings | None = None,
    clock: Clock = utc_now,
) -> Services:
    settings = settings or get_settings()
    return wire_services(
        postgres_repositories(pool, settings=settings),
        notifier=notifier,
        mailer=mailer,
        settings=settings,
        clock=clock,
    )
