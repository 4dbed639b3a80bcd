##########################################################################################
#
# Script name: orchestrator.py
#
# Description: Runs one discovery cycle: collect, group, discover, score, persist, promote.
#
##########################################################################################

import logging
from typing import Awaitable, Callable

from .config import (
    FROZEN_STATUSES,
    SOURCE_CATEGORIES,
    STATUS_DISMISSED,
    STATUS_NO_FEED,
    STATUS_PENDING,
    STATUS_SUBSCRIBED,
)
from .domain_filter import group_stories_by_domain
from .errors import DiscoveryCycleError
from .fetchers import SourceAdapter, collect_all
from .models import CollectedStory, DiscoveredDomain, DiscoveredFeed, DiscoveryRun, DomainEvent
from .scorer import calculate_cycle_score, update_domain_score
from .storage import Storage, init_schema
from .utils import utc_now_iso


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

FeedFinder = Callable[[str], Awaitable[DiscoveredFeed | None]]


# ****************************************************************************************
# Functions
# ****************************************************************************************


def detect_categories(stories: list[CollectedStory]) -> list[str]:
    categories: list[str] = []
    for story in stories:
        category = SOURCE_CATEGORIES.get(story.source)
        if category and category not in categories:
            categories.append(category)
    return categories


async def load_subscribed_domains(storage: Storage) -> set[str]:
    result = await storage.execute('SELECT domain FROM discovered_domains WHERE status = ?', (STATUS_SUBSCRIBED,))
    return {row['domain'] for row in result.rows}


async def upsert_domain(storage: Storage, domain: str) -> tuple[DiscoveredDomain, bool]:
    now = utc_now_iso()
    existing = await storage.execute('SELECT * FROM discovered_domains WHERE domain = ?', (domain,))
    row = existing.first()
    if row is None:
        insert = await storage.execute(
            '''INSERT INTO discovered_domains (domain, status, current_score, first_seen, last_seen)
               VALUES (?, ?, 0, ?, ?)''',
            (domain, STATUS_PENDING, now, now),
        )
        record = DiscoveredDomain(
            id=insert.last_insert_id,
            domain=domain,
            status=STATUS_PENDING,
            current_score=0,
            first_seen=now,
            last_seen=now,
        )
        return record, True

    await storage.execute('UPDATE discovered_domains SET last_seen = ? WHERE id = ?', (now, row['id']))
    record = DiscoveredDomain.from_row(row)
    record.last_seen = now
    return record, False


async def insert_domain_events(storage: Storage, domain_id: int, stories: list[CollectedStory]) -> list[DomainEvent]:
    now = utc_now_iso()
    events = [
        DomainEvent(
            domain_id=domain_id,
            source=story.source,
            story_url=story.story_url,
            story_title=story.title,
            points=story.points,
            position=story.position,
            created_at=now,
        )
        for story in stories
    ]
    await storage.batch([
        (
            '''INSERT INTO domain_events (domain_id, source, story_url, story_title, points, position, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)''',
            (event.domain_id, event.source, event.story_url, event.story_title, event.points, event.position, event.created_at),
        )
        for event in events
    ])
    return events


async def record_run(storage: Storage, run: DiscoveryRun, error: str | None = None) -> None:
    run.completed_at = utc_now_iso()
    await storage.execute(
        '''INSERT INTO discovery_runs
           (started_at, completed_at, stories_collected, new_domains_found, feeds_discovered, new_suggestions, errors)
           VALUES (?, ?, ?, ?, ?, ?, ?)''',
        (
            run.started_at,
            run.completed_at,
            run.stories_collected,
            run.new_domains_found,
            run.feeds_discovered,
            run.new_suggestions,
            error if error is not None else run.errors_text(),
        ),
    )


async def process_domain(
    storage: Storage,
    domain: str,
    stories: list[CollectedStory],
    find_feed: FeedFinder,
    run: DiscoveryRun,
) -> None:
    record, created = await upsert_domain(storage, domain)
    if created:
        run.new_domains_found += 1
    await insert_domain_events(storage, record.id, stories)

    status = record.status
    has_feed = record.has_feed
    if not has_feed and status not in (STATUS_NO_FEED, STATUS_DISMISSED):
        feed = await find_feed(domain)
        if feed:
            await storage.execute(
                '''UPDATE discovered_domains
                   SET feed_url = ?, feed_title = ?, feed_description = ?
                   WHERE id = ?''',
                (feed.feed_url, feed.feed_title, feed.feed_description, record.id),
            )
            run.feeds_discovered += 1
            has_feed = True
            log.info('Discovered feed for %s: %s', domain, feed.feed_url)
        elif status == STATUS_PENDING:
            await storage.execute(
                'UPDATE discovered_domains SET status = ? WHERE id = ? AND status = ?',
                (STATUS_NO_FEED, record.id, STATUS_PENDING),
            )
            status = STATUS_NO_FEED
            log.debug('No feed found for %s.', domain)

    if not has_feed or status in FROZEN_STATUSES:
        return

    categories = detect_categories(stories)
    if categories:
        await storage.execute(
            'UPDATE discovered_domains SET categories = ? WHERE id = ?',
            (','.join(categories), record.id),
        )
    update = await update_domain_score(storage, record.id, calculate_cycle_score(stories), status)
    if update.promoted:
        run.new_suggestions += 1


async def run_discovery_cycle(
    storage: Storage,
    sources: list[SourceAdapter],
    find_feed: FeedFinder,
) -> DiscoveryRun:
    '''
    Execute one discovery cycle and record it in discovery_runs.

    Adapter failures are collected into ``run.errors`` and never abort the
    cycle. Any other failure is written to discovery_runs on a best-effort
    basis and re-raised as DiscoveryCycleError.
    '''
    run = DiscoveryRun(started_at=utc_now_iso())
    try:
        await init_schema(storage)

        stories, errors = await collect_all(sources)
        run.errors.extend(errors)
        run.stories_collected = len(stories)
        log.debug('Collected %d stories (%d source error(s)).', len(stories), len(errors))

        domain_stories = group_stories_by_domain(stories)
        subscribed = await load_subscribed_domains(storage)
        log.debug('Grouped stories into %d candidate domain(s).', len(domain_stories))

        for domain, grouped in domain_stories.items():
            if domain in subscribed:
                continue
            await process_domain(storage, domain, grouped, find_feed, run)

        await record_run(storage, run)
    except Exception as exc:  # noqa: BLE001
        message = str(exc) or exc.__class__.__name__
        log.exception('Discovery cycle failed: %s', message)
        try:
            await record_run(storage, run, error=message)
        except Exception as record_exc:  # noqa: BLE001
            log.error('Could not record failed discovery run: %s', record_exc)
        raise DiscoveryCycleError(message) from exc

    log.info(
        'Discovery cycle complete: %d stories, %d new domains, %d feeds, %d suggestions.',
        run.stories_collected,
        run.new_domains_found,
        run.feeds_discovered,
        run.new_suggestions,
    )
    return run
