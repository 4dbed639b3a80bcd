##########################################################################################
#
# Script name: suggestions.py
#
# Description: Suggested-feed read view and the dismiss/subscribe status mutations.
#
##########################################################################################

import asyncio
import logging

import httpx

from .config import STATUS_DISMISSED, STATUS_SUBSCRIBED, STATUS_SUGGESTED, SUGGESTIONS_LIMIT
from .models import Suggestion
from .storage import Storage


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

SUGGESTIONS_SQL = '''
    SELECT
        d.id AS domain_id,
        d.domain,
        d.feed_url,
        d.feed_title,
        d.feed_description,
        d.current_score,
        d.first_seen,
        d.categories,
        COUNT(DISTINCT e.source) AS source_count
    FROM discovered_domains d
    LEFT JOIN domain_events e ON e.domain_id = d.id
    WHERE d.status = ?
      AND d.feed_url IS NOT NULL
    GROUP BY d.id
    ORDER BY d.current_score DESC
    LIMIT ?
'''

# Strong references to in-flight hook tasks so they are not collected mid-request.
_background_tasks: set[asyncio.Task] = set()


# ****************************************************************************************
# Functions
# ****************************************************************************************


async def list_suggestions(storage: Storage, limit: int = SUGGESTIONS_LIMIT) -> list[Suggestion]:
    result = await storage.execute(SUGGESTIONS_SQL, (STATUS_SUGGESTED, limit))
    return [
        Suggestion(
            domain_id=row['domain_id'],
            domain=row['domain'],
            feed_url=row['feed_url'],
            feed_title=row['feed_title'] or '',
            feed_description=row['feed_description'] or None,
            current_score=row['current_score'],
            first_seen=row['first_seen'],
            source_count=row['source_count'],
            categories=row['categories'] or '',
        )
        for row in result.rows
    ]


async def _set_status(storage: Storage, domain_id: int, status: str) -> bool:
    result = await storage.execute('UPDATE discovered_domains SET status = ? WHERE id = ?', (status, domain_id))
    return result.rows_affected == 1


async def dismiss_domain(storage: Storage, domain_id: int) -> bool:
    changed = await _set_status(storage, domain_id, STATUS_DISMISSED)
    log.info('Dismissed domain %s: %s', domain_id, 'ok' if changed else 'not found')
    return changed


async def _post_build_hook(client: httpx.AsyncClient, url: str) -> None:
    try:
        response = await client.post(url)
        response.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        log.warning('Build hook request failed: %s', exc)
        return
    log.debug('Build hook accepted (%s).', response.status_code)


def trigger_rebuild_in_background(client: httpx.AsyncClient, url: str) -> asyncio.Task:
    '''
    Fire the build hook without blocking the caller.

    The returned task never raises; failures are logged. Awaiting it is
    optional, but the client must stay open until it finishes.
    '''
    task = asyncio.create_task(_post_build_hook(client, url))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def subscribe_domain(
    storage: Storage,
    domain_id: int,
    client: httpx.AsyncClient | None = None,
    build_hook_url: str | None = None,
) -> tuple[bool, asyncio.Task | None]:
    changed = await _set_status(storage, domain_id, STATUS_SUBSCRIBED)
    log.info('Subscribed domain %s: %s', domain_id, 'ok' if changed else 'not found')
    hook_task = None
    if changed and client is not None and build_hook_url:
        hook_task = trigger_rebuild_in_background(client, build_hook_url)
    return changed, hook_task
