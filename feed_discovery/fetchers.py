##########################################################################################
#
# Script name: fetchers.py
#
# Description: Trending-story source adapters for Hacker News, Lobsters, and Dev.to.
#
##########################################################################################

import asyncio
import logging
from abc import ABC, abstractmethod

import httpx

from .config import (
    DEVTO_POINTS,
    DEVTO_TOP_URL,
    HN_BATCH_SIZE,
    HN_DISCUSSION_URL,
    HN_FLOOR_POINTS,
    HN_ITEM_URL,
    HN_MAX_STORIES,
    HN_RANK_BANDS,
    HN_TOP_STORIES_URL,
    ITEM_TIMEOUT_SECONDS,
    LISTING_TIMEOUT_SECONDS,
    LOBSTERS_DOMAIN,
    LOBSTERS_HOTTEST_URL,
    LOBSTERS_POINTS,
    LOBSTERS_STORY_URL,
    SOURCE_DEVTO,
    SOURCE_HACKERNEWS,
    SOURCE_LOBSTERS,
)
from .models import CollectedStory
from .utils import normalize_whitespace


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)


# ****************************************************************************************
# Classes
# ****************************************************************************************


class SourceAdapter(ABC):
    name: str = ''

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    @abstractmethod
    async def collect(self) -> list[CollectedStory]: ...

    async def _get_json(self, url: str, timeout: float = LISTING_TIMEOUT_SECONDS):
        response = await self.client.get(url, timeout=timeout)
        response.raise_for_status()
        return response.json()


def hackernews_points(position: int) -> int:
    for upper_bound, points in HN_RANK_BANDS:
        if position < upper_bound:
            return points
    return HN_FLOOR_POINTS


class HackerNewsSource(SourceAdapter):
    name = SOURCE_HACKERNEWS

    async def collect(self) -> list[CollectedStory]:
        story_ids = await self._get_json(HN_TOP_STORIES_URL)
        if not isinstance(story_ids, list):
            raise ValueError('top stories payload is not a list')
        story_ids = story_ids[:HN_MAX_STORIES]

        stories: list[CollectedStory] = []
        for start in range(0, len(story_ids), HN_BATCH_SIZE):
            batch = story_ids[start:start + HN_BATCH_SIZE]
            results = await asyncio.gather(
                *(self._fetch_item(story_id, start + offset) for offset, story_id in enumerate(batch)),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    log.debug('Hacker News item fetch failed: %s', result)
                    continue
                if result is not None:
                    stories.append(result)
        return stories

    async def _fetch_item(self, story_id: int, position: int) -> CollectedStory | None:
        response = await self.client.get(f'{HN_ITEM_URL}/{story_id}.json', timeout=ITEM_TIMEOUT_SECONDS)
        if response.status_code != 200:
            return None
        payload = response.json() or {}
        url = (payload.get('url') or '').strip()
        if not url:
            return None
        return CollectedStory(
            url=url,
            title=normalize_whitespace(payload.get('title') or ''),
            source=self.name,
            points=hackernews_points(position),
            position=position,
            story_url=HN_DISCUSSION_URL.format(id=story_id),
        )


class LobstersSource(SourceAdapter):
    name = SOURCE_LOBSTERS

    async def collect(self) -> list[CollectedStory]:
        items = await self._get_json(LOBSTERS_HOTTEST_URL)
        if not isinstance(items, list):
            raise ValueError('hottest payload is not a list')
        external = [
            item for item in items
            if isinstance(item, dict) and item.get('url') and LOBSTERS_DOMAIN not in item['url']
        ]
        stories: list[CollectedStory] = []
        for position, item in enumerate(external):
            story_url = item.get('comments_url') or LOBSTERS_STORY_URL.format(short_id=item.get('short_id', ''))
            stories.append(
                CollectedStory(
                    url=item['url'],
                    title=normalize_whitespace(item.get('title') or ''),
                    source=self.name,
                    points=LOBSTERS_POINTS,
                    position=position,
                    story_url=story_url,
                )
            )
        return stories


class DevtoSource(SourceAdapter):
    name = SOURCE_DEVTO

    async def collect(self) -> list[CollectedStory]:
        items = await self._get_json(DEVTO_TOP_URL)
        if not isinstance(items, list):
            raise ValueError('articles payload is not a list')
        stories: list[CollectedStory] = []
        for position, item in enumerate(items):
            api_url = item.get('url') or ''
            stories.append(
                CollectedStory(
                    url=item.get('canonical_url') or api_url,
                    title=normalize_whitespace(item.get('title') or ''),
                    source=self.name,
                    points=DEVTO_POINTS,
                    position=position,
                    story_url=api_url,
                )
            )
        return stories


ADAPTERS = {
    SOURCE_HACKERNEWS: HackerNewsSource,
    SOURCE_LOBSTERS: LobstersSource,
    SOURCE_DEVTO: DevtoSource,
}


# ****************************************************************************************
# Functions
# ****************************************************************************************


def build_sources(names, client: httpx.AsyncClient) -> list[SourceAdapter]:
    sources: list[SourceAdapter] = []
    for name in names:
        adapter_class = ADAPTERS.get(name)
        if adapter_class is None:
            log.warning('Skipping unsupported source type: %s', name)
            continue
        sources.append(adapter_class(client))
    return sources


async def collect_all(sources: list[SourceAdapter]) -> tuple[list[CollectedStory], list[str]]:
    results = await asyncio.gather(*(source.collect() for source in sources), return_exceptions=True)
    stories: list[CollectedStory] = []
    errors: list[str] = []
    for source, result in zip(sources, results):
        if isinstance(result, BaseException):
            log.warning('Source fetch failed for %s: %s', source.name, result)
            errors.append(f'{source.name}: {result}')
            continue
        log.debug('Collected %d stories from %s.', len(result), source.name)
        stories.extend(result)
    return stories, errors
