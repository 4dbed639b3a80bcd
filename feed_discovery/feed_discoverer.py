##########################################################################################
#
# Script name: feed_discoverer.py
#
# Description: Locates and validates RSS/Atom feeds for a domain, and previews feeds.
#
##########################################################################################

import logging
import re
from datetime import datetime, timedelta
from urllib.parse import urljoin

import feedparser
import httpx

from .config import (
    COMMON_FEED_PATHS,
    FEED_ACCEPT,
    FEED_CONTENT_TYPES,
    FETCH_TIMEOUT_SECONDS,
    FRESHNESS_DAYS,
    HTML_ACCEPT,
)
from .errors import RequestError
from .models import DiscoveredFeed, FeedInfo
from .utils import parse_timestamp, utc_now


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

FETCH_ERRORS = (httpx.HTTPError, httpx.InvalidURL)

ALTERNATE_LINK_RE = re.compile(r'<link[^>]*rel=["\']alternate["\'][^>]*>', re.IGNORECASE)
TYPE_ATTR_RE = re.compile(r'type=["\']([^"\']+)["\']', re.IGNORECASE)
HREF_ATTR_RE = re.compile(r'href=["\']([^"\']+)["\']', re.IGNORECASE)

FEED_MARKERS = ('<rss', '<feed', '<channel>')
TITLE_RE = re.compile(r'<title[^>]*>(?:<!\[CDATA\[)?(.*?)(?:\]\]>)?</title>', re.IGNORECASE | re.DOTALL)
DESCRIPTION_RES = [
    re.compile(r'<description[^>]*>(?:<!\[CDATA\[)?(.*?)(?:\]\]>)?</description>', re.IGNORECASE | re.DOTALL),
    re.compile(r'<subtitle[^>]*>(?:<!\[CDATA\[)?(.*?)(?:\]\]>)?</subtitle>', re.IGNORECASE | re.DOTALL),
]
ITEM_RE = re.compile(r'<item[\s>]', re.IGNORECASE)
ENTRY_RE = re.compile(r'<entry[\s>]', re.IGNORECASE)
DATE_RE = re.compile(
    r'<(?:pubDate|updated|published|dc:date)[^>]*>(.*?)</(?:pubDate|updated|published|dc:date)>',
    re.IGNORECASE,
)


# ****************************************************************************************
# Functions
# ****************************************************************************************


def find_feed_link(html: str, base_url: str) -> str | None:
    for match in ALTERNATE_LINK_RE.finditer(html or ''):
        tag = match.group(0)
        type_match = TYPE_ATTR_RE.search(tag)
        if not type_match:
            continue
        link_type = type_match.group(1).lower()
        if not any(content_type in link_type for content_type in FEED_CONTENT_TYPES):
            continue
        href_match = HREF_ATTR_RE.search(tag)
        if not href_match:
            continue
        return urljoin(base_url, href_match.group(1).strip())
    return None


def _first_text(patterns, text: str) -> str:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return ''


def latest_item_date(text: str) -> datetime | None:
    dates = [parse_timestamp(raw.strip()) for raw in DATE_RE.findall(text)]
    dates = [value for value in dates if value is not None]
    return max(dates) if dates else None


def parse_feed_document(feed_url: str, text: str, now: datetime | None = None) -> DiscoveredFeed | None:
    '''
    Decide whether a fetched body is a usable feed.

    Rejects bodies without an RSS/Atom marker, with no items or entries, or
    whose most recent dated element is older than FRESHNESS_DAYS. Feeds with no
    parseable dates pass the freshness check.
    '''
    if not any(marker in text for marker in FEED_MARKERS):
        return None

    item_count = max(len(ITEM_RE.findall(text)), len(ENTRY_RE.findall(text)))
    if item_count == 0:
        return None

    last_item_date = latest_item_date(text)
    if last_item_date is not None:
        now = now or utc_now()
        if now - last_item_date > timedelta(days=FRESHNESS_DAYS):
            log.debug('Rejecting stale feed %s (last item %s).', feed_url, last_item_date.isoformat())
            return None

    description = _first_text(DESCRIPTION_RES, text)
    return DiscoveredFeed(
        feed_url=feed_url,
        feed_title=_first_text([TITLE_RE], text),
        feed_description=description or None,
        item_count=item_count,
        last_item_date=last_item_date,
    )


async def validate_feed(
    feed_url: str,
    client: httpx.AsyncClient,
    now: datetime | None = None,
    timeout: float = FETCH_TIMEOUT_SECONDS,
) -> DiscoveredFeed | None:
    try:
        response = await client.get(
            feed_url,
            headers={'Accept': FEED_ACCEPT},
            timeout=timeout,
            follow_redirects=True,
        )
    except FETCH_ERRORS as exc:
        log.debug('Feed probe failed for %s: %s', feed_url, exc)
        return None
    if not response.is_success:
        return None
    try:
        return parse_feed_document(feed_url, response.text, now=now)
    except (ValueError, OverflowError) as exc:
        log.debug('Feed parse failed for %s: %s', feed_url, exc)
        return None


async def find_feed_from_html(
    base_url: str,
    client: httpx.AsyncClient,
    timeout: float = FETCH_TIMEOUT_SECONDS,
) -> str | None:
    try:
        response = await client.get(
            base_url,
            headers={'Accept': HTML_ACCEPT},
            timeout=timeout,
            follow_redirects=True,
        )
    except FETCH_ERRORS as exc:
        log.debug('Homepage fetch failed for %s: %s', base_url, exc)
        return None
    if not response.is_success:
        return None
    return find_feed_link(response.text, base_url)


async def discover_feed(
    domain: str,
    client: httpx.AsyncClient,
    now: datetime | None = None,
    timeout: float = FETCH_TIMEOUT_SECONDS,
) -> DiscoveredFeed | None:
    base_url = f'https://{domain}/'

    linked_url = await find_feed_from_html(base_url, client, timeout=timeout)
    if linked_url:
        feed = await validate_feed(linked_url, client, now=now, timeout=timeout)
        if feed:
            log.debug('Found feed for %s via link tag: %s', domain, feed.feed_url)
            return feed

    for path in COMMON_FEED_PATHS:
        feed = await validate_feed(f'https://{domain}{path}', client, now=now, timeout=timeout)
        if feed:
            log.debug('Found feed for %s via path probe: %s', domain, feed.feed_url)
            return feed

    return None


async def fetch_feed_info(url: str, client: httpx.AsyncClient, timeout: float = FETCH_TIMEOUT_SECONDS) -> FeedInfo:
    try:
        response = await client.get(url, headers={'Accept': FEED_ACCEPT}, timeout=timeout, follow_redirects=True)
    except FETCH_ERRORS as exc:
        raise RequestError(url, str(exc)) from exc
    if not response.is_success:
        raise RequestError(url, f'HTTP {response.status_code}')

    parsed = feedparser.parse(response.content)
    if getattr(parsed, 'bozo', False):
        log.warning('Feed parse warning for %s', url)
    channel = parsed.feed
    return FeedInfo(
        title=channel.get('title', ''),
        description=channel.get('description') or channel.get('subtitle') or '',
        link=channel.get('link', ''),
        item_count=len(parsed.entries),
    )
