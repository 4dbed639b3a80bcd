##########################################################################################
#
# Script name: config.py
#
# Description: Static discovery tables and YAML-backed runtime settings.
#
##########################################################################################

import os
import re
from dataclasses import dataclass

import yaml

from .errors import ConfigError


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

USER_AGENT = 'feed-discovery-bot/1.0 (feed-discovery)'
FETCH_TIMEOUT_SECONDS = 8.0
LISTING_TIMEOUT_SECONDS = 15.0
ITEM_TIMEOUT_SECONDS = 10.0

SOURCE_HACKERNEWS = 'hackernews'
SOURCE_LOBSTERS = 'lobsters'
SOURCE_DEVTO = 'devto'
SOURCE_NAMES = (SOURCE_HACKERNEWS, SOURCE_LOBSTERS, SOURCE_DEVTO)

STATUS_PENDING = 'pending'
STATUS_SUGGESTED = 'suggested'
STATUS_SUBSCRIBED = 'subscribed'
STATUS_DISMISSED = 'dismissed'
STATUS_NO_FEED = 'no_feed'

# Statuses that are never rescored.
FROZEN_STATUSES = frozenset({STATUS_DISMISSED, STATUS_SUBSCRIBED, STATUS_NO_FEED})

SUGGESTION_THRESHOLD = 8
CROSS_SOURCE_BONUS = 3
SCORE_UPDATE_ATTEMPTS = 3
FRESHNESS_DAYS = 90
SUGGESTIONS_LIMIT = 50

HN_TOP_STORIES_URL = 'https://hacker-news.firebaseio.com/v0/topstories.json'
HN_ITEM_URL = 'https://hacker-news.firebaseio.com/v0/item'
HN_DISCUSSION_URL = 'https://news.ycombinator.com/item?id={id}'
HN_MAX_STORIES = 200
HN_BATCH_SIZE = 50
# (rank upper bound, points); ranks past the last band score HN_FLOOR_POINTS.
HN_RANK_BANDS = ((30, 5), (100, 3))
HN_FLOOR_POINTS = 1

LOBSTERS_HOTTEST_URL = 'https://lobste.rs/hottest.json'
LOBSTERS_DOMAIN = 'lobste.rs'
LOBSTERS_STORY_URL = 'https://lobste.rs/s/{short_id}'
LOBSTERS_POINTS = 4

DEVTO_TOP_URL = 'https://dev.to/api/articles?top=7'
DEVTO_POINTS = 2

SOURCE_CATEGORIES = {
    SOURCE_HACKERNEWS: 'tech',
    SOURCE_LOBSTERS: 'tech',
    SOURCE_DEVTO: 'webdev',
}

BLOCKED_DOMAINS = frozenset({
    'medium.com',
    'github.com',
    'youtube.com',
    'twitter.com',
    'x.com',
    'reddit.com',
    'news.ycombinator.com',
    'stackoverflow.com',
    'stackexchange.com',
    'wikipedia.org',
    'arxiv.org',
    'docs.google.com',
    'drive.google.com',
    'linkedin.com',
    'facebook.com',
    'instagram.com',
    'substack.com',
    'dev.to',
    'npmjs.com',
    'pypi.org',
    'archive.org',
    'lobste.rs',
    'codepen.io',
    'jsfiddle.net',
    'replit.com',
    'pastebin.com',
    'imgur.com',
    'twitch.tv',
    'tiktok.com',
    'discord.com',
    'slack.com',
    'notion.so',
    'figma.com',
    'apple.com',
    'microsoft.com',
    'amazon.com',
    'google.com',
    'crates.io',
    'hub.docker.com',
    'play.google.com',
    'apps.apple.com',
})

BLOCKED_PATTERNS = [
    re.compile(r'^.*\.github\.io$'),
    re.compile(r'^.*\.medium\.com$'),
    re.compile(r'^.*\.substack\.com$'),
]

COMMON_FEED_PATHS = [
    '/feed',
    '/rss',
    '/atom.xml',
    '/feed.xml',
    '/index.xml',
    '/rss.xml',
    '/blog/feed',
    '/blog/rss.xml',
    '/blog/feed.xml',
    '/blog/atom.xml',
    '/feed/rss',
    '/feed/atom',
]

FEED_CONTENT_TYPES = [
    'application/rss+xml',
    'application/atom+xml',
    'application/xml',
    'text/xml',
    'application/feed+json',
]

HTML_ACCEPT = 'text/html'
FEED_ACCEPT = 'application/rss+xml, application/atom+xml, application/xml, text/xml'

DEFAULT_SETTINGS_FILE = 'config/discovery.yaml'
DEFAULT_DATABASE_PATH = 'discovery.db'


@dataclass(frozen=True)
class Settings:
    database_path: str = DEFAULT_DATABASE_PATH
    sources: tuple[str, ...] = SOURCE_NAMES
    build_hook_url: str | None = None
    fetch_timeout: float = FETCH_TIMEOUT_SECONDS
    suggestions_limit: int = SUGGESTIONS_LIMIT
    user_agent: str = USER_AGENT


# ****************************************************************************************
# Functions
# ****************************************************************************************


def _as_positive_number(payload: dict, key: str, default, cast):
    value = payload.get(key)
    if value is None:
        return default
    try:
        number = cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f'{key} must be a number, got {value!r}') from exc
    if number <= 0:
        raise ConfigError(f'{key} must be positive, got {value!r}')
    return number


def load_settings(path: str = DEFAULT_SETTINGS_FILE) -> Settings:
    payload: dict = {}
    if path and os.path.exists(path):
        with open(path, 'r', encoding='utf-8') as handle:
            payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, dict):
        raise ConfigError(f'{path} must contain a mapping at the top level')

    sources = payload.get('sources', list(SOURCE_NAMES))
    if not isinstance(sources, list) or not all(isinstance(name, str) for name in sources):
        raise ConfigError('sources must be a list of adapter names')

    settings = Settings(
        database_path=os.getenv('DISCOVERY_DB_PATH') or payload.get('database_path') or DEFAULT_DATABASE_PATH,
        sources=tuple(name.strip().lower() for name in sources if name.strip()),
        build_hook_url=os.getenv('BUILD_HOOK_URL') or payload.get('build_hook_url') or None,
        fetch_timeout=_as_positive_number(payload, 'fetch_timeout', FETCH_TIMEOUT_SECONDS, float),
        suggestions_limit=_as_positive_number(payload, 'suggestions_limit', SUGGESTIONS_LIMIT, int),
        user_agent=payload.get('user_agent') or USER_AGENT,
    )
    return settings
