##########################################################################################
#
# Script name: main.py
#
# Description: CLI entrypoint for running discovery cycles and managing suggested feeds.
#
##########################################################################################

import argparse
import asyncio
import logging
import os
import sys
from datetime import date
from functools import partial

import httpx

from .config import DEFAULT_SETTINGS_FILE, Settings, load_settings
from .errors import Error
from .feed_discoverer import discover_feed, fetch_feed_info
from .fetchers import build_sources
from .orchestrator import run_discovery_cycle
from .storage import SqliteStorage, init_schema
from .suggestions import dismiss_domain, list_suggestions, subscribe_domain


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(os.path.basename(sys.argv[0]))
log.setLevel(logging.DEBUG)
log.propagate = False
formatter = logging.Formatter(
    '%(asctime)-15s [%(funcName)25s:%(lineno)-5s] %(levelname)-8s %(message)s'
)

# File handler for logging
fh = logging.FileHandler('feed_discovery.log', mode='w')
fh.setLevel(logging.DEBUG)
fh.setFormatter(formatter)
if not any(isinstance(handler, logging.FileHandler) for handler in log.handlers):
    log.addHandler(fh)

root_log = logging.getLogger()
root_log.setLevel(logging.DEBUG)
if not any(isinstance(handler, logging.FileHandler) for handler in root_log.handlers):
    root_log.addHandler(fh)


# ****************************************************************************************
# Functions
# ****************************************************************************************


def _http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={'User-Agent': settings.user_agent},
        timeout=settings.fetch_timeout,
        follow_redirects=True,
    )


async def crawl(settings: Settings) -> int:
    async with SqliteStorage(settings.database_path) as storage, _http_client(settings) as client:
        sources = build_sources(settings.sources, client)
        find_feed = partial(discover_feed, client=client, timeout=settings.fetch_timeout)
        run = await run_discovery_cycle(storage, sources, find_feed)
    log.info('Stories collected:   %d', run.stories_collected)
    log.info('New domains found:   %d', run.new_domains_found)
    log.info('Feeds discovered:    %d', run.feeds_discovered)
    log.info('New suggestions:     %d', run.new_suggestions)
    for error in run.errors:
        log.warning('Source error: %s', error)
    return 0


async def show_suggestions(settings: Settings) -> int:
    async with SqliteStorage(settings.database_path) as storage:
        await init_schema(storage)
        suggestions = await list_suggestions(storage, limit=settings.suggestions_limit)
    if not suggestions:
        log.info('No suggestions yet.')
    for item in suggestions:
        log.info(
            '[%d] %s score=%d sources=%d categories=%s feed=%s',
            item.domain_id,
            item.domain,
            item.current_score,
            item.source_count,
            item.categories or '-',
            item.feed_url,
        )
    return 0


async def dismiss(settings: Settings, domain_id: int) -> int:
    async with SqliteStorage(settings.database_path) as storage:
        await init_schema(storage)
        changed = await dismiss_domain(storage, domain_id)
    return 0 if changed else 1


async def subscribe(settings: Settings, domain_id: int) -> int:
    async with SqliteStorage(settings.database_path) as storage, _http_client(settings) as client:
        await init_schema(storage)
        changed, hook_task = await subscribe_domain(
            storage,
            domain_id,
            client=client,
            build_hook_url=settings.build_hook_url,
        )
        if hook_task is not None:
            # The client closes on exit, so let the hook finish first.
            await hook_task
    return 0 if changed else 1


async def discover(settings: Settings, domain: str) -> int:
    async with _http_client(settings) as client:
        feed = await discover_feed(domain, client, timeout=settings.fetch_timeout)
    if feed is None:
        log.info('No valid feed found for %s.', domain)
        return 1
    log.info('Feed:        %s', feed.feed_url)
    log.info('Title:       %s', feed.feed_title or '-')
    log.info('Items:       %d', feed.item_count)
    log.info('Last item:   %s', feed.last_item_date.isoformat() if feed.last_item_date else 'undated')
    return 0


async def preview(settings: Settings, url: str) -> int:
    async with _http_client(settings) as client:
        info = await fetch_feed_info(url, client, timeout=settings.fetch_timeout)
    log.info('Title:       %s', info.title or '-')
    log.info('Description: %s', info.description or '-')
    log.info('Link:        %s', info.link or '-')
    log.info('Items:       %d', info.item_count)
    return 0


# ****************************************************************************************
# Handle the arguments
# ****************************************************************************************


def handle_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Discover independent feeds from trending stories.')
    parser.add_argument('--config', default=DEFAULT_SETTINGS_FILE, help='Path to settings YAML.')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose output to stdout.')
    parser.add_argument('-q', '--quiet', action='store_true', help='Minimal stdout.')
    subparsers = parser.add_subparsers(dest='command', required=True)
    subparsers.add_parser('crawl', help='Run one discovery cycle.')
    subparsers.add_parser('suggestions', help='List suggested feeds by score.')
    dismiss_parser = subparsers.add_parser('dismiss', help='Dismiss a suggested domain.')
    dismiss_parser.add_argument('domain_id', type=int)
    subscribe_parser = subparsers.add_parser('subscribe', help='Mark a domain as subscribed.')
    subscribe_parser.add_argument('domain_id', type=int)
    discover_parser = subparsers.add_parser('discover', help='Probe a single domain for a feed.')
    discover_parser.add_argument('domain')
    preview_parser = subparsers.add_parser('preview', help='Show title and item count of a feed URL.')
    preview_parser.add_argument('url')
    args = parser.parse_args(argv)

    # Configure stdout logging based on arguments
    ch = logging.StreamHandler(sys.stdout)
    if args.verbose:
        ch.setLevel(logging.DEBUG)
    elif args.quiet:
        ch.setLevel(logging.ERROR)
    else:
        ch.setLevel(logging.INFO)
    ch.setFormatter(formatter)
    log.addHandler(ch)
    root_log.addHandler(ch)

    log.debug('Checking script requirements...')
    if not args.verbose and not args.quiet:
        log.debug('No output level specified. Defaulting to INFO.')

    log.info('++++++++++++++++++++++++++++++++++++++++++++++')
    log.info('+  %s', os.path.basename(sys.argv[0]))
    log.info('+  Python Version: %s', sys.version.split()[0])
    log.info('+  Today is: %s', date.today())
    log.info('+  Command: %s', args.command)
    log.info('++++++++++++++++++++++++++++++++++++++++++++++')
    return args


# ****************************************************************************************
# Main
# ****************************************************************************************


def main(argv=None) -> int:
    args = handle_args(argv)
    try:
        settings = load_settings(args.config)
        if args.command == 'crawl':
            return asyncio.run(crawl(settings))
        if args.command == 'suggestions':
            return asyncio.run(show_suggestions(settings))
        if args.command == 'dismiss':
            return asyncio.run(dismiss(settings, args.domain_id))
        if args.command == 'subscribe':
            return asyncio.run(subscribe(settings, args.domain_id))
        if args.command == 'discover':
            return asyncio.run(discover(settings, args.domain))
        return asyncio.run(preview(settings, args.url))
    except Error as exc:
        log.error('%s', exc)
        return 1


if __name__ == '__main__':
    sys.exit(main())
