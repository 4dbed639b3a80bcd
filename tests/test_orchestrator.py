##########################################################################################
#
# Script name: test_orchestrator.py
#
# Description: End-to-end discovery cycles against stub sources and a SQLite store.
#
##########################################################################################

from datetime import datetime, timezone
from functools import partial

import httpx
import pytest

from feed_discovery.errors import DiscoveryCycleError
from feed_discovery.feed_discoverer import discover_feed
from feed_discovery.models import CollectedStory, DiscoveredFeed
from feed_discovery.orchestrator import detect_categories, run_discovery_cycle
from feed_discovery.storage import SqliteStorage


class StubSource:
    def __init__(self, name: str, stories=None, error: Exception | None = None):
        self.name = name
        self.stories = stories or []
        self.error = error

    async def collect(self) -> list[CollectedStory]:
        if self.error:
            raise self.error
        return list(self.stories)


class StubFinder:
    def __init__(self, feeds: dict):
        self.feeds = feeds
        self.calls: list[str] = []

    async def __call__(self, domain: str):
        self.calls.append(domain)
        return self.feeds.get(domain)


def _story(url: str, source: str, points: int, position: int = 0) -> CollectedStory:
    return CollectedStory(
        url=url,
        title=f'{source} story {position}',
        source=source,
        points=points,
        position=position,
        story_url=f'https://{source}.example/discuss/{position}',
    )


def _feed(domain: str) -> DiscoveredFeed:
    return DiscoveredFeed(
        feed_url=f'https://{domain}/feed.xml',
        feed_title=f'{domain} feed',
        item_count=10,
        last_item_date=datetime(2026, 2, 1, tzinfo=timezone.utc),
        feed_description='Writing',
    )


async def _domain(storage, domain: str) -> dict | None:
    return (await storage.execute('SELECT * FROM discovered_domains WHERE domain = ?', (domain,))).first()


async def _runs(storage) -> list[dict]:
    return (await storage.execute('SELECT * FROM discovery_runs ORDER BY id')).rows


def test_detect_categories_unions_without_duplicates() -> None:
    stories = [
        _story('https://a.example.com/1', 'hackernews', 5),
        _story('https://a.example.com/2', 'devto', 2),
        _story('https://a.example.com/3', 'lobsters', 4),
    ]
    assert detect_categories(stories) == ['tech', 'webdev']


@pytest.mark.asyncio
async def test_cycle_creates_scores_and_promotes_new_domain(storage) -> None:
    sources = [
        StubSource('hackernews', [_story('https://blog.example.com/post', 'hackernews', 5)]),
        StubSource('devto', [_story('https://blog.example.com/other', 'devto', 2)]),
    ]
    finder = StubFinder({'blog.example.com': _feed('blog.example.com')})

    run = await run_discovery_cycle(storage, sources, finder)

    assert (run.stories_collected, run.new_domains_found, run.feeds_discovered, run.new_suggestions) == (2, 1, 1, 1)
    assert run.errors == []
    row = await _domain(storage, 'blog.example.com')
    assert row['status'] == 'suggested'
    assert row['current_score'] == 10
    assert row['feed_url'] == 'https://blog.example.com/feed.xml'
    assert row['feed_description'] == 'Writing'
    assert row['categories'] == 'tech,webdev'
    events = (await storage.execute('SELECT * FROM domain_events WHERE domain_id = ? ORDER BY id', (row['id'],))).rows
    assert [(event['source'], event['points']) for event in events] == [('hackernews', 5), ('devto', 2)]
    assert events[0]['story_url'] == 'https://hackernews.example/discuss/0'
    runs = await _runs(storage)
    assert len(runs) == 1
    assert runs[0]['new_suggestions'] == 1
    assert runs[0]['errors'] is None
    assert runs[0]['completed_at'] is not None


@pytest.mark.asyncio
async def test_cycle_accumulates_score_across_cycles(storage) -> None:
    sources = [StubSource('lobsters', [_story('https://slow.example.com/a', 'lobsters', 4)])]
    finder = StubFinder({'slow.example.com': _feed('slow.example.com')})

    first = await run_discovery_cycle(storage, sources, finder)
    row = await _domain(storage, 'slow.example.com')
    assert (row['status'], row['current_score'], first.new_suggestions) == ('pending', 4, 0)

    second = await run_discovery_cycle(storage, sources, finder)
    row = await _domain(storage, 'slow.example.com')
    assert (row['status'], row['current_score'], second.new_suggestions) == ('suggested', 8, 1)
    assert second.new_domains_found == 0
    # Feed was stored on the first pass, so discovery ran only once.
    assert finder.calls == ['slow.example.com']


@pytest.mark.asyncio
async def test_cycle_marks_pending_domain_without_feed_as_no_feed(storage) -> None:
    sources = [StubSource('hackernews', [_story('https://nofeed.example.com/a', 'hackernews', 5)])]
    finder = StubFinder({})

    run = await run_discovery_cycle(storage, sources, finder)
    row = await _domain(storage, 'nofeed.example.com')
    assert row['status'] == 'no_feed'
    assert row['current_score'] == 0
    assert run.feeds_discovered == 0

    # no_feed domains are not probed again, but sightings are still recorded.
    await run_discovery_cycle(storage, sources, finder)
    assert finder.calls == ['nofeed.example.com']
    events = (await storage.execute('SELECT COUNT(*) AS n FROM domain_events WHERE domain_id = ?', (row['id'],))).first()
    assert events['n'] == 2


@pytest.mark.asyncio
async def test_cycle_skips_subscribed_domains(storage) -> None:
    await storage.execute(
        '''INSERT INTO discovered_domains (domain, status, current_score, first_seen, last_seen, feed_url)
           VALUES ('known.example.com', 'subscribed', 20, 'then', 'then', 'https://known.example.com/rss')''',
    )
    sources = [StubSource('hackernews', [_story('https://known.example.com/a', 'hackernews', 5)])]
    finder = StubFinder({})

    await run_discovery_cycle(storage, sources, finder)
    row = await _domain(storage, 'known.example.com')
    assert row['last_seen'] == 'then'
    assert row['current_score'] == 20
    events = (await storage.execute('SELECT COUNT(*) AS n FROM domain_events')).first()
    assert events['n'] == 0
    assert finder.calls == []


@pytest.mark.asyncio
async def test_cycle_leaves_dismissed_domains_unscored(storage) -> None:
    await storage.execute(
        '''INSERT INTO discovered_domains (domain, status, current_score, first_seen, last_seen, feed_url)
           VALUES ('nope.example.com', 'dismissed', 9, 'then', 'then', 'https://nope.example.com/rss')''',
    )
    sources = [StubSource('hackernews', [_story('https://nope.example.com/a', 'hackernews', 5)])]

    await run_discovery_cycle(storage, sources, StubFinder({}))
    row = await _domain(storage, 'nope.example.com')
    assert (row['status'], row['current_score']) == ('dismissed', 9)
    assert row['last_seen'] != 'then'


@pytest.mark.asyncio
async def test_cycle_records_adapter_errors_and_continues(storage) -> None:
    sources = [
        StubSource('hackernews', error=RuntimeError('HN top stories failed: 503')),
        StubSource('devto', [_story('https://ok.example.com/a', 'devto', 2)]),
    ]
    run = await run_discovery_cycle(storage, sources, StubFinder({'ok.example.com': _feed('ok.example.com')}))

    assert run.errors == ['hackernews: HN top stories failed: 503']
    assert run.stories_collected == 1
    runs = await _runs(storage)
    assert runs[0]['errors'] == 'hackernews: HN top stories failed: 503'


@pytest.mark.asyncio
async def test_cycle_ignores_blocked_domains(storage) -> None:
    sources = [StubSource('hackernews', [_story('https://github.com/org/repo', 'hackernews', 5)])]
    run = await run_discovery_cycle(storage, sources, StubFinder({}))
    assert run.stories_collected == 1
    assert run.new_domains_found == 0
    count = (await storage.execute('SELECT COUNT(*) AS n FROM discovered_domains')).first()
    assert count['n'] == 0


@pytest.mark.asyncio
async def test_cycle_failure_is_recorded_and_raised(storage) -> None:
    async def broken_finder(domain: str):
        raise RuntimeError('storage went away')

    sources = [StubSource('hackernews', [_story('https://boom.example.com/a', 'hackernews', 5)])]
    with pytest.raises(DiscoveryCycleError, match='storage went away'):
        await run_discovery_cycle(storage, sources, broken_finder)

    runs = await _runs(storage)
    assert len(runs) == 1
    assert runs[0]['errors'] == 'storage went away'
    assert runs[0]['new_domains_found'] == 1


@pytest.mark.asyncio
async def test_cycle_failure_when_storage_unavailable(tmp_path) -> None:
    closed = SqliteStorage(str(tmp_path / 'never-opened.db'))
    with pytest.raises(DiscoveryCycleError):
        await run_discovery_cycle(closed, [StubSource('devto')], StubFinder({}))


@pytest.mark.asyncio
async def test_cycle_keeps_suggested_domain_without_feed(storage) -> None:
    await storage.execute(
        '''INSERT INTO discovered_domains (domain, status, current_score, first_seen, last_seen)
           VALUES ('lost.example.com', 'suggested', 9, 'then', 'then')''',
    )
    sources = [StubSource('hackernews', [_story('https://lost.example.com/a', 'hackernews', 5)])]
    finder = StubFinder({})

    run = await run_discovery_cycle(storage, sources, finder)
    row = await _domain(storage, 'lost.example.com')
    assert finder.calls == ['lost.example.com']
    assert (row['status'], row['current_score']) == ('suggested', 9)
    assert row['feed_url'] is None
    assert (run.feeds_discovered, run.new_suggestions) == (0, 0)


@pytest.mark.asyncio
async def test_cycle_survives_feed_with_out_of_range_date(storage, make_client) -> None:
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    feeds = {
        'weird.example.com': (
            '<rss><channel><title>Weird</title>'
            '<item><pubDate>0001-01-01T00:00:00+05:00</pubDate></item></channel></rss>'
        ),
        'good.example.com': (
            '<rss><channel><title>Good</title>'
            '<item><pubDate>Sat, 28 Feb 2026 09:00:00 +0000</pubDate></item></channel></rss>'
        ),
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == '/feed' and request.url.host in feeds:
            return httpx.Response(200, text=feeds[request.url.host])
        return httpx.Response(404)

    find_feed = partial(discover_feed, client=make_client(handler), now=now)
    sources = [
        StubSource(
            'hackernews',
            [
                _story('https://weird.example.com/a', 'hackernews', 5, 0),
                _story('https://good.example.com/b', 'hackernews', 5, 1),
            ],
        ),
    ]

    run = await run_discovery_cycle(storage, sources, find_feed)

    assert run.feeds_discovered == 2
    weird = await _domain(storage, 'weird.example.com')
    good = await _domain(storage, 'good.example.com')
    assert weird['feed_url'] == 'https://weird.example.com/feed'
    assert good['feed_url'] == 'https://good.example.com/feed'
    assert (good['status'], good['current_score']) == ('pending', 5)
    runs = await _runs(storage)
    assert runs[0]['errors'] is None
