from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class CollectedStory:
    url: str
    title: str
    source: str
    points: int
    position: int
    story_url: str


@dataclass(frozen=True)
class DiscoveredFeed:
    feed_url: str
    feed_title: str
    item_count: int
    last_item_date: datetime | None
    feed_description: str | None = None


@dataclass
class DiscoveredDomain:
    id: int
    domain: str
    status: str
    current_score: int
    first_seen: str
    last_seen: str
    feed_url: str | None = None
    feed_title: str | None = None
    feed_description: str | None = None
    categories: str = ""

    @property
    def has_feed(self) -> bool:
        return self.feed_url is not None

    @classmethod
    def from_row(cls, row: dict) -> DiscoveredDomain:
        return cls(
            id=row["id"],
            domain=row["domain"],
            status=row["status"],
            current_score=row["current_score"],
            first_seen=row["first_seen"],
            last_seen=row["last_seen"],
            feed_url=row.get("feed_url"),
            feed_title=row.get("feed_title"),
            feed_description=row.get("feed_description"),
            categories=row.get("categories") or "",
        )


@dataclass(frozen=True)
class DomainEvent:
    domain_id: int
    source: str
    story_url: str
    story_title: str
    points: int
    position: int
    created_at: str


@dataclass
class DiscoveryRun:
    started_at: str
    completed_at: str | None = None
    stories_collected: int = 0
    new_domains_found: int = 0
    feeds_discovered: int = 0
    new_suggestions: int = 0
    errors: list[str] = field(default_factory=list)

    def errors_text(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None


@dataclass(frozen=True)
class ScoreUpdate:
    new_score: int
    promoted: bool


@dataclass(frozen=True)
class Suggestion:
    domain_id: int
    domain: str
    feed_url: str
    feed_title: str
    feed_description: str | None
    current_score: int
    first_seen: str
    source_count: int
    categories: str


@dataclass(frozen=True)
class FeedInfo:
    title: str
    description: str
    link: str
    item_count: int
