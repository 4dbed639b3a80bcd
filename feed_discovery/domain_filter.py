from __future__ import annotations

import re
from urllib.parse import urlparse

from .config import BLOCKED_DOMAINS, BLOCKED_PATTERNS
from .models import CollectedStory

HOST_LABEL_RE = re.compile(r"^(?!-)[a-z0-9_-]{1,63}(?<!-)$")


def _is_valid_host(host: str) -> bool:
    if len(host) > 253:
        return False
    return all(HOST_LABEL_RE.match(label) for label in host.split("."))


def extract_domain(url: str) -> str | None:
    try:
        parsed = urlparse((url or "").strip())
        host = parsed.hostname
    except ValueError:
        return None
    if not parsed.scheme or not host:
        return None
    try:
        # Internationalized hosts are stored in their ASCII (punycode) form.
        host = host.encode("idna").decode("ascii").lower()
    except UnicodeError:
        return None
    if not _is_valid_host(host):
        return None
    return host


def is_blocked_domain(domain: str) -> bool:
    if domain in BLOCKED_DOMAINS:
        return True
    if any(domain.endswith("." + blocked) for blocked in BLOCKED_DOMAINS):
        return True
    return any(pattern.match(domain) for pattern in BLOCKED_PATTERNS)


def group_stories_by_domain(stories: list[CollectedStory]) -> dict[str, list[CollectedStory]]:
    grouped: dict[str, list[CollectedStory]] = {}
    for story in stories:
        domain = extract_domain(story.url)
        if not domain or is_blocked_domain(domain):
            continue
        grouped.setdefault(domain, []).append(story)
    return grouped
