"""robots.txt parsing.

The policy is deliberately coarse: a domain is disallowed only when the
active group carries a blanket ``Disallow: /`` without a matching
``Allow: /``. Path-specific rules are collected but not evaluated per URL.
"""

from __future__ import annotations

import math

from sourcereg.models.fetch import RobotsResult


def bot_token(user_agent: str) -> str:
    """Return the lowercased product token of a User-Agent string."""
    return user_agent.split("/", 1)[0].split()[0].lower() if user_agent.strip() else ""


def _agent_matches(agent: str, user_agent: str) -> bool:
    agent = agent.strip().lower()
    if not agent:
        return False
    if agent == "*":
        return True
    token = bot_token(user_agent)
    return agent in user_agent.lower() or (bool(token) and token in agent)


def parse_robots_txt(text: str, user_agent: str) -> RobotsResult:
    """Parse robots.txt content into the policy that applies to ``user_agent``.

    Consecutive ``User-agent`` lines form one group; the group applies if any
    of its agents matches. ``Sitemap`` lines are collected regardless of group.
    """
    disallow: list[str] = []
    allow: list[str] = []
    sitemaps: list[str] = []
    crawl_delay: float | None = None

    group_active = False
    in_agent_lines = False

    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        field, _, value = line.partition(":")
        field = field.strip().lower()
        value = value.strip()

        if field == "user-agent":
            matched = _agent_matches(value, user_agent)
            group_active = (group_active or matched) if in_agent_lines else matched
            in_agent_lines = True
            continue
        in_agent_lines = False

        if field == "sitemap":
            if value:
                sitemaps.append(value)
            continue
        if not group_active:
            continue
        if field == "disallow" and value:
            disallow.append(value)
        elif field == "allow" and value:
            allow.append(value)
        elif field == "crawl-delay":
            try:
                crawl_delay = float(value)
            except ValueError:
                continue

    blanket_disallow = "/" in disallow and "/" not in allow
    return RobotsResult(
        allowed=not blanket_disallow,
        crawl_delay=crawl_delay,
        sitemaps=sitemaps,
        disallow=disallow,
        allow=allow,
    )


def crawl_delay_to_rate(delay: float) -> int:
    """Convert a crawl delay in seconds to a requests-per-minute ceiling (minimum 1)."""
    if delay <= 0:
        return 60
    return max(1, math.floor(60 / delay))
