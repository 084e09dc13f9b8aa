"""Approved seed sources and the domain allowlist."""

from __future__ import annotations

from urllib.parse import urlparse

from sourcereg.models.registry import SeedConfig, SourceType

SEED_SOURCES: list[SeedConfig] = [
    SeedConfig(
        name="OpenStax",
        type=SourceType.OPENSTAX,
        base_url="https://openstax.org",
        seed_url="https://openstax.org/subjects",
        description="Free, peer-reviewed, openly licensed textbooks",
        rate_limit_per_minute=30,
        config={"api_url": "https://openstax.org/apps/cms/api/books/"},
    ),
    SeedConfig(
        name="MIT OpenCourseWare",
        type=SourceType.MIT_OCW,
        base_url="https://ocw.mit.edu",
        seed_url="https://ocw.mit.edu/search",
        description="Free lecture notes, exams, and videos from MIT courses",
        rate_limit_per_minute=30,
    ),
    SeedConfig(
        name="Python Documentation",
        type=SourceType.SPHINX_DOCS,
        base_url="https://docs.python.org",
        seed_url="https://docs.python.org/3/",
        description="Official Python language and standard library documentation",
        rate_limit_per_minute=30,
        config={
            "versions": ["3.13", "3.12", "3.11", "3.10"],
            "default_version": "3.12",
        },
    ),
]

ALLOWED_DOMAINS: tuple[str, ...] = (
    "openstax.org",
    "cnx.org",
    "ocw.mit.edu",
    "mit.edu",
    "docs.python.org",
    "python.org",
)


def get_seed_by_name(name: str) -> SeedConfig | None:
    wanted = name.strip().lower()
    return next((seed for seed in SEED_SOURCES if seed.name.lower() == wanted), None)


def get_seeds_by_type(source_type: SourceType) -> list[SeedConfig]:
    return [seed for seed in SEED_SOURCES if seed.type == source_type]


def _normalise_host(hostname: str) -> str:
    hostname = hostname.lower().rstrip(".")
    return hostname[4:] if hostname.startswith("www.") else hostname


def is_domain_allowed(hostname: str, allowlist: tuple[str, ...] = ALLOWED_DOMAINS) -> bool:
    """``docs.python.org`` matches ``python.org``; ``evil-python.org`` does not."""
    host = _normalise_host(hostname)
    if not host:
        return False
    for domain in allowlist:
        domain = _normalise_host(domain)
        if host == domain or host.endswith("." + domain):
            return True
    return False


def is_url_allowed(url: str, allowlist: tuple[str, ...] = ALLOWED_DOMAINS) -> bool:
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return False
    return bool(hostname) and is_domain_allowed(hostname, allowlist)
