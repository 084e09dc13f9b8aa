"""Unit tests for sourcereg.seeds."""

from __future__ import annotations

from sourcereg.models.registry import SourceType
from sourcereg.seeds import (
    SEED_SOURCES,
    get_seed_by_name,
    get_seeds_by_type,
    is_domain_allowed,
    is_url_allowed,
)


class TestSeedLookup:
    def test_by_name_is_case_insensitive(self) -> None:
        seed = get_seed_by_name("  openstax ")
        assert seed is not None
        assert seed.type == SourceType.OPENSTAX

    def test_unknown_name(self) -> None:
        assert get_seed_by_name("Khan Academy") is None

    def test_by_type(self) -> None:
        seeds = get_seeds_by_type(SourceType.MIT_OCW)
        assert [s.name for s in seeds] == ["MIT OpenCourseWare"]

    def test_seed_urls_are_allowed(self) -> None:
        for seed in SEED_SOURCES:
            assert is_url_allowed(seed.seed_url), seed.name


class TestDomainAllowlist:
    def test_exact_domain(self) -> None:
        assert is_domain_allowed("openstax.org")

    def test_subdomain(self) -> None:
        assert is_domain_allowed("docs.python.org", ("python.org",))

    def test_suffix_lookalike_rejected(self) -> None:
        assert not is_domain_allowed("evil-python.org", ("python.org",))

    def test_www_and_case_ignored(self) -> None:
        assert is_domain_allowed("WWW.OpenStax.org")

    def test_empty_host(self) -> None:
        assert not is_domain_allowed("")

    def test_url_without_host(self) -> None:
        assert not is_url_allowed("/relative/path")

    def test_unlisted_url(self) -> None:
        assert not is_url_allowed("https://example.com/book")
