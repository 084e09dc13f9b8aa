"""Behaviour shared by every adapter.

Adapters compose these helpers rather than inheriting them: license
detection over page text, slugification, URL resolution, and the default
``validate`` pipeline (robots check, page fetch, license detection).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urljoin

import structlog

from sourcereg.models.registry import LicenseInfo, RobotsStatus, ValidationIssue, ValidationResult
from sourcereg.parser import element_text, parse_html

if TYPE_CHECKING:
    from collections.abc import Callable

    from sourcereg.models.registry import AssetCandidate
    from sourcereg.protocols import FetcherProtocol

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# License detection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LicensePattern:
    regex: re.Pattern[str]
    name: Callable[[re.Match[str]], str]
    confidence: float


# Ordered; the first pattern that matches the page text wins.
LICENSE_PATTERNS: tuple[LicensePattern, ...] = (
    LicensePattern(
        re.compile(
            r"Creative Commons Attribution(?:-NonCommercial)?(?:-ShareAlike)?"
            r"(?:-NoDerivatives)? (\d+\.\d+)",
            re.IGNORECASE,
        ),
        lambda m: "CC " + re.sub(r"Creative Commons ", "", m.group(0), flags=re.IGNORECASE),
        0.9,
    ),
    LicensePattern(
        re.compile(r"CC BY(-NC)?(-SA)?(-ND)? (\d+\.\d+)", re.IGNORECASE),
        lambda m: m.group(0).upper(),
        0.95,
    ),
    LicensePattern(re.compile(r"MIT License", re.IGNORECASE), lambda m: "MIT License", 0.95),
    LicensePattern(
        re.compile(r"Apache License,? Version (\d+\.\d+)", re.IGNORECASE),
        lambda m: f"Apache {m.group(1)}",
        0.95,
    ),
    LicensePattern(
        re.compile(r"GNU (?:General Public License|GPL)(?: v)?(\d+)?", re.IGNORECASE),
        lambda m: f"GPL v{m.group(1)}" if m.group(1) else "GPL",
        0.9,
    ),
    LicensePattern(
        re.compile(r"BSD (\d)-Clause License", re.IGNORECASE),
        lambda m: f"BSD {m.group(1)}-Clause",
        0.95,
    ),
    LicensePattern(re.compile(r"Public Domain", re.IGNORECASE), lambda m: "Public Domain", 0.8),
)

_CC_LINK_RE = re.compile(r"licenses/(by(?:-nc)?(?:-sa)?(?:-nd)?)/([\d.]+)", re.IGNORECASE)
_LICENSE_META_SELECTOR = 'meta[name="license"], meta[property="dc:license"], meta[name="dc.rights"]'


def detect_license(html: str) -> LicenseInfo:
    """Detect a license from page text, then CC links, then meta tags."""
    soup = parse_html(html)
    text = element_text(soup.body or soup)
    for pattern in LICENSE_PATTERNS:
        match = pattern.regex.search(text)
        if match:
            return LicenseInfo(name=pattern.name(match), confidence=pattern.confidence)

    cc_link = soup.select_one('a[href*="creativecommons.org/licenses"]')
    if cc_link is not None:
        href = str(cc_link.get("href", ""))
        cc_match = _CC_LINK_RE.search(href)
        if cc_match:
            return LicenseInfo(
                name=f"CC {cc_match.group(1).upper()} {cc_match.group(2)}",
                url=href,
                confidence=0.95,
            )

    meta = soup.select_one(_LICENSE_META_SELECTOR)
    if meta is not None and meta.get("content"):
        return LicenseInfo(name=str(meta["content"]).strip(), confidence=0.7)

    return LicenseInfo()


# ---------------------------------------------------------------------------
# Text and URL helpers
# ---------------------------------------------------------------------------

_NON_WORD_RE = re.compile(r"[^\w\s-]", re.ASCII)
_SEPARATOR_RE = re.compile(r"[\s_-]+")


def slugify(text: str) -> str:
    """``'  Hello, World! '`` → ``'hello-world'``."""
    slug = _NON_WORD_RE.sub("", text.lower().strip())
    slug = _SEPARATOR_RE.sub("-", slug)
    return slug.strip("-")


def resolve_url(href: str, base_url: str) -> str:
    return urljoin(base_url, href)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


async def validate_candidate(
    fetcher: FetcherProtocol, candidate: AssetCandidate
) -> ValidationResult:
    """Check robots policy, fetch the asset page and detect its license.

    Fetch failures become validation errors; a failed robots check or a
    missing license become warnings.
    """
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []
    license_info = LicenseInfo()

    robots = await fetcher.check_robots(candidate.url)
    if robots.error:
        robots_status = RobotsStatus.NEEDS_REVIEW
        warnings.append(
            ValidationIssue(
                code="ROBOTS_CHECK_FAILED",
                message=f"Could not verify robots.txt: {robots.error}",
            )
        )
    elif robots.allowed:
        robots_status = RobotsStatus.ALLOWED
    else:
        robots_status = RobotsStatus.DISALLOWED

    try:
        result = await fetcher.fetch(candidate.url)
    except Exception as exc:
        log.warning("validate_fetch_error", url=candidate.url, exc_info=True)
        errors.append(ValidationIssue(code="FETCH_ERROR", message=f"Error fetching asset: {exc}"))
    else:
        if result.ok and result.body is not None:
            license_info = detect_license(result.body)
            if not license_info.name:
                warnings.append(
                    ValidationIssue(
                        code="LICENSE_NOT_DETECTED",
                        message="Could not automatically detect license information",
                    )
                )
        else:
            errors.append(
                ValidationIssue(
                    code="FETCH_FAILED",
                    message=f"Failed to fetch asset page: {result.error}",
                    details={"status": result.status},
                )
            )

    return ValidationResult(
        license_name=license_info.name,
        license_url=license_info.url,
        license_confidence=license_info.confidence,
        robots_status=robots_status,
        errors=errors,
        warnings=warnings,
    )


def apply_stated_license(
    result: ValidationResult, stated: LicenseInfo, min_confidence: float
) -> ValidationResult:
    """Replace a missing or weak detection with the provider's stated license."""
    if result.license_name and result.license_confidence >= min_confidence:
        return result
    return result.model_copy(
        update={
            "license_name": stated.name,
            "license_url": stated.url,
            "license_confidence": stated.confidence,
            "warnings": [w for w in result.warnings if w.code != "LICENSE_NOT_DETECTED"],
        }
    )
