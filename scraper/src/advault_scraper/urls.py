"""URL helpers for paid-search ads and their landing pages."""

from __future__ import annotations

import re
import urllib.parse

from .errors import ValidationError

BLOCKED_HOSTS = frozenset({"example.com", "localhost", "127.0.0.1"})
_TRACKER_PARAMS = {"gclid", "dclid", "gclsrc", "gbraid", "wbraid", "fbclid", "msclkid", "mc_eid", "mc_cid", "_hsenc", "_hsmi"}
_SLUG_RE = re.compile(r"[^a-z0-9.-]+")
_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def with_scheme(value: str) -> str:
    """Prefix ``https://`` unless ``value`` already starts with ``<scheme>://``."""

    if _SCHEME_RE.match(value):
        return value
    return "https://" + value.lstrip("/")


def normalize_landing_url(url: str | None) -> str:
    """Return an absolute ``http(s)`` landing URL or raise :class:`ValidationError`.

    A missing scheme is read as ``https``. Placeholder hosts are rejected so a
    malformed ad never costs a render request.
    """

    candidate = (url or "").strip()
    if not candidate:
        raise ValidationError("landing URL is empty")
    candidate = with_scheme(candidate)
    try:
        parsed = urllib.parse.urlparse(candidate)
        host = (parsed.hostname or "").lower()
    except ValueError as exc:
        raise ValidationError(f"unparsable landing URL: {url!r}") from exc
    if parsed.scheme not in ("http", "https"):
        raise ValidationError(f"unsupported URL scheme: {parsed.scheme!r}")
    if not host or "." not in host and host != "localhost":
        raise ValidationError(f"invalid landing URL: {url!r}")
    if host in BLOCKED_HOSTS or host.endswith(".example.com"):
        raise ValidationError(f"placeholder host not rendered: {host}")
    return candidate


def canonical_ad_url(url: str | None) -> str | None:
    """Unwrap ad-click redirects and drop click-tracking parameters."""

    if not url:
        return None
    parsed = urllib.parse.urlparse(url)
    if not parsed.scheme and not parsed.netloc:
        parsed = urllib.parse.urlparse(with_scheme(url))
    if parsed.scheme not in ("http", "https", ""):
        return None
    host = (parsed.netloc or "").lower()
    path = (parsed.path or "").lower()

    qs = urllib.parse.parse_qs(parsed.query)
    if host.endswith("googleadservices.com") or (host.endswith("google.com") and path == "/aclk"):
        adurl = qs.get("adurl", [None])[0]
        return canonical_ad_url(adurl) if adurl else None

    clean_qs = {k: v for k, v in qs.items() if (k not in _TRACKER_PARAMS and not k.startswith("utm_"))}
    clean_query = urllib.parse.urlencode([(k, vv) for k, vs in clean_qs.items() for vv in vs], doseq=True)

    scheme = parsed.scheme or "https"
    return urllib.parse.urlunparse((scheme, parsed.netloc, parsed.path, parsed.params, clean_query, parsed.fragment))


def _host_of(value: str) -> str:
    try:
        return (urllib.parse.urlparse(with_scheme(value)).hostname or "").lower()
    except ValueError:
        return ""


def advertiser_domain(url: str | None, shown_url: str | None = None) -> str | None:
    """Derive the advertiser domain, preferring the displayed URL over the click URL."""

    for candidate in (shown_url, canonical_ad_url(url)):
        if not candidate:
            continue
        # Displayed URLs look like "www.brand.com › offers" in SERP markup.
        host = _host_of(candidate.split("›")[0].split(" ")[0].strip())
        if host.startswith("www."):
            host = host[4:]
        if host and "." in host:
            return host
    return None


def is_absolute_http(url: str) -> bool:
    return url.lower().startswith(("http://", "https://"))


def same_origin(url: str, base_url: str) -> bool:
    a = urllib.parse.urlparse(url)
    b = urllib.parse.urlparse(base_url)
    return (a.scheme, a.netloc.lower()) == (b.scheme, b.netloc.lower())


def absolutize(url: str, base_url: str) -> str:
    return urllib.parse.urljoin(base_url, url)


def hostname_slug(url: str) -> str:
    """Filesystem-safe hostname used in rendering file names."""

    slug = _SLUG_RE.sub("-", _host_of(url)).strip("-.")
    return slug or "unknown-host"


__all__ = [
    "BLOCKED_HOSTS",
    "absolutize",
    "advertiser_domain",
    "canonical_ad_url",
    "hostname_slug",
    "is_absolute_http",
    "normalize_landing_url",
    "same_origin",
    "with_scheme",
]
