"""Landing-page HTML cleanup with BeautifulSoup.

Three passes over a rendered page: drop active content (scripts and
cross-origin stylesheets), rewrite relative links and images against the
page URL, then reduce the document to an allow-list of tags and attributes.
"""

from __future__ import annotations

from bs4 import BeautifulSoup, Comment, Declaration, Doctype, ProcessingInstruction

from .urls import absolutize, is_absolute_http, same_origin

ALLOWED_TAGS = frozenset(
    {
        "address", "article", "aside", "footer", "header", "h1", "h2", "h3", "h4", "h5", "h6",
        "hgroup", "main", "nav", "section", "blockquote", "dd", "div", "dl", "dt", "figcaption",
        "figure", "hr", "li", "ol", "p", "pre", "ul", "a", "abbr", "b", "bdi", "bdo", "br", "cite",
        "code", "data", "dfn", "em", "i", "kbd", "mark", "q", "rb", "rp", "rt", "rtc", "ruby", "s",
        "samp", "small", "span", "strong", "sub", "sup", "time", "u", "var", "wbr", "caption",
        "col", "colgroup", "table", "tbody", "td", "tfoot", "th", "thead", "tr", "img", "style",
    }
)  # fmt: skip
ALLOWED_ATTRIBUTES: dict[str, frozenset[str]] = {
    "*": frozenset({"class", "id", "style"}),
    "a": frozenset({"href", "name", "target"}),
    "img": frozenset({"src", "srcset", "alt", "title", "width", "height", "loading"}),
}
ALLOWED_SCHEMES = frozenset({"http", "https", "ftp", "mailto", "tel"})
URL_ATTRIBUTES = frozenset({"href", "src", "cite"})
# Disallowed tags are unwrapped (text kept) except these, which go with their content.
DROP_WITH_CONTENT = ("script", "noscript", "textarea", "option", "iframe", "object", "embed", "template")

_PARSER = "html.parser"


def _scheme_allowed(url: str) -> bool:
    value = url.strip().lower()
    head = value.split("/", 1)[0]
    if ":" not in head:
        return True  # relative
    return head.split(":", 1)[0] in ALLOWED_SCHEMES


def _srcset_allowed(srcset: str) -> bool:
    candidates = [part.strip().split(" ")[0] for part in srcset.split(",") if part.strip()]
    return all(_scheme_allowed(c) for c in candidates)


def strip_active_content(soup: BeautifulSoup, base_url: str) -> int:
    """Remove scripts and stylesheets loaded from other origins; returns the number removed."""

    removed = 0
    for tag in soup.find_all("script"):
        tag.decompose()
        removed += 1
    for link in soup.find_all("link"):
        rel = [r.lower() for r in (link.get("rel") or [])]
        href = link.get("href") or ""
        if "stylesheet" in rel and is_absolute_http(href) and not same_origin(href, base_url):
            link.decompose()
            removed += 1
    return removed


def absolutize_links(soup: BeautifulSoup, base_url: str) -> int:
    """Rewrite relative ``a[href]`` and ``img[src]`` against ``base_url``; returns the rewrite count."""

    rewritten = 0
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if not href or href.startswith("#") or is_absolute_http(href):
            continue
        a["href"] = absolutize(href, base_url)
        rewritten += 1
    for img in soup.find_all("img", src=True):
        src = img["src"].strip()
        if not src or src.lower().startswith("data:") or is_absolute_http(src):
            continue
        img["src"] = absolutize(src, base_url)
        rewritten += 1
    return rewritten


def sanitize(soup: BeautifulSoup) -> str:
    """Reduce ``soup`` to the allow-list and return the serialized HTML."""

    for node in soup.find_all(string=lambda s: isinstance(s, (Comment, Doctype, Declaration, ProcessingInstruction))):
        node.extract()
    for tag in soup.find_all(DROP_WITH_CONTENT):
        tag.decompose()
    for tag in soup.find_all(True):
        if tag.name not in ALLOWED_TAGS:
            tag.unwrap()
            continue
        allowed = ALLOWED_ATTRIBUTES["*"] | ALLOWED_ATTRIBUTES.get(tag.name, frozenset())
        for attr in list(tag.attrs):
            value = tag.attrs[attr]
            if attr not in allowed:
                del tag.attrs[attr]
            elif attr in URL_ATTRIBUTES and isinstance(value, str) and not _scheme_allowed(value):
                del tag.attrs[attr]
            elif attr == "srcset" and isinstance(value, str) and not _srcset_allowed(value):
                del tag.attrs[attr]
    return str(soup).strip()


def clean_landing_html(html: str, base_url: str) -> str:
    """Run the full cleanup on a rendered landing page."""

    soup = BeautifulSoup(html, _PARSER)
    strip_active_content(soup, base_url)
    absolutize_links(soup, base_url)
    return sanitize(soup)


__all__ = [
    "ALLOWED_ATTRIBUTES",
    "ALLOWED_TAGS",
    "absolutize_links",
    "clean_landing_html",
    "sanitize",
    "strip_active_content",
]
