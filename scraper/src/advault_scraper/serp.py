"""Decoding of provider SERP payloads.

A raw provider result is decoded once, at the boundary, into either
:class:`AdsPresent` or :class:`AdsAbsent`; nothing downstream probes nested
optional fields of the raw JSON.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from .errors import ProviderResponseError
from .urls import advertiser_domain, canonical_ad_url

ORGANIC_SNAPSHOT_LIMIT = 5

_PAID_SNAPSHOT_FIELDS = (
    "pos",
    "pos_overall",
    "url",
    "title",
    "desc",
    "url_shown",
    "data_rw",
    "data_pcu",
    "sitelinks",
    "price",
    "seller",
    "url_image",
    "call_extension",
    "currency",
    "rating",
    "review_count",
    "previous_price",
)
_ORGANIC_SNAPSHOT_FIELDS = ("pos", "url", "title", "desc", "url_shown", "pos_overall")


@dataclass(frozen=True, slots=True)
class PaidAd:
    position: int
    position_overall: int | None
    title: str
    url: str | None
    description: str | None
    shown_url: str | None
    advertiser_domain: str | None
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AdsPresent:
    ads: tuple[PaidAd, ...]
    organic_count: int = 0
    page_url: str | None = None


@dataclass(frozen=True, slots=True)
class AdsAbsent:
    reason: str
    organic_count: int = 0
    page_url: str | None = None


SerpResult = Union[AdsPresent, AdsAbsent]


def _first_content(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    results = raw.get("results")
    if not isinstance(results, list) or not results:
        raise ProviderResponseError("provider result has no 'results' entries")
    first = results[0]
    content = first.get("content") if isinstance(first, Mapping) else None
    if not isinstance(content, Mapping):
        raise ProviderResponseError("provider result is not parsed JSON content")
    return content


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _decode_paid(index: int, item: Mapping[str, Any]) -> PaidAd | None:
    title = (item.get("title") or "").strip()
    url = item.get("url")
    if not title and not url:
        return None
    shown = item.get("url_shown")
    return PaidAd(
        position=_int_or_none(item.get("pos")) or index + 1,
        position_overall=_int_or_none(item.get("pos_overall")),
        title=title,
        url=canonical_ad_url(url) or url,
        description=item.get("desc"),
        shown_url=shown,
        advertiser_domain=advertiser_domain(url, shown),
        extras={k: item[k] for k in ("price", "seller", "rating", "review_count", "currency") if item.get(k) is not None},
    )


def decode_serp(raw: Mapping[str, Any]) -> SerpResult:
    """Decode a parsed provider result (or a staging snapshot of one).

    Raises :class:`ProviderResponseError` when the payload does not have the
    parsed-results shape at all.
    """

    content = _first_content(raw)
    results = content.get("results") or {}
    if not isinstance(results, Mapping):
        raise ProviderResponseError("provider content 'results' is not an object")
    organic = results.get("organic") or []
    page_url = content.get("url")
    paid_raw = results.get("paid") or []
    ads = tuple(ad for ad in (_decode_paid(i, item) for i, item in enumerate(paid_raw) if isinstance(item, Mapping)) if ad)
    if not ads:
        reason = "no paid ads found" if not paid_raw else "paid ads had neither title nor url"
        return AdsAbsent(reason=reason, organic_count=len(organic), page_url=page_url)
    return AdsPresent(ads=ads, organic_count=len(organic), page_url=page_url)


def build_staging_snapshot(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Trim a provider result to what extraction needs.

    Every paid ad keeps its full field set; organic results are cut to the
    first five. Job metadata is carried over untouched.
    """

    snapshot_results = []
    for result in raw.get("results") or []:
        content = result.get("content") if isinstance(result, Mapping) else None
        if not isinstance(content, Mapping):
            snapshot_results.append(result)
            continue
        inner = content.get("results") or {}
        paid = [{k: ad.get(k) for k in _PAID_SNAPSHOT_FIELDS if k in ad} for ad in inner.get("paid") or []]
        organic = [
            {k: item.get(k) for k in _ORGANIC_SNAPSHOT_FIELDS if k in item}
            for item in (inner.get("organic") or [])[:ORGANIC_SNAPSHOT_LIMIT]
        ]
        snapshot_results.append(
            {
                "content": {
                    "url": content.get("url"),
                    "page": content.get("page"),
                    "total_results_count": content.get("total_results_count"),
                    "results": {"paid": paid, "organic": organic},
                },
                "created_at": result.get("created_at"),
                "job_id": result.get("job_id"),
                "status_code": result.get("status_code"),
                "url": result.get("url"),
            }
        )
    return {"job": raw.get("job") or {}, "results": snapshot_results}


__all__ = [
    "ORGANIC_SNAPSHOT_LIMIT",
    "AdsAbsent",
    "AdsPresent",
    "PaidAd",
    "SerpResult",
    "build_staging_snapshot",
    "decode_serp",
]
