"""Read-only views over persisted pipeline state: job verification and HTML reports."""

from __future__ import annotations

import html
from dataclasses import dataclass, field
from typing import Any

from .db.filters import eq, in_
from .models import (
    ADS_TABLE,
    RENDERINGS_TABLE,
    SERP_ADS_TABLE,
    SERPS_TABLE,
    STAGING_TABLE,
    TRACKING_TABLE,
    RenderingType,
)


@dataclass
class JobVerification:
    job_id: str
    staging_status: str | None = None
    staging_error: str | None = None
    serp_id: str | None = None
    ad_count: int = 0
    renderings: dict[str, dict[str, int]] = field(default_factory=dict)
    tracking: dict[str, Any] | None = None
    problems: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


def verify_job(store, job_id: str) -> JobVerification:
    """Walk staging -> SERP -> SERP ads -> renderings for one job, noting every gap."""

    out = JobVerification(job_id=job_id)
    staging = store.select_one(STAGING_TABLE, [eq("job_id", job_id)])
    if staging is None:
        out.problems.append("no staging record")
    else:
        out.staging_status = staging.get("status")
        out.staging_error = staging.get("error_message")
        if out.staging_status == "error":
            out.problems.append(f"staging error: {out.staging_error or 'no message'}")
        elif out.staging_status == "pending":
            out.problems.append("staging record still pending")

    serp = store.select_one(SERPS_TABLE, [eq("job_id", job_id)])
    if serp is None:
        if out.staging_status in ("processed", "skipped"):
            out.problems.append("staging settled but no SERP exists")
    else:
        out.serp_id = str(serp["id"])
        out.ad_count = store.count(SERP_ADS_TABLE, [eq("serp_id", serp["id"])])
        if out.staging_status == "processed" and out.ad_count == 0:
            out.problems.append("SERP processed but has no linked ads")
        for rtype in RenderingType:
            rows = store.select(
                RENDERINGS_TABLE,
                [eq("serp_id", serp["id"]), eq("rendering_type", rtype.value)],
                columns=["status"],
            )
            counts: dict[str, int] = {}
            for r in rows:
                counts[r["status"]] = counts.get(r["status"], 0) + 1
            out.renderings[rtype.value] = counts

    out.tracking = store.select_one(TRACKING_TABLE, [eq("job_id", job_id)])
    if out.tracking is None:
        out.problems.append("no tracking record")
    return out


_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ font-family: sans-serif; margin: 2rem; color: #222; }}
.serp {{ border-top: 2px solid #ccc; margin-top: 2rem; }}
.ad {{ border: 1px solid #ddd; border-radius: 6px; padding: .75rem; margin: .75rem 0; }}
.ad img {{ max-width: 320px; display: block; margin-top: .5rem; }}
.muted {{ color: #777; font-size: .9em; }}
</style>
</head>
<body>
<h1>{title}</h1>
{body}
</body>
</html>
"""


def _ad_block(ad: dict[str, Any], link: dict[str, Any], renders: list[dict[str, Any]]) -> str:
    e = html.escape
    parts = [
        '<div class="ad">',
        f"<strong>#{e(str(link.get('position') or '?'))} {e(ad.get('title') or '')}</strong>",
        f"<div class=\"muted\">{e(ad.get('advertiser_domain') or '')} &middot; {e(ad.get('shown_url') or '')}</div>",
    ]
    if ad.get("description"):
        parts.append(f"<p>{e(ad['description'])}</p>")
    if ad.get("url"):
        parts.append(f"<a href=\"{e(ad['url'], quote=True)}\">landing page</a>")
    for r in renders:
        if r.get("rendering_type") == RenderingType.PNG.value and r.get("storage_url"):
            parts.append(f"<img src=\"{e(r['storage_url'], quote=True)}\" alt=\"landing page screenshot\">")
        else:
            parts.append(f"<div class=\"muted\">{e(r.get('rendering_type') or '')}: {e(r.get('status') or '')}</div>")
    parts.append("</div>")
    return "\n".join(parts)


def render_serp_report(store, job_id: str | None = None, *, limit: int = 10) -> str:
    """Build a self-contained HTML page listing SERPs with their ads and renderings."""

    filters = [eq("job_id", job_id)] if job_id else []
    serps = store.select(SERPS_TABLE, filters, order_by="timestamp", descending=True, limit=limit)
    sections = []
    for serp in serps:
        links = store.select(SERP_ADS_TABLE, [eq("serp_id", serp["id"])], order_by="position")
        ad_ids = [link["ad_id"] for link in links]
        ads = {str(a["id"]): a for a in store.select(ADS_TABLE, [in_("id", ad_ids)])} if ad_ids else {}
        renders = store.select(RENDERINGS_TABLE, [eq("serp_id", serp["id"])]) if ad_ids else []
        by_ad: dict[str, list[dict[str, Any]]] = {}
        for r in renders:
            by_ad.setdefault(str(r["ad_id"]), []).append(r)
        blocks = [
            _ad_block(ads[str(link["ad_id"])], link, by_ad.get(str(link["ad_id"]), []))
            for link in links
            if str(link["ad_id"]) in ads
        ]
        sections.append(
            '<section class="serp">'
            f"<h2>{html.escape(serp.get('query') or '')} &mdash; {html.escape(serp.get('location') or '')}</h2>"
            f"<div class=\"muted\">job {html.escape(str(serp.get('job_id')))} &middot; {len(blocks)} ads</div>"
            + ("\n".join(blocks) or "<p>No paid ads.</p>")
            + "</section>"
        )
    body = "\n".join(sections) or "<p>No SERPs found.</p>"
    title = f"SERP report: {job_id}" if job_id else "SERP report"
    return _PAGE.format(title=html.escape(title), body=body)


__all__ = ["JobVerification", "render_serp_report", "verify_job"]
