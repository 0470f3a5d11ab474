from advault_scraper.metadata import build_rendering_metadata


def test_build_rendering_metadata_includes_optional_fields_when_provided():
    md = build_rendering_metadata(
        ad_id="ad1",
        serp_id="serp1",
        rendering_id="r1",
        rendering_type="png",
        sha256="a" * 64,
        width=100,
        height=200,
        scraper_version="advault:1.0.0",
        source_url="https://plumbboston.com",
    )
    assert list(md)[:4] == ["ad_id", "serp_id", "rendering_id", "rendering_type"]
    assert md["width"] == "100"
    assert md["source_url"] == "https://plumbboston.com"


def test_build_rendering_metadata_omits_optional_fields_when_absent():
    md = build_rendering_metadata(
        ad_id="ad1",
        serp_id="serp1",
        rendering_id="r1",
        rendering_type="png",
        sha256="c" * 64,
        width=None,
        height=None,
        scraper_version="advault:1.0.0",
    )
    assert "source_url" not in md
    assert "width" not in md
    assert all(isinstance(v, str) for v in md.values())
