import pytest

from advault_scraper.errors import ValidationError
from advault_scraper.urls import advertiser_domain, canonical_ad_url, hostname_slug, normalize_landing_url


def test_normalize_landing_url_adds_missing_scheme():
    assert normalize_landing_url("plumbboston.com/quote") == "https://plumbboston.com/quote"
    assert normalize_landing_url(" http://rotorooter.com ") == "http://rotorooter.com"


@pytest.mark.parametrize(
    "url",
    [None, "", "   ", "ftp://files.org/x", "https://localhost/x", "https://example.com", "https://www.example.com/a", "notahost"],
)
def test_normalize_landing_url_rejects_unusable_urls(url):
    with pytest.raises(ValidationError):
        normalize_landing_url(url)


def test_canonical_ad_url_unwraps_redirects_and_trackers():
    nested = "https://www.googleadservices.com/pagead/aclk?adurl=https://plumbboston.com/path?utm_campaign=test&gclid=abc"
    assert canonical_ad_url(nested) == "https://plumbboston.com/path"
    assert canonical_ad_url("https://a.org/p?ref=1&fbclid=x") == "https://a.org/p?ref=1"


def test_canonical_ad_url_handles_invalid_inputs():
    assert canonical_ad_url("") is None
    assert canonical_ad_url("mailto:test@a.org") is None


def test_advertiser_domain_prefers_shown_url():
    assert advertiser_domain("https://click.net/x", "www.plumbboston.com › quote") == "plumbboston.com"
    assert advertiser_domain("https://www.rotorooter.com/plan") == "rotorooter.com"
    assert advertiser_domain(None, None) is None


def test_hostname_slug_is_filesystem_safe():
    assert hostname_slug("https://WWW.PlumbBoston.com/quote?x=1") == "www.plumbboston.com"
    assert hostname_slug("") == "unknown-host"


def test_canonical_ad_url_adds_scheme_to_bare_hosts():
    assert canonical_ad_url("www.plumbboston.com/quote") == "https://www.plumbboston.com/quote"
    assert canonical_ad_url("plumbboston.com/quote?gclid=x&zip=02118") == "https://plumbboston.com/quote?zip=02118"
    assert normalize_landing_url(canonical_ad_url("www.plumbboston.com/quote")) == "https://www.plumbboston.com/quote"


def test_scheme_inside_query_string_is_not_the_url_scheme():
    url = "plumbboston.com/go?next=https://plumbboston.com/quote"
    assert normalize_landing_url(url) == "https://" + url
    assert hostname_slug(url) == "plumbboston.com"
    assert advertiser_domain(url) == "plumbboston.com"
