from bs4 import BeautifulSoup

from advault_scraper.html_clean import absolutize_links, clean_landing_html, strip_active_content

BASE = "https://plumbboston.com/quote"


def test_scripts_and_foreign_stylesheets_are_removed():
    html = (
        "<html><head>"
        "<link rel='stylesheet' href='https://cdn.other.net/a.css'>"
        "<link rel='stylesheet' href='https://plumbboston.com/site.css'>"
        "<script>track()</script></head><body>hi</body></html>"
    )
    soup = BeautifulSoup(html, "html.parser")
    assert strip_active_content(soup, BASE) == 2
    assert soup.find("script") is None
    assert [link["href"] for link in soup.find_all("link")] == ["https://plumbboston.com/site.css"]


def test_relative_links_and_images_become_absolute():
    soup = BeautifulSoup(
        "<a href='/give'>Give</a><a href='#top'>Top</a><img src='img/logo.png'><img src='data:image/png;base64,AA'>",
        "html.parser",
    )
    assert absolutize_links(soup, BASE) == 2
    assert soup.find_all("a")[0]["href"] == "https://plumbboston.com/give"
    assert soup.find_all("a")[1]["href"] == "#top"
    assert soup.find_all("img")[0]["src"] == "https://plumbboston.com/img/logo.png"


def test_clean_keeps_allowed_markup_only():
    html = (
        "<!DOCTYPE html><html><body>"
        "<!-- tracking pixel -->"
        "<div class='hero' onclick='steal()'><h1>Fast Repairs</h1><form><input name='x'>Sign up</form></div>"
        "<iframe src='https://x.net'>frame text</iframe>"
        "<a href='javascript:alert(1)'>bad</a><a href='/ok' target='_blank'>ok</a>"
        "<img src='/i.png' alt='Logo' onerror='x()'>"
        "</body></html>"
    )
    cleaned = clean_landing_html(html, BASE)
    assert "onclick" not in cleaned
    assert "onerror" not in cleaned
    assert "<iframe" not in cleaned and "frame text" not in cleaned
    assert "<form" not in cleaned and "Sign up" in cleaned
    assert "tracking pixel" not in cleaned
    assert "javascript:" not in cleaned
    assert 'href="https://plumbboston.com/ok"' in cleaned
    assert 'alt="Logo"' in cleaned
    assert '<div class="hero">' in cleaned


def test_inline_style_blocks_survive():
    cleaned = clean_landing_html("<style>h1{color:red}</style><h1 style='x'>A</h1>", BASE)
    assert "<style>" in cleaned
    assert 'style="x"' in cleaned
