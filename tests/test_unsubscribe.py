from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

from campaign_dispatch.services.unsubscribe import (
    build_unsubscribe_url,
    ensure_unsubscribe_block,
    list_unsubscribe_headers,
    make_unsubscribe_token,
    verify_unsubscribe_token,
)

SECRET = "unsub-secret"


def test_token_verifies_and_carries_claims(clock):
    token = make_unsubscribe_token(" Reader@X.com", secret=SECRET, ttl_days=365, now=clock())
    claims = verify_unsubscribe_token(token, secret=SECRET, now=clock())

    assert token.count(".") == 2
    assert claims["email"] == "reader@x.com"
    assert claims["scope"] == "newsletter"
    assert claims["act"] == "unsubscribe"
    assert claims["exp"] - claims["iat"] == 365 * 24 * 60 * 60


def test_token_rejects_tampering_wrong_secret_and_expiry(clock):
    token = make_unsubscribe_token("reader@x.com", secret=SECRET, ttl_days=1, now=clock())
    head, body, sig = token.split(".")
    forged = make_unsubscribe_token("other@x.com", secret=SECRET, ttl_days=1, now=clock()).split(".")[1]

    assert verify_unsubscribe_token(f"{head}.{forged}.{sig}", secret=SECRET, now=clock()) is None
    assert verify_unsubscribe_token(token, secret="wrong", now=clock()) is None
    assert verify_unsubscribe_token(token, secret=SECRET, now=clock() + timedelta(days=2)) is None
    assert verify_unsubscribe_token("garbage", secret=SECRET) is None


def test_url_embeds_token_query(clock):
    url = build_unsubscribe_url("reader@x.com", page="https://news.example.com/baja/", secret=SECRET, now=clock())
    parts = urlsplit(url)
    assert parts.path == "/baja/"
    token = parse_qs(parts.query)["token"][0]
    assert verify_unsubscribe_token(token, secret=SECRET, now=clock())["email"] == "reader@x.com"

    with_query = build_unsubscribe_url("reader@x.com", page="https://news.example.com/baja?lang=es", secret=SECRET)
    assert "?lang=es&token=" in with_query


def test_headers_for_one_click_unsubscribe():
    headers = list_unsubscribe_headers("https://u.example.com/?token=t")
    assert headers == {
        "List-Unsubscribe": "<https://u.example.com/?token=t>",
        "List-Unsubscribe-Post": "List-Unsubscribe=One-Click",
    }


def test_block_appended_only_when_missing():
    url = "https://u.example.com/?token=t"
    html = ensure_unsubscribe_block("<p>Hi</p>", url)
    assert html.startswith("<p>Hi</p>")
    assert "data-lb-unsub" in html and url in html

    assert ensure_unsubscribe_block(html, url) == html
    custom = '<p>Click to <a href="#">Unsubscribe</a></p>'
    assert ensure_unsubscribe_block(custom, url) == custom
