from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import SAMPLE_IMAGE, parse_events
from fromscreen.conversion.preview import render_preview_document, sanitize_markup
from fromscreen.storage.memory import InMemoryConversionStorage


def test_sanitize_removes_scripts_handlers_and_script_urls() -> None:
    markup = (
        '<div onclick="steal()" class="p-4">'
        '<a href=" java\tscript:alert(1)">x</a>'
        "<script>alert(1)</script>"
        '<img src="a.png" onerror="x()">'
        '<iframe srcdoc="&lt;script&gt;"></iframe>'
        "</div>"
    )

    sanitized = sanitize_markup(markup)

    assert "<script" not in sanitized
    assert "iframe" not in sanitized
    assert "onclick" not in sanitized
    assert "onerror" not in sanitized
    assert "javascript" not in sanitized.replace("\t", "")
    assert '<div class="p-4"><a>x</a>' in sanitized
    assert 'src="a.png"' in sanitized


def test_sanitize_keeps_ordinary_markup() -> None:
    markup = '<section class="grid"><a href="/docs">Docs</a><p>on time</p></section>'

    assert sanitize_markup(markup) == markup


def test_preview_document_wraps_markup_with_tailwind() -> None:
    document = render_preview_document("<p>Hi</p>\n")

    assert document.startswith("<!DOCTYPE html>\n")
    assert '<script src="https://cdn.tailwindcss.com"></script>' in document
    assert "<body>\n  <p>Hi</p>\n</body>" in document
    assert "padding: 0;" in document


def test_adhoc_preview_document_is_padded() -> None:
    document = render_preview_document("<p>Hi</p>", adhoc=True)

    assert "padding: 20px;" in document
    assert "min-height: 100vh;" in document


def test_preview_route_renders_stored_conversion(client: TestClient) -> None:
    events = parse_events(client.post("/api/convert-stream", json={"image": SAMPLE_IMAGE}).text)
    conversion_id = events[0]["id"]

    response = client.get(f"/api/preview/{conversion_id}")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert '<div class="p-4">' in response.text
    assert "<h1>Hello</h1>" in response.text


def test_preview_route_strips_scripts_from_stored_markup(
    client: TestClient, storage: InMemoryConversionStorage
) -> None:
    storage.insert_conversion(
        conversion_id="c-unsafe",
        owner="s-1",
        markup='<button onclick="x()">Go</button>\n<script>alert(1)</script>\n',
    )

    body = client.get("/api/preview/c-unsafe").text

    assert "alert(1)" not in body
    assert "onclick" not in body
    assert "<button>Go</button>" in body


def test_preview_route_unknown_id_is_not_found(client: TestClient) -> None:
    response = client.get("/api/preview/missing")

    assert response.status_code == 404
    assert response.json() == {"detail": "Preview not found"}


def test_adhoc_preview_renders_posted_markup(client: TestClient) -> None:
    response = client.post("/api/preview", json={"html": '<p onmouseover="x()">Hi</p>'})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "<p>Hi</p>" in response.text
    assert "onmouseover" not in response.text


def test_adhoc_preview_rejects_empty_markup(client: TestClient) -> None:
    response = client.post("/api/preview", json={"html": ""})

    assert response.status_code == 422
