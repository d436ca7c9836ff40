import base64

import pytest

from rollcall.modules.qr_generator import QRRenderer, build_attend_url, parse_attend_url
from rollcall.modules.session_lifecycle import SessionLifecycle


def test_build_attend_url_joins_origin_and_path():
    assert build_attend_url("https://rollcall.example.edu/", "abc", "f00d") == \
        "https://rollcall.example.edu/attend/abc/f00d"


@pytest.mark.parametrize(
    "payload",
    [
        "https://rollcall.example.edu/attend/abc/f00d",
        "https://rollcall.example.edu/attend/abc/f00d/",
        "http://localhost:5000/attend/abc/f00d?utm=poster",
        "/attend/abc/f00d",
        "  https://rollcall.example.edu/attend/abc/f00d\n",
    ],
)
def test_parse_attend_url_accepts_links(payload):
    assert parse_attend_url(payload) == ("abc", "f00d")


@pytest.mark.parametrize(
    "payload",
    ["", "   ", "hello world", "https://rollcall.example.edu/attend/abc", "https://rollcall.example.edu/join/abc/f00d"],
)
def test_parse_attend_url_rejects_other_payloads(payload):
    with pytest.raises(ValueError):
        parse_attend_url(payload)


def test_render_produces_png_for_link():
    renderer = QRRenderer("https://rollcall.example.edu")

    rendered = renderer.render("abc", "f00d")

    assert rendered["url"] == "https://rollcall.example.edu/attend/abc/f00d"
    prefix = "data:image/png;base64,"
    assert rendered["image"].startswith(prefix)
    assert base64.b64decode(rendered["image"][len(prefix):]).startswith(b"\x89PNG")


def test_token_listener_caches_latest_code():
    renderer = QRRenderer("https://rollcall.example.edu")

    renderer.on_token("abc", "one")
    renderer.on_token("abc", "two")

    assert renderer.latest("abc")["url"].endswith("/attend/abc/two")
    renderer.forget("abc")
    assert renderer.latest("abc") is None


def test_renderer_follows_session_rotation(db):
    renderer = QRRenderer("https://rollcall.example.edu")
    lifecycle = SessionLifecycle(db, token_listeners=[renderer.on_token])

    session = lifecycle.start("subject-1", "teacher-1")
    rotated = lifecycle.rotate(session)

    assert parse_attend_url(renderer.latest(session.id)["url"]) == (session.id, rotated.current_token)
