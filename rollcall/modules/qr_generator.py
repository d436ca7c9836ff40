"""
QR Code Generator Module - QR Rollcall Attendance System

This module builds and reads the attendance links carried by session QR
codes, and renders the current session token as a QR image for display.
Each code encodes ``{origin}/attend/{session_id}/{token}``; the renderer is
registered as a token listener so the displayed code follows every
rotation.

Features:
- Attendance link building and parsing
- QR code image generation as base64 data URLs
- Latest rendered code cache per session
"""

import base64
import io
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote, unquote, urlsplit

import qrcode

ATTEND_PATH_SEGMENT = 'attend'


def build_attend_url(origin: str, session_id: str, token: str) -> str:
    """Attendance link for a session token."""
    return f"{origin.rstrip('/')}/{ATTEND_PATH_SEGMENT}/{quote(session_id, safe='')}/{quote(token, safe='')}"


def parse_attend_url(text: str) -> Tuple[str, str]:
    """
    Extract ``(session_id, token)`` from a decoded QR payload.

    Args:
        text (str): Full URL or bare ``/attend/{session_id}/{token}`` path

    Returns:
        Tuple[str, str]: Session id and token

    Raises:
        ValueError: If the payload is not an attendance link
    """
    if not text or not text.strip():
        raise ValueError("Empty QR code payload")

    path = urlsplit(text.strip()).path
    segments = [segment for segment in path.split('/') if segment]

    if len(segments) < 3 or segments[-3] != ATTEND_PATH_SEGMENT:
        raise ValueError("QR code is not an attendance link")

    session_id, token = unquote(segments[-2]), unquote(segments[-1])
    if not session_id or not token:
        raise ValueError("Attendance link is missing the session or token")
    return session_id, token


class QRRenderer:
    """
    Renders attendance links as QR images and keeps the latest code of
    every session for the display page.
    """

    def __init__(self, origin: str, settings: Optional[Dict[str, Any]] = None):
        """
        Args:
            origin (str): Public origin students reach, e.g. ``https://rollcall.example.edu``
            settings (dict): Overrides for the QR image settings
        """
        self.origin = origin
        self.logger = logging.getLogger(__name__)

        self.settings = {
            'version': 1,
            'error_correction': qrcode.constants.ERROR_CORRECT_M,
            'box_size': 10,
            'border': 4,
            'fill_color': 'black',
            'back_color': 'white'
        }
        if settings:
            self.settings.update(settings)

        self._latest: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def render(self, session_id: str, token: str) -> Dict[str, Any]:
        """
        Render the QR code for a session token.

        Returns:
            dict: ``url``, ``image`` (PNG data URL) and ``rendered_at``
        """
        url = build_attend_url(self.origin, session_id, token)

        qr = qrcode.QRCode(
            version=self.settings['version'],
            error_correction=self.settings['error_correction'],
            box_size=self.settings['box_size'],
            border=self.settings['border']
        )
        qr.add_data(url)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=self.settings['fill_color'],
            back_color=self.settings['back_color']
        )

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        img_base64 = base64.b64encode(buffer.getvalue()).decode()

        return {
            'session_id': session_id,
            'url': url,
            'image': f"data:image/png;base64,{img_base64}",
            'rendered_at': datetime.now(timezone.utc).isoformat()
        }

    def on_token(self, session_id: str, token: str) -> None:
        """Token listener: render and cache the code for a new token."""
        rendered = self.render(session_id, token)
        with self._lock:
            self._latest[session_id] = rendered
        self.logger.debug(f"QR code refreshed for session {session_id}")

    def latest(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._latest.get(session_id)

    def forget(self, session_id: str) -> None:
        with self._lock:
            self._latest.pop(session_id, None)
