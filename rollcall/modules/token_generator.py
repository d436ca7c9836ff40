"""
Token Generator Module - QR Rollcall Attendance System

Produces the short-lived session tokens embedded in rotating QR codes.
Tokens carry 128 bits from the operating system CSPRNG and are hex encoded
to a fixed length of 32 characters.
"""

import secrets
import logging

from rollcall.modules.exceptions import EntropyUnavailable

TOKEN_BYTES = 16


class TokenGenerator:
    """Generates unguessable, fixed-length session tokens."""

    def __init__(self, token_bytes: int = TOKEN_BYTES):
        if token_bytes < TOKEN_BYTES:
            raise ValueError(f"Tokens need at least {TOKEN_BYTES} bytes of randomness")
        self.token_bytes = token_bytes
        self.logger = logging.getLogger(__name__)

    def generate(self) -> str:
        """
        Generate a new session token.

        Returns:
            str: Hex encoded token of ``2 * token_bytes`` characters

        Raises:
            EntropyUnavailable: If the OS random source cannot be read
        """
        try:
            return secrets.token_bytes(self.token_bytes).hex()
        except (OSError, NotImplementedError) as e:
            self.logger.critical(f"Secure random source unavailable: {str(e)}")
            raise EntropyUnavailable(f"Secure random source unavailable: {e}") from e
