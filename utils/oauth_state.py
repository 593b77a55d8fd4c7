"""
Signed OAuth ``state`` parameter.

The token is base64(JSON(payload + checksum)). The checksum is a 32-bit
rolling hash over the compact JSON of the payload and the server secret. It
detects tampering or corruption across the redirect; it is not a MAC and the
payload is not confidential.
"""

import base64
import binascii
import json
import time
from dataclasses import dataclass
from typing import Optional

from shared.config import INTEGRATION_KINDS

STATE_MAX_AGE_MS = 5 * 60 * 1000
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


@dataclass(frozen=True)
class OAuthState:
    user_id: str
    workspace_id: str
    kind: str
    redirect_origin: str
    issued_at: int  # epoch milliseconds

    def as_payload(self) -> dict:
        # Key order is part of the checksum input.
        return {
            "user_id": self.user_id,
            "workspace_id": self.workspace_id,
            "kind": self.kind,
            "redirect_origin": self.redirect_origin,
            "issued_at": self.issued_at,
        }


def now_ms() -> int:
    return int(time.time() * 1000)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def checksum(text: str) -> str:
    """h = h * 31 + unit over UTF-16 code units, wrapped to signed 32 bits, abs in base 36."""
    value = 0
    encoded = text.encode("utf-16-le", "surrogatepass")
    for index in range(0, len(encoded), 2):
        unit = encoded[index] | (encoded[index + 1] << 8)
        value = (value * 31 + unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return _to_base36(abs(value))


def _compact_json(payload: dict) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def sign_state(state: OAuthState, secret: str) -> str:
    payload = state.as_payload()
    data = dict(payload)
    data["checksum"] = checksum(_compact_json(payload) + secret)
    return base64.b64encode(_compact_json(data).encode("utf-8")).decode("ascii")


def verify_state(token: str, secret: str, now: Optional[int] = None) -> Optional[OAuthState]:
    """Return the payload, or None for anything malformed, expired or tampered with."""
    try:
        decoded = base64.b64decode(str(token).encode("ascii"), validate=True)
        data = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    issued_at = data.get("issued_at")
    if not isinstance(issued_at, int) or isinstance(issued_at, bool):
        return None
    current = now_ms() if now is None else now
    if current - issued_at > STATE_MAX_AGE_MS:
        return None

    fields = {}
    for key in ("user_id", "workspace_id", "kind", "redirect_origin"):
        value = data.get(key)
        if not isinstance(value, str):
            return None
        fields[key] = value
    if fields["kind"] not in INTEGRATION_KINDS:
        return None

    state = OAuthState(issued_at=issued_at, **fields)
    expected = checksum(_compact_json(state.as_payload()) + secret)
    if data.get("checksum") != expected:
        return None
    return state
