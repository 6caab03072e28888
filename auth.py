"""Identity supplied by the credential-verification layer in front of the app.

Token checking happens upstream (gateway or auth middleware); by the time a
request reaches these routes the verified user id travels in a header.
"""

from __future__ import annotations

from typing import Mapping, Optional

IDENTITY_HEADER = "X-Usuario-Id"


def verified_identity(headers: Mapping[str, str]) -> Optional[int]:
    raw = headers.get(IDENTITY_HEADER)
    if raw is None:
        return None
    raw = raw.strip()
    if not raw.isdecimal():
        return None
    value = int(raw)
    return value if value > 0 else None
