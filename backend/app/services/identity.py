"""
Identity resolution for quota accounting.

An authenticated account id always wins. Anonymous traffic is tracked by a
client-generated session id plus the request IP.
"""

import random
import string
import time
from typing import Mapping, Optional

from app.schemas.usage import Identity

BASE36 = string.digits + string.ascii_lowercase

# Header order matters: proxies append, so the first forwarded address is the client
IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def generate_session_id() -> str:
    """
    Anonymous session id: ``anon_{epoch_ms}_{9 base36 chars}``.

    Example:
        >>> generate_session_id()
        'anon_1718035200123_k3j9x0q2m'
    """
    suffix = "".join(random.choices(BASE36, k=9))
    return f"anon_{int(time.time() * 1000)}_{suffix}"


def client_ip(headers: Mapping[str, str]) -> str:
    lowered = {key.lower(): value for key, value in headers.items()}
    for header in IP_HEADERS:
        value = lowered.get(header)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    return "unknown"


def resolve_identity(
    headers: Mapping[str, str],
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Identity:
    """
    Build the Identity for a request.

    Args:
        headers: Request headers (any case)
        user_id: Account id from the auth collaborator, if signed in
        session_id: Client session id (x-session-id header or body field)

    Returns:
        Identity; a fresh session id is generated for anonymous requests
        that did not send one
    """
    if user_id:
        return Identity(user_id=user_id)

    lowered = {key.lower(): value for key, value in headers.items()}
    session_id = session_id or lowered.get("x-session-id") or generate_session_id()
    return Identity(session_id=session_id, ip_address=client_ip(headers))


def session_prefix(session_id: Optional[str]) -> Optional[str]:
    """
    Coarse prefix shared by sessions created in the same 100-second window.

    ``anon_1718035200123_k3j9x0q2m`` → ``anon_17180352``. Used to group a
    visitor's sessions on the usage dashboard; never used for enforcement.
    """
    if not session_id or not session_id.startswith("anon_"):
        return None
    parts = session_id.split("_")
    if len(parts) < 3 or not parts[1].isdigit():
        return None
    return f"anon_{parts[1][:8]}"
