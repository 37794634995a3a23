"""
Invite codes and deep links

Codes are short, lowercase and drawn from an alphabet without characters
that are easy to misread (i, l, o, 0, 1). A deep link carries the code in
an `invite` query parameter.
"""

from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
import secrets

INVITE_ALPHABET = "abcdefghjkmnpqrstuvwxyz23456789"
INVITE_CODE_LENGTH = 6
INVITE_PARAM = "invite"


def generate_invite_code(length: int = INVITE_CODE_LENGTH) -> str:
    """Generate a random invite code"""
    return ''.join(secrets.choice(INVITE_ALPHABET) for _ in range(length))


def normalize_invite_code(code: str) -> str:
    """Trim and lowercase a code typed or pasted by a participant"""
    return (code or '').strip().lower()


def extract_invite_code(location: Optional[str]) -> Optional[str]:
    """Return the normalized `invite` parameter of a location, if any"""
    if not location:
        return None
    query = urlsplit(location).query
    for key, value in parse_qsl(query, keep_blank_values=True):
        if key == INVITE_PARAM:
            return normalize_invite_code(value) or None
    return None


def strip_invite(location: str) -> str:
    """Remove the `invite` parameter, keeping the rest of the location"""
    parts = urlsplit(location)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != INVITE_PARAM]
    return urlunsplit(parts._replace(query=urlencode(query)))


def build_invite_link(base_url: str, code: str) -> str:
    """Shareable link that drops the recipient straight into a room"""
    parts = urlsplit(base_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != INVITE_PARAM]
    query.append((INVITE_PARAM, normalize_invite_code(code)))
    return urlunsplit(parts._replace(query=urlencode(query)))


def parse_invite_input(text: str) -> str:
    """Accept either a bare code or a full invite link"""
    return extract_invite_code(text) or normalize_invite_code(text)
