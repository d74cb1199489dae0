"""
Coarse user agent classification for the session list.
"""
from typing import Dict, Optional

UNKNOWN = 'Unknown'

# Checked in order; the first match wins
BROWSERS = (
    ('firefox', 'Firefox'),
    ('edg', 'Edge'),
    ('chrome', 'Chrome'),
    ('safari', 'Safari'),
    ('opera', 'Opera'),
)

OPERATING_SYSTEMS = (
    ('android', 'Android'),
    ('iphone', 'iOS'),
    ('ipad', 'iOS'),
    ('ios', 'iOS'),
    ('windows', 'Windows'),
    ('mac', 'macOS'),
    ('linux', 'Linux'),
)


def _first_match(ua: str, table) -> str:
    for needle, label in table:
        if needle in ua:
            return label
    return UNKNOWN


def parse_user_agent(user_agent: Optional[str]) -> Dict[str, str]:
    """
    Classify a user agent string into browser, OS and device type.

    Matching is case-insensitive substring search. Anything unrecognised is
    'Unknown'; the device falls back to 'Desktop'.
    """
    ua = (user_agent or '').lower()

    if 'tablet' in ua or 'ipad' in ua:
        device = 'Tablet'
    elif 'mobile' in ua:
        device = 'Mobile'
    else:
        device = 'Desktop'

    return {
        'browser': _first_match(ua, BROWSERS),
        'os': _first_match(ua, OPERATING_SYSTEMS),
        'device': device,
    }
