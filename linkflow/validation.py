"""
Format checks for short codes, destination URLs and click metadata.
"""

import ipaddress
import re
from typing import Optional
from urllib.parse import urlparse

SHORT_CODE_MIN_LENGTH = 3
SHORT_CODE_MAX_LENGTH = 20
MAX_URL_LENGTH = 2048
MAX_USER_AGENT_LENGTH = 512
MAX_REFERER_LENGTH = 2048

_short_code_re = re.compile(
    rf"^[A-Za-z0-9]{{{SHORT_CODE_MIN_LENGTH},{SHORT_CODE_MAX_LENGTH}}}$"
)

# Values emitters use when a request header is missing
UNKNOWN_SENTINELS = {"unknown", ""}


def is_valid_short_code(code: Optional[str]) -> bool:
    return isinstance(code, str) and bool(_short_code_re.match(code))


def is_valid_url(url: Optional[str]) -> bool:
    """Absolute http/https URL with a host"""
    if not isinstance(url, str) or len(url) > MAX_URL_LENGTH:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_valid_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def normalize_optional(value: Optional[str]) -> Optional[str]:
    """Map "unknown"/empty sentinels to None, strip surrounding whitespace"""
    if value is None:
        return None
    value = str(value).strip()
    if value.lower() in UNKNOWN_SENTINELS:
        return None
    return value
