"""Log hygiene helpers.

Secret IDs are bearer capabilities: anyone holding one can consume the secret.
They must never reach the logs in full. Client-supplied text is stripped of
control characters before logging so it cannot forge log lines.
"""

import re
from typing import Union

_CONTROL_CHARS = re.compile(r"[\n\r\t\x00-\x1f\x7f-\x9f]")


def sanitize_log_message(msg: Union[str, bytes, int, float, None]) -> str:
    """Remove newlines and control characters from a value before logging it.

    Examples:
        >>> sanitize_log_message("bad\\nrequest")
        'badrequest'
        >>> sanitize_log_message(None)
        ''
    """
    if msg is None:
        return ""
    return _CONTROL_CHARS.sub("", str(msg))


def mask_sensitive(value: Union[str, None], visible_chars: int = 4, mask_char: str = "*") -> str:
    """Mask a secret ID (or any token), keeping only its last few characters.

    Args:
        value: Value to mask
        visible_chars: Number of trailing characters left visible
        mask_char: Character used for the mask prefix

    Returns:
        Masked string, e.g. ``***Ab_9`` for a 22-character secret ID

    Examples:
        >>> mask_sensitive("q3Vx0l8mZC1kYb2Tn4Ab_9")
        '***Ab_9'
        >>> mask_sensitive("abc")
        '***'
        >>> mask_sensitive(None)
        '***'
    """
    if not value or len(value) <= visible_chars:
        return mask_char * 3
    return f"{mask_char * 3}{value[-visible_chars:]}"
