"""
Schedule token round trip for ConfigMgr objects.

The interval-string encoding belongs to the SMS Provider, so decoding and
encoding go through SMS_ScheduleMethods on the site server rather than being
done here. What this module owns is rebuilding the decoded tokens as fresh
instances and putting the new string back where the old one was.
"""
import logging
import re
from datetime import datetime, timezone

from .errors import AdminServiceError, ScheduleError

logger = logging.getLogger(__name__)

SCHEDULE_METHODS = "SMS_ScheduleMethods"

# One token is 16 hex digits; a schedule may concatenate several.
TOKEN_STRING = re.compile(r"^(?:[0-9A-Fa-f]{16})+$")
WRAPPED_TOKEN = re.compile(r">\s*((?:[0-9A-Fa-f]{16})+)\s*<")
DMTF = re.compile(r"^\d{14}\.\d{6}[+-](?:\d{3}|\*{3})$")
ISO_OFFSET = re.compile(r"(Z|[+-]\d{2}:\d{2})$")


def unwrap_schedule(value):
    """Pull the interval string out of an ADR Schedule value (bare or XML-wrapped)."""
    value = (value or "").strip()
    if TOKEN_STRING.match(value):
        return value
    m = WRAPPED_TOKEN.search(value)
    if not m:
        raise ScheduleError(f"No schedule token found in {value!r}")
    return m.group(1)


def wrap_schedule(original, token_string):
    """Put token_string where the old interval string sat in original."""
    original = (original or "").strip()
    if not original or TOKEN_STRING.match(original):
        return token_string
    m = WRAPPED_TOKEN.search(original)
    if not m:
        raise ScheduleError(f"No schedule token found in {original!r}")
    return original[:m.start(1)] + token_string + original[m.end(1):]


def to_dmtf(value, is_gmt=False):
    """
    AdminService hands StartTime back as ISO 8601; WriteToString wants the
    WMI DMTF form, which carries no offset. For an IsGMT token the time is
    moved to UTC using the offset. Otherwise the token is read as local
    wall-clock time, so the time is kept as written and the offset dropped.
    """
    if value is None or DMTF.match(str(value)):
        return value
    text = str(value)
    offset = None
    m = ISO_OFFSET.search(text)
    if m:
        text = text[:m.start()]
        offset = "+00:00" if m.group(1) == "Z" else m.group(1)
    # fractional seconds: fromisoformat may not accept seven digits
    text = text.split(".")[0]
    try:
        dt = datetime.fromisoformat(text)
        if offset and is_gmt:
            dt = datetime.fromisoformat(text + offset).astimezone(timezone.utc)
    except ValueError as e:
        raise ScheduleError(f"Unreadable StartTime {value!r}") from e
    return dt.strftime("%Y%m%d%H%M%S") + ".000000+***"


def decode_schedule(cm, schedule_string):
    result = cm.invoke(SCHEDULE_METHODS, "ReadFromString", {"StringData": schedule_string})
    if result.get("ReturnValue", 0) != 0:
        raise AdminServiceError(f"ReadFromString returned {result.get('ReturnValue')} for {schedule_string}")
    tokens = result.get("TokenData") or []
    logger.debug("Decoded %s into %d token(s)", schedule_string, len(tokens))
    return tokens


def fresh_token(token):
    """New token instance of the same class carrying every decoded property."""
    fresh = {}
    for name, value in token.items():
        fresh[name] = to_dmtf(value, is_gmt=bool(token.get("IsGMT"))) if name == "StartTime" else value
    return fresh


def encode_schedule(cm, tokens):
    result = cm.invoke(SCHEDULE_METHODS, "WriteToString", {"TokenData": tokens})
    if result.get("ReturnValue", 0) != 0 or not result.get("StringData"):
        raise AdminServiceError(f"WriteToString returned {result.get('ReturnValue')}")
    return result["StringData"]


def reencode_schedule(cm, schedule_value):
    """Decode an ADR Schedule value and write it back out through fresh tokens."""
    if not schedule_value:
        return schedule_value
    tokens = decode_schedule(cm, unwrap_schedule(schedule_value))
    encoded = encode_schedule(cm, [fresh_token(t) for t in tokens])
    return wrap_schedule(schedule_value, encoded)
