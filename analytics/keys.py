"""
Canonical metric keys.

A key is ``<name>:<tags>`` where tags are ``key:value`` pairs sorted by key and
joined by commas. A metric without tags ends in a bare separator (``"latency:"``).
Backslash, colon and comma inside names, tag keys or tag values are escaped
with a backslash so that every key parses back to exactly the tags it was
built from.
"""

from typing import Mapping

NAME_SEPARATOR = ":"
PAIR_SEPARATOR = ","
KV_SEPARATOR = ":"
_ESCAPE = "\\"


def _escape(text: str) -> str:
    text = text.replace(_ESCAPE, _ESCAPE + _ESCAPE)
    for ch in (NAME_SEPARATOR, PAIR_SEPARATOR):
        text = text.replace(ch, _ESCAPE + ch)
    return text


def _unescape(text: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(text):
        if text[i] == _ESCAPE and i + 1 < len(text):
            i += 1
        out.append(text[i])
        i += 1
    return "".join(out)


def _split_unescaped(text: str, sep: str) -> list[str]:
    """Split on ``sep`` wherever it is not escaped; escapes are kept in the parts."""
    parts: list[str] = []
    start = 0
    i = 0
    while i < len(text):
        if text[i] == _ESCAPE:
            i += 2
            continue
        if text[i] == sep:
            parts.append(text[start:i])
            start = i + 1
        i += 1
    parts.append(text[start:])
    return parts


def _find_unescaped(text: str, sep: str) -> int:
    i = 0
    while i < len(text):
        if text[i] == _ESCAPE:
            i += 2
            continue
        if text[i] == sep:
            return i
        i += 1
    return -1


def serialize_tags(tags: Mapping[str, str] | None) -> str:
    if not tags:
        return ""
    items = sorted((str(k), str(v)) for k, v in tags.items())
    return PAIR_SEPARATOR.join(
        f"{_escape(k)}{KV_SEPARATOR}{_escape(v)}" for k, v in items
    )


def get_metric_key(metric: str, tags: Mapping[str, str] | None = None) -> str:
    """Canonical key for a metric name and tag set; tag insertion order is irrelevant."""
    return f"{_escape(metric)}{NAME_SEPARATOR}{serialize_tags(tags)}"


def parse_tags_from_key(tag_string: str) -> dict[str, str]:
    """Inverse of :func:`serialize_tags`."""
    if not tag_string:
        return {}
    tags: dict[str, str] = {}
    for pair in _split_unescaped(tag_string, PAIR_SEPARATOR):
        idx = _find_unescaped(pair, KV_SEPARATOR)
        if idx < 0:
            tags[_unescape(pair)] = ""
        else:
            tags[_unescape(pair[:idx])] = _unescape(pair[idx + 1:])
    return tags


def split_metric_key(metric_key: str) -> tuple[str, dict[str, str]]:
    """Split a canonical key back into ``(metric_name, tags)``."""
    idx = _find_unescaped(metric_key, NAME_SEPARATOR)
    if idx < 0:
        return _unescape(metric_key), {}
    return _unescape(metric_key[:idx]), parse_tags_from_key(metric_key[idx + 1:])
