"""Decoding of scanned QR text into attendee / event identifiers."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import parse_qsl, urlsplit

ATTENDEE_FIELD = "usn"
EVENT_FIELD = "eid"
UNRECOGNIZED_FORMAT = "unrecognized format"

# Bare query strings get a placeholder authority so they parse like URLs.
_DUMMY_URL_PREFIX = "http://dummy.com?"


@dataclass(frozen=True)
class ParsedPayload:
    attendee_id: str
    event_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"attendee_id": self.attendee_id, "event_id": self.event_id}


@dataclass(frozen=True)
class ParseFailure:
    reason: str = UNRECOGNIZED_FORMAT


ParseResult = Union[ParsedPayload, ParseFailure]


def parse(raw: str) -> ParseResult:
    """
    Turn decoded QR text into a ParsedPayload.

    Two encodings are tried in order, the first complete one wins:

    1. JSON object: ``{"usn": "...", "eid": "..."}``
    2. URL or bare query string: ``https://host/path?usn=...&eid=...`` or ``usn=...&eid=...``

    A JSON object that lacks either field does not stop the query-string attempt.
    """
    text = (raw or "").strip()
    if not text:
        return ParseFailure()

    for attempt in (_parse_record, _parse_query):
        result = attempt(text)
        if isinstance(result, ParsedPayload):
            return result
    return ParseFailure()


def _parse_record(text: str) -> ParseResult:
    try:
        data = json.loads(text)
    except ValueError:
        return ParseFailure("not a JSON record")
    if not isinstance(data, dict):
        return ParseFailure("JSON value is not an object")
    return _build(_scalar(data.get(ATTENDEE_FIELD)), _scalar(data.get(EVENT_FIELD)))


def _parse_query(text: str) -> ParseResult:
    url = text if "://" in text else f"{_DUMMY_URL_PREFIX}{text}"
    try:
        query = urlsplit(url).query
    except ValueError:
        return ParseFailure("not a URL")

    params: Dict[str, str] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        # first occurrence wins, like URLSearchParams.get
        params.setdefault(key, value)
    return _build(params.get(ATTENDEE_FIELD), params.get(EVENT_FIELD))


def _scalar(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (str, int)):
        return str(value)
    return None


def _build(attendee_id: Optional[str], event_id: Optional[str]) -> ParseResult:
    attendee_id = (attendee_id or "").strip()
    event_id = (event_id or "").strip()
    if not attendee_id or not event_id:
        return ParseFailure("missing usn or eid")
    return ParsedPayload(attendee_id=attendee_id, event_id=event_id)


__all__ = ["ParsedPayload", "ParseFailure", "ParseResult", "parse", "UNRECOGNIZED_FORMAT"]
