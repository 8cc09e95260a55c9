"""
Event classifier - maps a provider-specific payload shape to a canonical event type.

classify_event() is total: any input (bytes, str, garbage) yields a string and
never raises. Anything it cannot recognise is "unknown", which routes to the
no-op fallback handlers downstream.
"""
import json
import logging
from typing import Any, Callable, Union

from leadhooks.models.webhook_record import UNKNOWN_EVENT_TYPE

logger = logging.getLogger(__name__)

EVENT_TYPE_MAX_LENGTH = 100

INSTAGRAM_FIELDS = {
    "mentions": "mentions",
    "comments": "comments",
    "story_insights": "stories",
}

TIKTOK_TYPES = {
    "mention": "mentions",
    "comment": "comments",
    "video": "videos",
}

HUBSPOT_SUBSCRIPTIONS = {
    "contact.creation": "contact_created",
    "contact.propertyChange": "contact_updated",
    "deal.creation": "deal_created",
}


def parse_payload(raw: Union[bytes, str, None]) -> Union[dict, list]:
    """
    Best-effort JSON parse. Returns {} for anything that is not a JSON object
    or array, including undecodable bytes.
    """
    if raw is None:
        return {}
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        parsed = json.loads(raw)
    except (UnicodeDecodeError, ValueError, TypeError, RecursionError):
        return {}
    if isinstance(parsed, (dict, list)):
        return parsed
    return {}


def _first(value: Any) -> Any:
    if isinstance(value, list) and value:
        return value[0]
    return None


def _get(value: Any, key: str) -> Any:
    if isinstance(value, dict):
        return value.get(key)
    return None


def _lookup(mapping: dict, key: Any) -> str:
    if isinstance(key, str):
        return mapping.get(key, UNKNOWN_EVENT_TYPE)
    return UNKNOWN_EVENT_TYPE


def _instagram(data) -> str:
    if _get(data, "object") != "instagram":
        return UNKNOWN_EVENT_TYPE
    change = _first(_get(_first(_get(data, "entry")), "changes"))
    return _lookup(INSTAGRAM_FIELDS, _get(change, "field"))


def _tiktok(data) -> str:
    return _lookup(TIKTOK_TYPES, _get(data, "type"))


def _salesforce(data) -> str:
    sobject = _get(data, "sobject")
    if sobject == "Lead":
        event_type = _get(data, "event_type")
        if isinstance(event_type, str) and event_type:
            return event_type[:EVENT_TYPE_MAX_LENGTH]
        return "lead_updated"
    if sobject == "Contact":
        return "contact_updated"
    return UNKNOWN_EVENT_TYPE


def _hubspot(data) -> str:
    return _lookup(HUBSPOT_SUBSCRIPTIONS, _get(_first(data), "subscriptionType"))


def _pipedrive(data) -> str:
    object_type = _get(_get(data, "meta"), "object")
    if object_type == "person":
        return "person_added" if _get(data, "event") == "added" else "person_updated"
    if object_type == "deal":
        return "deal_added"
    return UNKNOWN_EVENT_TYPE


CLASSIFIERS: dict[str, Callable[[Any], str]] = {
    "instagram": _instagram,
    "tiktok": _tiktok,
    "salesforce": _salesforce,
    "hubspot": _hubspot,
    "pipedrive": _pipedrive,
}


def classify_parsed(platform: str, data: Any) -> str:
    """Classify an already-parsed payload."""
    classifier = CLASSIFIERS.get(platform)
    if classifier is None:
        return UNKNOWN_EVENT_TYPE
    try:
        return classifier(data)
    except Exception as e:
        # Extraction rules only read dicts/lists; this guards the total-function contract
        logger.warning("Event classification failed for %s: %s", platform, str(e))
        return UNKNOWN_EVENT_TYPE


def classify_event(platform: str, raw_payload: Union[bytes, str, None]) -> str:
    """Canonical event type for a raw webhook body."""
    return classify_parsed(platform, parse_payload(raw_payload))
