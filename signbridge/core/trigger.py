"""
Trigger detection for inbound Pipefy webhooks.

The webhook body is parsed into one of a few known shapes, tried in priority
order; the first shape that matches wins:

``FieldTransition``
    names a single field and reports both its previous and new value.
``ChangeSet``
    carries a list of field changes.
``DirectValue``
    flat body with an action and a new value only.
``Unrecognized``
    nothing usable; the decision falls back to the card's current state.

The automation fires on the *edge* (non-affirmative -> affirmative) of the
trigger field, never on a repeated observation of the affirmative state.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable

from signbridge.core.models import Card
from signbridge.core.normalize import is_affirmative

_PREVIOUS_KEYS = ("old_value", "previous_value")
_NEW_KEYS = ("new_value", "value")
_CHANGE_LIST_KEYS = ("changes", "changed_fields", "fields_changes")

_CARD_ID_PATHS = (
    ("data", "action", "card", "id"),
    ("data", "card", "id"),
    ("data", "card_id"),
    ("data", "action", "card_id"),
    ("card", "id"),
    ("card_id",),
    ("cardId",),
)


@dataclass(frozen=True)
class FieldTransition:
    field_ids: frozenset[str]
    previous: Any
    new: Any


@dataclass(frozen=True)
class ChangeSet:
    changes: tuple[FieldTransition, ...]


@dataclass(frozen=True)
class DirectValue:
    action: str
    field_ids: frozenset[str]
    new: Any


@dataclass(frozen=True)
class Unrecognized:
    reason: str = "no known payload shape"


Change = FieldTransition | ChangeSet | DirectValue | Unrecognized


@dataclass(frozen=True)
class WebhookEvent:
    card_id: str | None
    change: Change
    raw: dict = field(default_factory=dict, repr=False)


class Edge(StrEnum):
    FIRE = "fire"
    HOLD = "hold"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TriggerDecision:
    fire: bool
    edge: Edge
    reason: str


# --- parsing ---


def _dig(payload: Any, path: tuple[str, ...]) -> Any:
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def extract_card_id(payload: Any) -> str | None:
    for path in _CARD_ID_PATHS:
        value = _dig(payload, path)
        if isinstance(value, bool) or value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _body(payload: dict) -> dict:
    data = payload.get("data")
    return data if isinstance(data, dict) else payload


def _field_ids(entry: dict) -> frozenset[str]:
    ids = set()
    ref = entry.get("field")
    if isinstance(ref, dict):
        for key in ("id", "internal_id", "field_id"):
            if ref.get(key) is not None:
                ids.add(str(ref[key]))
    elif ref is not None:
        ids.add(str(ref))
    for key in ("field_id", "fieldId", "internal_id"):
        if entry.get(key) is not None:
            ids.add(str(entry[key]))
    return frozenset(ids)


def _first_present(entry: dict, keys: tuple[str, ...]) -> tuple[bool, Any]:
    for key in keys:
        if key in entry:
            return True, entry[key]
    return False, None


def _transition(entry: dict) -> FieldTransition | None:
    ids = _field_ids(entry)
    has_previous, previous = _first_present(entry, _PREVIOUS_KEYS)
    has_new, new = _first_present(entry, _NEW_KEYS)
    if not ids or not (has_previous and has_new):
        return None
    return FieldTransition(field_ids=ids, previous=previous, new=new)


def _parse_field_transition(body: dict) -> FieldTransition | None:
    return _transition(body)


def _parse_change_set(body: dict) -> ChangeSet | None:
    for key in _CHANGE_LIST_KEYS:
        entries = body.get(key)
        if isinstance(entries, list):
            changes = tuple(
                t for t in (_transition(e) for e in entries if isinstance(e, dict)) if t
            )
            return ChangeSet(changes=changes)
    return None


def _parse_direct_value(body: dict) -> DirectValue | None:
    action = body.get("action")
    has_new, new = _first_present(body, _NEW_KEYS)
    if not isinstance(action, str) or not has_new:
        return None
    return DirectValue(action=action, field_ids=_field_ids(body), new=new)


_PARSERS: tuple[Callable[[dict], Change | None], ...] = (
    _parse_field_transition,
    _parse_change_set,
    _parse_direct_value,
)


def parse_event(payload: Any) -> WebhookEvent:
    """Parse a raw webhook body into a :class:`WebhookEvent`."""
    if not isinstance(payload, dict):
        return WebhookEvent(card_id=None, change=Unrecognized("body is not an object"))

    body = _body(payload)
    for parser in _PARSERS:
        change = parser(body)
        if change is not None:
            return WebhookEvent(card_id=extract_card_id(payload), change=change, raw=payload)

    return WebhookEvent(card_id=extract_card_id(payload), change=Unrecognized(), raw=payload)


# --- deciding ---


def _edge_of(transition: FieldTransition) -> Edge:
    if is_affirmative(transition.new) and not is_affirmative(transition.previous):
        return Edge.FIRE
    return Edge.HOLD


def detect_edge(change: Change, field_id: str) -> Edge:
    """Decide from the payload alone; ``UNKNOWN`` means look at the card."""
    if isinstance(change, FieldTransition):
        if field_id in change.field_ids:
            return _edge_of(change)
        return Edge.UNKNOWN

    if isinstance(change, ChangeSet):
        for transition in change.changes:
            if field_id in transition.field_ids:
                return _edge_of(transition)
        return Edge.UNKNOWN

    if isinstance(change, DirectValue):
        if change.field_ids and field_id not in change.field_ids:
            return Edge.UNKNOWN
        return Edge.FIRE if is_affirmative(change.new) else Edge.HOLD

    return Edge.UNKNOWN


def decide(
    event: WebhookEvent,
    field_id: str,
    card: Card,
    cooldown_active: bool,
) -> TriggerDecision:
    """
    Should this event generate a document now?

    The card is only consulted when the payload carries no usable edge: then
    the trigger field must currently be affirmative and the card must not
    have generated a document within the cooldown window.
    """
    edge = detect_edge(event.change, field_id)
    if edge is Edge.FIRE:
        return TriggerDecision(fire=True, edge=edge, reason="trigger field turned on")
    if edge is Edge.HOLD:
        return TriggerDecision(fire=False, edge=edge, reason="trigger field did not turn on")

    if not is_affirmative(card.get_field(field_id)):
        return TriggerDecision(fire=False, edge=edge, reason="trigger field is not marked")
    if cooldown_active:
        return TriggerDecision(fire=False, edge=edge, reason="recently generated, cooling down")
    return TriggerDecision(fire=True, edge=edge, reason="trigger field is marked")
