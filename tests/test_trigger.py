"""Tests for value normalization and trigger detection."""

import pytest

from conftest import TRIGGER_FIELD, build_card, field_update_event
from signbridge.core.normalize import is_affirmative, is_filled, normalize_field_value
from signbridge.core.trigger import (
    ChangeSet,
    DirectValue,
    Edge,
    FieldTransition,
    Unrecognized,
    decide,
    detect_edge,
    extract_card_id,
    parse_event,
)


class TestNormalizeFieldValue:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (None, None),
            (True, True),
            (3, 3),
            (["Sim", None], ["Sim"]),
            ({"value": "Sim"}, "Sim"),
            ('["Sim", "Outro"]', ["Sim", "Outro"]),
            ('"Sim"', "Sim"),
            ("true", "true"),
            ("{Sim,Não}", ["Sim", "Não"]),
            ("{}", []),
            ("  Yes ", "Yes"),
            ("[broken", "[broken"),
        ],
    )
    def test_known_shapes(self, raw, expected):
        assert normalize_field_value(raw) == expected

    @pytest.mark.parametrize(
        "raw", [True, "Sim", "sim", "YES", "true", ["Sim"], '["sim"]', "{Sim}", {"label": "Yes"}]
    )
    def test_affirmative(self, raw):
        assert is_affirmative(raw)

    @pytest.mark.parametrize("raw", [None, False, "", "Não", "no", "false", [], "[]", '["Não"]', 1, "Simples"])
    def test_not_affirmative(self, raw):
        assert not is_affirmative(raw)

    def test_is_filled(self):
        assert is_filled("https://secure.d4sign.com.br/Plus/abc")
        assert not is_filled(None)
        assert not is_filled("   ")
        assert not is_filled("[]")


class TestParseEvent:
    def test_card_id_locations(self):
        assert extract_card_id({"data": {"action": {"card": {"id": 55}}}}) == "55"
        assert extract_card_id({"data": {"card": {"id": "56"}}}) == "56"
        assert extract_card_id({"card_id": "57"}) == "57"
        assert extract_card_id({"data": {"card": {"id": ""}}}) is None
        assert extract_card_id({}) is None

    def test_field_transition_shape(self):
        event = parse_event(field_update_event(old=None, new="Sim"))

        assert event.card_id == "1001"
        assert isinstance(event.change, FieldTransition)
        assert TRIGGER_FIELD in event.change.field_ids

    def test_change_set_shape(self):
        event = parse_event(
            {"data": {"card": {"id": "1"}, "changes": [{"field_id": TRIGGER_FIELD, "old_value": "", "new_value": "Sim"}]}}
        )

        assert isinstance(event.change, ChangeSet)
        assert len(event.change.changes) == 1

    def test_direct_value_shape(self):
        event = parse_event({"data": {"action": "card.field_update", "new_value": "Sim", "card": {"id": "1"}}})

        assert isinstance(event.change, DirectValue)

    def test_unrecognized_shape(self):
        event = parse_event({"data": {"action": {"card": {"id": 9}}}})

        assert event.card_id == "9"
        assert isinstance(event.change, Unrecognized)

    def test_non_object_body(self):
        event = parse_event(["not", "an", "object"])

        assert event.card_id is None
        assert isinstance(event.change, Unrecognized)


class TestDetectEdge:
    def test_off_to_on_fires(self):
        event = parse_event(field_update_event(old='["Não"]', new='["Sim"]'))
        assert detect_edge(event.change, TRIGGER_FIELD) is Edge.FIRE

    def test_on_to_on_holds(self):
        event = parse_event(field_update_event(old='["Sim"]', new='["Sim"]'))
        assert detect_edge(event.change, TRIGGER_FIELD) is Edge.HOLD

    def test_on_to_off_holds(self):
        event = parse_event(field_update_event(old="Sim", new=None))
        assert detect_edge(event.change, TRIGGER_FIELD) is Edge.HOLD

    def test_other_field_is_unknown(self):
        event = parse_event(field_update_event(old=None, new="Sim", field_id="telefone"))
        assert detect_edge(event.change, TRIGGER_FIELD) is Edge.UNKNOWN

    def test_change_set_uses_matching_entry(self):
        change = parse_event(
            {
                "data": {
                    "changes": [
                        {"field_id": "telefone", "old_value": None, "new_value": "123"},
                        {"field": {"internal_id": 9100, "id": TRIGGER_FIELD}, "old_value": None, "new_value": True},
                    ]
                }
            }
        ).change
        assert detect_edge(change, TRIGGER_FIELD) is Edge.FIRE

    def test_change_set_without_trigger_is_unknown(self):
        change = parse_event(
            {"data": {"changes": [{"field_id": "telefone", "old_value": None, "new_value": "123"}]}}
        ).change
        assert detect_edge(change, TRIGGER_FIELD) is Edge.UNKNOWN

    def test_direct_value(self):
        on = parse_event({"action": "card.field_update", "new_value": "yes"}).change
        off = parse_event({"action": "card.field_update", "new_value": "no"}).change

        assert detect_edge(on, TRIGGER_FIELD) is Edge.FIRE
        assert detect_edge(off, TRIGGER_FIELD) is Edge.HOLD


class TestDecide:
    def test_edge_fires_without_consulting_card(self):
        event = parse_event(field_update_event(old=None, new="Sim"))
        card = build_card(trigger=None)

        assert decide(event, TRIGGER_FIELD, card, cooldown_active=True).fire

    def test_repeated_affirmative_does_not_fire_even_if_card_is_marked(self):
        event = parse_event(field_update_event(old="Sim", new="Sim"))
        card = build_card(trigger='["Sim"]')

        decision = decide(event, TRIGGER_FIELD, card, cooldown_active=False)

        assert not decision.fire
        assert decision.edge is Edge.HOLD

    def test_fallback_fires_on_marked_card(self):
        event = parse_event({"data": {"action": {"card": {"id": "1001"}}}})
        card = build_card(trigger='["Sim"]')

        decision = decide(event, TRIGGER_FIELD, card, cooldown_active=False)

        assert decision.fire
        assert decision.edge is Edge.UNKNOWN

    def test_fallback_respects_cooldown(self):
        event = parse_event({"data": {"action": {"card": {"id": "1001"}}}})
        card = build_card(trigger='["Sim"]')

        assert not decide(event, TRIGGER_FIELD, card, cooldown_active=True).fire

    def test_fallback_needs_marked_card(self):
        event = parse_event({"data": {"action": {"card": {"id": "1001"}}}})
        card = build_card(trigger='["Não"]')

        assert not decide(event, TRIGGER_FIELD, card, cooldown_active=False).fire
