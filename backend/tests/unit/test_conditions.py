"""Tests for structured trigger conditions."""

import pytest
from pydantic import ValidationError

from ventushub.schemas.conditions import All, Compare, dump_condition, parse_condition
from ventushub.schemas.events import EventIn
from ventushub.services.conditions import MISSING, event_payload, evaluate, matches, resolve_path


@pytest.fixture
def stage_event():
    return EventIn(
        user_id="u-1",
        action="property.stage.advanced",
        entity_type="property",
        entity_id=42,
        context={"propertyAddress": "Rua das Flores, 120", "kind": "sale", "tags": ["vip"]},
        previous_state={"stage": 2},
        new_state={"stage": 3, "stageName": "Documentação"},
        changes={"stage": 3},
    )


@pytest.fixture
def payload(stage_event):
    return event_payload(stage_event)


class TestResolvePath:
    def test_rooted_paths(self, payload):
        assert resolve_path(payload, "newState.stage") == 3
        assert resolve_path(payload, "previousState.stage") == 2
        assert resolve_path(payload, "context.kind") == "sale"

    def test_event_fields(self, payload):
        assert resolve_path(payload, "entityId") == 42
        assert resolve_path(payload, "userId") == "u-1"
        assert resolve_path(payload, "action") == "property.stage.advanced"

    def test_bare_path_uses_merged_view(self, payload):
        # changes win over newState, which wins over context
        assert resolve_path(payload, "stage") == 3
        assert resolve_path(payload, "propertyAddress") == "Rua das Flores, 120"

    def test_missing(self, payload):
        assert resolve_path(payload, "newState.nope") is MISSING
        assert resolve_path(payload, "context.kind.deeper") is MISSING


class TestEvaluate:
    def test_no_condition_matches(self, payload):
        assert matches(None, payload) is True
        assert matches({}, payload) is True

    def test_compare_ops(self, payload):
        assert matches({"op": "eq", "path": "newState.stage", "value": 3}, payload)
        assert matches({"op": "ne", "path": "newState.stage", "value": 2}, payload)
        assert matches({"op": "gt", "path": "newState.stage", "value": 2}, payload)
        assert matches({"op": "gte", "path": "newState.stage", "value": 3}, payload)
        assert matches({"op": "lt", "path": "previousState.stage", "value": 3}, payload)
        assert not matches({"op": "lte", "path": "newState.stage", "value": 2}, payload)

    def test_missing_field_never_matches_compare(self, payload):
        assert not matches({"op": "eq", "path": "newState.missing", "value": None}, payload)
        assert not matches({"op": "ne", "path": "newState.missing", "value": 1}, payload)

    def test_incomparable_types_do_not_raise(self, payload):
        assert not matches({"op": "gt", "path": "context.kind", "value": 5}, payload)

    def test_in_and_exists(self, payload):
        assert matches({"op": "in", "path": "context.kind", "values": ["sale", "rent"]}, payload)
        assert not matches({"op": "in", "path": "context.kind", "values": ["rent"]}, payload)
        assert matches({"op": "exists", "path": "context.tags"}, payload)
        assert not matches({"op": "exists", "path": "context.owner"}, payload)

    def test_changed(self, payload):
        assert matches({"op": "changed", "path": "stage"}, payload)
        assert not matches({"op": "changed", "path": "stageName.x"}, payload)

    def test_combinators(self, payload):
        cond = {
            "op": "all",
            "conditions": [
                {"op": "eq", "path": "context.kind", "value": "sale"},
                {"op": "any", "conditions": [
                    {"op": "eq", "path": "newState.stage", "value": 9},
                    {"op": "gte", "path": "newState.stage", "value": 3},
                ]},
                {"op": "not", "condition": {"op": "exists", "path": "context.archived"}},
            ],
        }
        assert matches(cond, payload)

    def test_legacy_flat_mapping(self, payload):
        assert matches({"stage": 3, "context.kind": "sale"}, payload)
        assert not matches({"stage": 4}, payload)

    def test_evaluate_parsed_condition(self, payload):
        parsed = parse_condition({"op": "eq", "path": "entityId", "value": 42})
        assert isinstance(parsed, Compare)
        assert evaluate(parsed, payload)


class TestParsing:
    def test_unknown_op_rejected(self):
        with pytest.raises(ValidationError):
            parse_condition({"op": "regex", "path": "x", "value": ".*"})

    def test_flat_mapping_normalises_to_all(self):
        parsed = parse_condition({"stage": 3})
        assert isinstance(parsed, All)
        assert dump_condition(parsed) == {
            "op": "all",
            "conditions": [{"op": "eq", "path": "stage", "value": 3}],
        }

    def test_dump_none(self):
        assert dump_condition(None) is None
