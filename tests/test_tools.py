import json
import logging
import pytest
from types import SimpleNamespace
from prayer_ai.catalog import ACTION_CATALOG, ActionDefinition, ActionParams
from prayer_ai.processor import MAX_ACTIONS
from prayer_ai.tools import (
    ACTION_SYSTEM_PROMPT_ADDITION,
    SUGGEST_ACTIONS_TOOL,
    build_action_tools,
    extract_actions_from_tool_calls,
    tool_names,
)


def _call(arguments, name=SUGGEST_ACTIONS_TOOL):
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return {"id": "call_1", "type": "function", "function": {"name": name, "arguments": arguments}}


def _sdk_call(arguments, name=SUGGEST_ACTIONS_TOOL):
    return SimpleNamespace(
        id="call_1",
        type="function",
        function=SimpleNamespace(name=name, arguments=json.dumps(arguments)),
    )

# ---------------------------------------------------------------------------
# Tool schema
# ---------------------------------------------------------------------------

def test_tool_schema_shape():
    tools = build_action_tools()
    assert tool_names(tools) == [SUGGEST_ACTIONS_TOOL]

    parameters = tools[0]["function"]["parameters"]
    assert parameters["required"] == ["actions"]
    actions = parameters["properties"]["actions"]
    assert actions["type"] == "array"
    assert actions["maxItems"] == MAX_ACTIONS
    assert actions["items"]["required"] == ["type", "params"]

def test_tool_schema_enum_matches_catalog():
    item = build_action_tools()[0]["function"]["parameters"]["properties"]["actions"]["items"]
    assert item["properties"]["type"]["enum"] == list(ACTION_CATALOG)

def test_tool_schema_params_derived_from_catalog():
    item = build_action_tools()[0]["function"]["parameters"]["properties"]["actions"]["items"]
    props = item["properties"]["params"]["properties"]

    assert set(props) >= {"reference", "reason", "translation", "title", "body", "visibility"}
    # Same visibility values the processor accepts.
    assert props["visibility"]["enum"] == ["private", "community"]
    # Optional fields render as plain strings for the model.
    assert props["reason"]["type"] == "string"
    assert "anyOf" not in props["reason"]
    assert "title" not in props["reference"]

def test_tool_schema_for_custom_catalog():
    class _NoteParams(ActionParams):
        note: str

    custom = {
        "ADD_NOTE": ActionDefinition(
            type="ADD_NOTE",
            version=1,
            description="Attach a note",
            schema=_NoteParams,
            icon="note.text",
            color="gray",
            priority="inline",
        )
    }
    item = build_action_tools(custom)[0]["function"]["parameters"]["properties"]["actions"]["items"]
    assert item["properties"]["type"]["enum"] == ["ADD_NOTE"]
    assert list(item["properties"]["params"]["properties"]) == ["note"]

def test_system_prompt_addition_names_every_builtin_type():
    for action_type in ("NAVIGATE_TO_VERSE", "CREATE_PRAYER_DRAFT"):
        assert action_type in ACTION_SYSTEM_PROMPT_ADDITION

# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def test_extract_empty_inputs():
    assert extract_actions_from_tool_calls(None) == []
    assert extract_actions_from_tool_calls([]) == []

def test_extract_aggregates_calls_in_order():
    calls = [
        _call({"actions": [{"type": "NAVIGATE_TO_VERSE", "params": {"reference": "John 3:16"}}]}),
        _call({"actions": [
            {"type": "CREATE_PRAYER_DRAFT", "params": {"title": "Peace", "body": "Lord"}},
            {"type": "NAVIGATE_TO_VERSE", "params": {"reference": "Psalm 23"}},
        ]}),
    ]
    actions = extract_actions_from_tool_calls(calls)
    assert [a.type for a in actions] == ["NAVIGATE_TO_VERSE", "CREATE_PRAYER_DRAFT", "NAVIGATE_TO_VERSE"]
    assert actions[2].params == {"reference": "Psalm 23"}

def test_extract_reads_sdk_objects():
    calls = [_sdk_call({"actions": [{"type": "NAVIGATE_TO_VERSE", "params": {"reference": "Ruth 1:16"}}]})]
    assert extract_actions_from_tool_calls(calls)[0].params == {"reference": "Ruth 1:16"}

def test_extract_ignores_other_tools():
    calls = [_call({"actions": [{"type": "NAVIGATE_TO_VERSE", "params": {}}]}, name="search")]
    assert extract_actions_from_tool_calls(calls) == []

def test_extract_skips_malformed_json_and_continues(caplog):
    calls = [
        _call("{not json"),
        _call({"actions": [{"type": "NAVIGATE_TO_VERSE", "params": {"reference": "John 1:1"}}]}),
    ]
    with caplog.at_level(logging.ERROR, logger="prayer_ai.tools"):
        actions = extract_actions_from_tool_calls(calls)
    assert len(actions) == 1
    assert "Failed to parse" in caplog.text

def test_extract_tolerates_missing_arguments():
    calls = [{"function": {"name": SUGGEST_ACTIONS_TOOL, "arguments": None}}]
    assert extract_actions_from_tool_calls(calls) == []

def test_extract_keeps_unknown_types_for_processor():
    calls = [_call({"actions": [{"type": "DELETE_ACCOUNT", "params": {"id": 1}}]})]
    actions = extract_actions_from_tool_calls(calls)
    assert actions[0].type == "DELETE_ACCOUNT"

def test_extract_coerces_bad_params_and_confidence():
    calls = [_call({"actions": [
        {"type": "NAVIGATE_TO_VERSE", "params": "John 3:16", "confidence": 0.8},
        {"type": "NAVIGATE_TO_VERSE", "params": {"reference": "John 3:17"}, "confidence": 7},
        {"type": "NAVIGATE_TO_VERSE", "params": {"reference": "John 3:18"}, "confidence": "high"},
        "not an action",
    ]})]
    actions = extract_actions_from_tool_calls(calls)
    assert len(actions) == 3
    assert actions[0].params == {}
    assert actions[0].confidence == 0.8
    assert actions[1].confidence is None
    assert actions[2].confidence is None

def test_extract_bare_reference():
    calls = [_call({"reference": "John 3:16", "reason": "God's love"})]
    actions = extract_actions_from_tool_calls(calls)
    assert len(actions) == 1
    assert actions[0].type == "NAVIGATE_TO_VERSE"
    assert actions[0].params == {"reference": "John 3:16", "reason": "God's love"}

def test_extract_bare_prayer_body():
    calls = [_call({"title": "Comfort", "body": "Lord, be near."})]
    actions = extract_actions_from_tool_calls(calls)
    assert actions[0].type == "CREATE_PRAYER_DRAFT"
    assert actions[0].params == {"title": "Comfort", "body": "Lord, be near."}

def test_extract_unrecognised_object_yields_nothing():
    assert extract_actions_from_tool_calls([_call({"foo": "bar"})]) == []
    assert extract_actions_from_tool_calls([_call([1, 2, 3])]) == []
