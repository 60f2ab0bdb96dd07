from __future__ import annotations

import pytest

from studio_copilot.agent_core.tools import normalize_args
from studio_copilot.agent_core.tools.normalize import parse_steps, to_snake_case


@pytest.mark.parametrize(
    "key,expected",
    [("parentPath", "parent_path"), ("className", "class_name"), ("new_name", "new_name"), ("assetId", "asset_id")],
)
def test_to_snake_case(key, expected):
    assert to_snake_case(key) == expected


class TestParseSteps:
    def test_list_passthrough_drops_blanks(self):
        assert parse_steps(["a", " ", " b "]) == ["a", "b"]

    def test_json_array_string(self):
        assert parse_steps('["one", "two"]') == ["one", "two"]

    def test_list_item_markup(self):
        assert parse_steps("<ol><li>Create part</li><li><b>Color</b> it</li></ol>") == ["Create part", "Color it"]

    def test_bullet_text(self):
        assert parse_steps("- first\n- second\n* third\n1. fourth") == ["first", "second", "third", "fourth"]

    def test_empty(self):
        assert parse_steps("") == []
        assert parse_steps(None) == []


class TestNormalizeArgs:
    def test_camel_case_keys_and_parent_alias(self):
        out = normalize_args("create_instance", {"className": "Part", "parent": "game.Workspace"})
        assert out == {"class_name": "Part", "parent_path": "game.Workspace"}

    def test_list_children_path_alias(self):
        assert normalize_args("list_children", {"path": "game.Workspace"}) == {"parent_path": "game.Workspace"}

    def test_json_encoded_props(self):
        out = normalize_args("set_properties", {"path": "p", "props": '{"Color": [1, 0, 0], "Anchored": true}'})
        assert out["props"] == {"Color": [1, 0, 0], "Anchored": True}

    def test_comma_separated_tags(self):
        assert normalize_args("search_assets", {"query": "tree", "tags": "nature, low-poly"})["tags"] == [
            "nature",
            "low-poly",
        ]

    def test_numeric_strings(self):
        out = normalize_args("complete", {"summary": "s", "confidence": "0.75"})
        assert out["confidence"] == 0.75
        assert normalize_args("search_assets", {"query": "q", "limit": "4"})["limit"] == 4
        assert normalize_args("insert_asset", {"assetId": "abc"})["asset_id"] == "abc"

    def test_message_phase_lowercased(self):
        assert normalize_args("message", {"text": "t", "phase": " Final "})["phase"] == "final"

    def test_files_entries_decoded(self):
        edit = '{"start": {"line": 0, "character": 0}, "end": {"line": 0, "character": 0}, "text": "x"}'
        out = normalize_args("apply_edit", {"files": [f'{{"path": "a.lua", "baseText": "", "edits": [{edit}]}}']})
        assert out["files"][0]["path"] == "a.lua"
        assert out["files"][0]["base_text"] == ""
        assert out["files"][0]["edits"][0]["text"] == "x"

    def test_input_not_mutated(self):
        args = {"parentPath": "x", "props": "{}"}
        normalize_args("create_instance", args)
        assert args == {"parentPath": "x", "props": "{}"}
