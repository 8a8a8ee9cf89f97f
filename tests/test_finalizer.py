"""
Tests for the finalizer: strict parse, fallbacks and idempotence.
"""

import json

from common.models import PlanStep, StepStatus
from generation.finalizer import (
    DIAGNOSTIC_FILE,
    PARSE_FAILURE_NOTICE,
    extract_html_document,
    finalize,
    strip_code_fence,
)

PROJECT = {
    "overview": "Portfolio",
    "steps": [{"title": "Plan", "description": "Sketch", "status": "pending"}],
    "files": {
        "site/index.html": "<!DOCTYPE html><html></html>",
        "site/app.js": "console.log(1)",
    },
}


def test_strict_parse_success():
    result = finalize("Here it is: " + json.dumps(PROJECT) + " enjoy")

    assert result.fallback is None
    assert result.usable
    assert result.files == PROJECT["files"]
    assert result.overview == "Portfolio"
    assert result.index_file == "site/index.html"
    assert [(s.title, s.status) for s in result.steps] == [("Plan", StepStatus.COMPLETE)]


def test_code_fence_is_stripped():
    fenced = "```json\n" + json.dumps(PROJECT, indent=2) + "\n```"

    assert strip_code_fence(fenced).startswith("{")
    assert finalize(fenced).files == PROJECT["files"]
    assert strip_code_fence("no fence") == "no fence"


def test_declared_index_file_must_exist():
    project = dict(PROJECT, indexFile="missing.html")
    assert finalize(json.dumps(project)).index_file == "site/index.html"

    project = dict(PROJECT, indexFile="site/app.js")
    assert finalize(json.dumps(project)).index_file == "site/app.js"


def test_index_file_defaults_to_literal_name():
    result = finalize(json.dumps({"files": {"main.html": "<p></p>"}}))

    assert result.index_file == "index.html"


def test_missing_steps_completes_known_steps():
    known = [
        PlanStep(title="Analyzing", status=StepStatus.COMPLETE),
        PlanStep(title="Building", status=StepStatus.ACTIVE),
        PlanStep(title="Done"),
    ]
    result = finalize(json.dumps({"files": {"index.html": "x"}}), known_steps=known)

    assert [s.title for s in result.steps] == ["Analyzing", "Building", "Done"]
    assert all(s.status == StepStatus.COMPLETE for s in result.steps)
    assert known[1].status == StepStatus.ACTIVE


def test_single_code_field_becomes_entry_file():
    result = finalize(json.dumps({"steps": [], "code": "<!DOCTYPE html><html></html>"}))

    assert result.files == {"index.html": "<!DOCTYPE html><html></html>"}
    assert result.fallback is None


def test_non_string_file_values():
    result = finalize(
        json.dumps({"files": {"index.html": "<p></p>", "package.json": {"name": "x"}, "gone": None}})
    )

    assert json.loads(result.files["package.json"]) == {"name": "x"}
    assert "gone" not in result.files


def test_dependencies_carried_through():
    result = finalize(json.dumps({"files": {"index.html": ""}, "dependencies": ["tailwind", 3]}))

    assert result.dependencies == ["tailwind", "3"]


def test_html_fallback_extraction():
    text = "Sure, here you go:\n<!DOCTYPE html><html><body>Hi</body></html>\nHope that helps!"
    result = finalize(text)

    assert result.files == {"index.html": "<!DOCTYPE html><html><body>Hi</body></html>"}
    assert result.fallback == "html"
    assert result.usable
    assert result.error is None


def test_html_fallback_without_doctype_and_with_braces():
    text = 'Output: <HTML><style>body{margin:0}</style></HTML> and "files" nowhere'

    assert extract_html_document(text) == "<HTML><style>body{margin:0}</style></HTML>"
    assert finalize(text).files == {"index.html": "<HTML><style>body{margin:0}</style></HTML>"}


def test_json_without_files_falls_back():
    text = '{"overview": "only words"} <html><body>x</body></html>'

    assert finalize(text).fallback == "html"


def test_diagnostic_fallback_keeps_raw_text():
    text = "I cannot help with that."
    result = finalize(text, overview="partial")

    assert result.files == {DIAGNOSTIC_FILE: text}
    assert result.index_file == DIAGNOSTIC_FILE
    assert result.fallback == "diagnostic"
    assert result.error == PARSE_FAILURE_NOTICE
    assert not result.usable
    assert result.overview == "partial"


def test_refinalization_is_idempotent():
    for text in (json.dumps(PROJECT), "<html>x</html>", "nothing usable", '{"files": {"a": "b"'):
        first = finalize(text)
        second = finalize(text)
        assert first.files == second.files
        assert first.overview == second.overview
        assert first == second


def test_cut_off_output_keeps_completed_files():
    text = json.dumps(
        {
            "overview": "Cafe",
            "steps": [{"title": "Layout"}, {"title": "Styles"}],
            "files": {
                "index.html": '<!DOCTYPE html>\n<html><body class="a">Hi</body></html>',
                "style.css": "body{color:red}",
            },
        }
    )
    truncated = text[:text.index("color")]

    result = finalize(truncated)

    assert result.fallback == "partial"
    assert result.usable
    assert result.files == {"index.html": '<!DOCTYPE html>\n<html><body class="a">Hi</body></html>'}
    assert result.index_file == "index.html"
    assert result.overview == "Cafe"
    assert [(s.title, s.status) for s in result.steps] == [
        ("Layout", StepStatus.COMPLETE),
        ("Styles", StepStatus.COMPLETE),
    ]


def test_html_cut_out_of_json_string_is_decoded():
    text = json.dumps(
        {
            "files": {
                "page.html": '<!DOCTYPE html>\n<html><p class="x">Hi</p></html>',
                "app.js": "let a = 1;",
            }
        }
    )
    truncated = text[:text.index("let")]

    result = finalize(truncated)

    assert result.fallback == "html"
    assert result.files == {
        "page.html": '<!DOCTYPE html>\n<html><p class="x">Hi</p></html>',
        "index.html": '<!DOCTYPE html>\n<html><p class="x">Hi</p></html>',
    }
    assert "\\n" not in result.files["index.html"]
