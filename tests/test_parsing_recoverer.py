"""
Unit tests for workguard/recoverers/parsing.py

Tests fix rules, idempotency, permissive extraction, safe_parse stages and
recovery through the dispatcher.
"""

import json
import logging
import re

import pytest

from workguard.config import ParsingRecovererConfig
from workguard.errors import ErrorCategory, ParsingError, RecoveryStrategy
from workguard.recoverers.parsing import (
    PARSE_MARKDOWN,
    PARSE_STRUCTURE,
    PARSE_TASKS,
    FixRule,
    ParsingRecoverer,
    extract_document_structure,
    extract_markdown_structure,
    extract_tasks,
    fix_content,
)
from workguard.storage import MemoryResourceStore


def make_recoverer(dispatcher, store, clock, **overrides):
    config = ParsingRecovererConfig(retry_interval=0, **overrides)
    return ParsingRecoverer(dispatcher, config, store, clock)


def strict_tasks(content):
    """Reject any checkbox marker outside ' ', '-' and 'x'."""
    tasks = []
    for number, line in enumerate(content.split("\n"), 1):
        match = re.match(r"^- \[(.?)\] (.+)$", line)
        if not match:
            continue
        if match.group(1) not in (" ", "-", "x"):
            raise ValueError(f"bad marker on line {number}")
        tasks.append(match.group(2))
    return tasks


def always_fails(content):
    raise ValueError("unparseable")


SAMPLES = [
    "- [X] task",
    "##   Heading with spaces   \n\ntext",
    "- [] empty\n  - [?] nested\n- [x] done",
    "See [ the docs ]( https://example.com )",
    "```python\n\n\nprint(1)\n\n```",
    "#NoSpace\n- [ ] fine\n",
    "",
]


class TestFixRules:

    def test_unrecognized_marker_becomes_pending(self):
        fixed, changes = fix_content("- [X] task")
        assert fixed == "- [ ] task"
        assert changes == 1

    def test_canonical_markers_untouched(self):
        content = "- [ ] a\n- [-] b\n- [x] c"
        assert fix_content(content) == (content, 0)

    def test_empty_marker(self):
        assert fix_content("- [] task")[0] == "- [ ] task"

    def test_heading_whitespace(self):
        assert fix_content("##   Title  ")[0] == "## Title"

    def test_link_trimmed(self):
        assert fix_content("[ docs ]( https://example.com )")[0] == "[docs](https://example.com)"

    def test_code_block_blank_lines(self):
        fixed = fix_content("```python\n\n\nprint(1)\n\n```")[0]
        assert fixed == "```python\nprint(1)\n```"

    @pytest.mark.parametrize("content", SAMPLES)
    def test_idempotent(self, content):
        once = fix_content(content)[0]
        assert fix_content(once) == (once, 0)

    def test_custom_rule(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock)
        recoverer.add_fix_rule(FixRule(re.compile(r"\bTODO\b"), "todo", "Lowercase TODO"))
        assert len(recoverer.get_fix_rules()) == 5
        assert recoverer.apply_fixes("- [X] TODO") == "- [ ] todo"


class TestExtraction:

    def test_tasks(self):
        result = extract_tasks("- [x] done\n- [ ] todo\nnoise\n\n  - [-] doing")
        assert result["total_tasks"] == 3
        assert [t["status"] for t in result["valid_tasks"]] == ["completed", "pending", "in-progress"]
        assert result["invalid_lines"] == [{"line": 2, "content": "noise"}]
        assert result["invalid_line_count"] == 1

    def test_markdown_structure(self):
        result = extract_markdown_structure("# Title\n\nIntro text\n- one\n- two\n\n1. first")
        assert result["headings"] == [{"level": 1, "text": "Title", "line": 0}]
        assert result["paragraphs"] == [{"text": "Intro text", "line": 2}]
        assert result["lists"] == [
            {"items": ["one", "two"], "line": 3},
            {"items": ["first"], "line": 6},
        ]

    def test_document_structure(self):
        result = extract_document_structure("## Design\n> quote\n```\ncode\n- item")
        assert result["sections"] == [{"title": "Design", "level": 2, "line": 0}]
        kinds = [b["type"] for b in result["content_blocks"]]
        assert kinds == ["quote", "code", "text", "list"]


class TestSafeParse:

    @pytest.mark.asyncio
    async def test_parse_success(self, dispatcher, clock):
        store = MemoryResourceStore({"/tasks.md": b"- [ ] a"})
        recoverer = make_recoverer(dispatcher, store, clock)

        result = await recoverer.safe_parse(PARSE_TASKS, "/tasks.md", strict_tasks)
        assert result.success
        assert result.data == ["a"]
        assert result.fix_count == 0

    @pytest.mark.asyncio
    async def test_auto_fix_then_parse_and_write_back(self, dispatcher, clock):
        store = MemoryResourceStore({"/tasks.md": b"- [X] a\n- [x] b"})
        recoverer = make_recoverer(dispatcher, store, clock)

        result = await recoverer.safe_parse(PARSE_TASKS, "/tasks.md", strict_tasks)
        assert result.success
        assert result.data == ["a", "b"]
        assert result.fix_count == 1
        assert not result.used_fallback
        assert await store.read_text("/tasks.md") == "- [ ] a\n- [x] b"
        assert dispatcher.get_statistics().total == 0

    @pytest.mark.asyncio
    async def test_caller_fallback(self, dispatcher, clock):
        store = MemoryResourceStore({"/doc.md": b"# Title"})
        recoverer = make_recoverer(dispatcher, store, clock)

        result = await recoverer.safe_parse(PARSE_MARKDOWN, "/doc.md", always_fails,
                                            lambda content: {"raw": content})
        assert result.success
        assert result.used_fallback
        assert not result.is_partial
        assert result.data == {"raw": "# Title"}

    @pytest.mark.asyncio
    async def test_permissive_extraction(self, dispatcher, clock):
        store = MemoryResourceStore({"/tasks.md": b"- [?] a\ngarbage"})
        recoverer = make_recoverer(dispatcher, store, clock)

        result = await recoverer.safe_parse(PARSE_TASKS, "/tasks.md", always_fails)
        assert result.success
        assert result.used_fallback
        assert result.is_partial
        assert result.fix_count == 1
        assert result.data["total_tasks"] == 1
        assert result.data["invalid_line_count"] == 1

    @pytest.mark.asyncio
    async def test_structure_extraction(self, dispatcher, clock):
        store = MemoryResourceStore({"/design.md": b"# Design\ntext"})
        recoverer = make_recoverer(dispatcher, store, clock)
        result = await recoverer.safe_parse(PARSE_STRUCTURE, "/design.md", always_fails)
        assert result.data["sections"][0]["title"] == "Design"

    @pytest.mark.asyncio
    async def test_failure_reports_line(self, dispatcher, clock, notifier):
        store = MemoryResourceStore({"/data.json": b'{\n  bad\n}'})
        recoverer = make_recoverer(dispatcher, store, clock, enable_fallback_parsing=False)

        result = await recoverer.safe_parse(PARSE_STRUCTURE, "/data.json", json.loads)
        assert not result.success
        assert isinstance(result.error, ParsingError)
        assert result.error.context.line == 2
        assert result.error.line_content == "  bad"
        assert isinstance(result.error.inner_error, json.JSONDecodeError)
        assert dispatcher.get_statistics().by_category[ErrorCategory.PARSING] == 1

        await clock.advance(1.0)
        assert [n for n in notifier.notifications if n.error is not None] == []

    @pytest.mark.asyncio
    async def test_unreadable_resource(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock)
        result = await recoverer.safe_parse(PARSE_TASKS, "/missing.md", strict_tasks)
        assert not result.success
        assert result.error.recovery_strategy == RecoveryStrategy.NONE
        assert "Unable to read file" in result.error.message


class TestRecover:

    @pytest.mark.asyncio
    async def test_recover_fixes_file(self, dispatcher, clock):
        store = MemoryResourceStore({"/tasks.md": b"- [X] a"})
        recoverer = make_recoverer(dispatcher, store, clock)

        error = ParsingError("bad marker", resource="/tasks.md", operation=PARSE_TASKS)
        assert recoverer.can_recover(error)
        assert await recoverer.recover(error) is True
        assert await store.read_text("/tasks.md") == "- [ ] a"

    @pytest.mark.asyncio
    async def test_recover_with_partial_parsing(self, dispatcher, clock):
        store = MemoryResourceStore({"/tasks.md": b"- [ ] a"})
        recoverer = make_recoverer(dispatcher, store, clock)
        error = ParsingError("odd", resource="/tasks.md", operation=PARSE_TASKS)
        assert await recoverer.recover(error) is True

    @pytest.mark.asyncio
    async def test_recover_disabled(self, dispatcher, clock):
        store = MemoryResourceStore({"/doc.md": b"# ok"})
        recoverer = make_recoverer(dispatcher, store, clock, enable_auto_fix=False,
                                   enable_fallback_parsing=False)
        error = ParsingError("odd", resource="/doc.md", operation=PARSE_MARKDOWN)
        assert await recoverer.recover(error) is False

    def test_can_recover_requires_parse_operation(self, dispatcher, store, clock):
        recoverer = make_recoverer(dispatcher, store, clock)
        assert not recoverer.can_recover(ParsingError("x", resource="/a.md", operation="read"))
        assert not recoverer.can_recover(ParsingError("x", operation=PARSE_TASKS))

    @pytest.mark.asyncio
    async def test_dispatched_error_repairs_file(self, dispatcher, clock, notifier):
        store = MemoryResourceStore({"/tasks.md": b"- [X] a"})
        make_recoverer(dispatcher, store, clock)

        dispatcher.submit(ParsingError("bad marker", resource="/tasks.md", operation=PARSE_TASKS))
        await clock.advance(1.0)

        assert await store.read_text("/tasks.md") == "- [ ] a"
        assert "Recovered automatically: bad marker" in [n.message for n in notifier.notifications]

    @pytest.mark.asyncio
    async def test_quiet_handler(self, dispatcher, store, clock, caplog):
        caplog.set_level(logging.INFO, logger="workguard.recoverers.parsing")
        recoverer = make_recoverer(dispatcher, store, clock, log_error_details=False)
        await recoverer.handle_error(ParsingError("x", operation=PARSE_TASKS))
        assert any("Parsing error suggestion: Check the task list format" in r.getMessage()
                   for r in caplog.records)
