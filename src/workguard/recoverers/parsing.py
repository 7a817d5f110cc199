"""
Parsing recoverer.

Holds an ordered list of pattern-based fix rules for markdown documents.
``apply_fixes`` runs the list until the content stops changing, so applying
it twice gives the same result as applying it once.

``safe_parse`` never leaves a caller empty-handed: parse, then auto-fix and
reparse, then the caller's fallback parser, then a permissive built-in
extraction that returns whatever structure it can find.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from workguard.clock import Clock
from workguard.config import ParsingRecovererConfig
from workguard.dispatcher import ErrorDispatcher, NotificationOptions, maybe_await
from workguard.errors import ErrorCategory, ParsingError, RecoveryStrategy, WorkguardError
from workguard.recoverers.base import CategoryRecoverer, OperationResult
from workguard.storage import LocalResourceStore, ResourceStore

logger = logging.getLogger(__name__)

PARSE_MARKDOWN = "parse-markdown"
PARSE_TASKS = "parse-tasks"
PARSE_STRUCTURE = "parse-structure"

PARSE_OPERATIONS = (PARSE_MARKDOWN, PARSE_TASKS, PARSE_STRUCTURE)

OPERATION_SUGGESTIONS = {
    PARSE_MARKDOWN: "Check the markdown syntax, especially headings, links and code blocks.",
    PARSE_TASKS: "Check the task list format: use '- [ ] task', '- [-] task' or '- [x] task'.",
    PARSE_STRUCTURE: "Check the document structure: heading levels and paragraph layout.",
}
DEFAULT_SUGGESTION = "Check the file format and syntax."

TASK_MARKERS = (" ", "-", "x")
TASK_STATUS = {"x": "completed", "-": "in-progress", " ": "pending"}

# Passes before apply_fixes gives up looking for a fixed point
MAX_FIX_PASSES = 5


# ============================================================================
# Fix rules
# ============================================================================

@dataclass
class FixRule:
    """A regex and its replacement (a template string or a match function)."""
    pattern: re.Pattern
    fix: Union[str, Callable[[re.Match], str]]
    description: str

    def apply(self, content: str) -> Tuple[str, int]:
        return self.pattern.subn(self.fix, content)


def _fix_heading(match: re.Match) -> str:
    return f"{match.group(1)} {match.group(2)}"


def _fix_task_marker(match: re.Match) -> str:
    marker = match.group(2)
    if marker not in TASK_MARKERS:
        marker = " "
    return f"{match.group(1)}{marker}{match.group(3)}"


def _fix_link(match: re.Match) -> str:
    return f"[{match.group(1).strip()}]({match.group(2).strip()})"


def _fix_code_block(match: re.Match) -> str:
    language = match.group(1)
    lines = match.group(2).split("\n")
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    if not lines:
        return f"```{language}\n```"
    body = "\n".join(lines)
    return f"```{language}\n{body}\n```"


def default_fix_rules() -> List[FixRule]:
    """The built-in rules, in application order."""
    return [
        FixRule(
            re.compile(r"^(#{1,6})[ \t]+(\S.*?)[ \t]*$", re.M),
            _fix_heading,
            "Normalize heading whitespace",
        ),
        FixRule(
            re.compile(r"^([ \t]*-[ \t]*\[)([^\]\r\n]?)(\])(?=[ \t]|$)", re.M),
            _fix_task_marker,
            "Normalize task checkbox markers",
        ),
        FixRule(
            re.compile(r"\[([^\]\n]+)\]\(([^)\n]+)\)"),
            _fix_link,
            "Trim link text and target",
        ),
        FixRule(
            re.compile(r"^```[ \t]*([\w+-]*)[ \t]*\n(.*?)^```[ \t]*$", re.M | re.S),
            _fix_code_block,
            "Trim blank lines inside code blocks",
        ),
    ]


def fix_content(content: str, rules: Optional[List[FixRule]] = None) -> Tuple[str, int]:
    """
    Apply ``rules`` until the content stops changing.

    Returns:
        The fixed content and the number of rule applications that changed it
    """
    rules = default_fix_rules() if rules is None else rules
    changes = 0
    for _ in range(MAX_FIX_PASSES):
        before = content
        for rule in rules:
            fixed, count = rule.apply(content)
            if count and fixed != content:
                logger.debug(f"Applied fix rule '{rule.description}' ({count} matches)")
                changes += 1
            content = fixed
        if content == before:
            break
    return content, changes


# ============================================================================
# Permissive extraction
# ============================================================================

_HEADING = re.compile(r"^(#{1,6})\s+(.+)$")
_LIST_ITEM = re.compile(r"^(?:[-*]\s|\d+\.\s)")
_TASK = re.compile(r"^\s*-\s*\[([ \-x])\]\s+(.+)$")


def extract_markdown_structure(content: str) -> Dict[str, Any]:
    """Headings, paragraphs and runs of list items, with 0-based line numbers."""
    headings: List[Dict[str, Any]] = []
    paragraphs: List[Dict[str, Any]] = []
    lists: List[Dict[str, Any]] = []
    last_item_line = None

    for number, raw in enumerate(content.split("\n")):
        line = raw.strip()
        heading = _HEADING.match(line)
        if heading:
            headings.append({"level": len(heading.group(1)), "text": heading.group(2), "line": number})
            continue
        if _LIST_ITEM.match(line):
            item = _LIST_ITEM.sub("", line, count=1)
            if lists and last_item_line == number - 1:
                lists[-1]["items"].append(item)
            else:
                lists.append({"items": [item], "line": number})
            last_item_line = number
            continue
        if line:
            paragraphs.append({"text": line, "line": number})

    return {"headings": headings, "paragraphs": paragraphs, "lists": lists}


def extract_tasks(content: str) -> Dict[str, Any]:
    """Split a task document into valid task lines and everything else."""
    valid_tasks = []
    invalid_lines = []
    for number, line in enumerate(content.split("\n")):
        task = _TASK.match(line)
        if task:
            valid_tasks.append({
                "line": number,
                "status": TASK_STATUS[task.group(1)],
                "text": task.group(2).strip(),
            })
        elif line.strip():
            invalid_lines.append({"line": number, "content": line})
    return {
        "valid_tasks": valid_tasks,
        "invalid_lines": invalid_lines,
        "total_tasks": len(valid_tasks),
        "invalid_line_count": len(invalid_lines),
    }


def extract_document_structure(content: str) -> Dict[str, Any]:
    """Sections from headings plus typed content blocks (text, code, quote, list)."""
    sections = []
    blocks = []
    for number, raw in enumerate(content.split("\n")):
        line = raw.strip()
        heading = _HEADING.match(line)
        if heading:
            sections.append({"title": heading.group(2), "level": len(heading.group(1)), "line": number})
            continue
        if not line:
            continue
        if line.startswith("```"):
            kind = "code"
        elif line.startswith(">"):
            kind = "quote"
        elif re.match(r"^[-*]\s", line):
            kind = "list"
        else:
            kind = "text"
        blocks.append({"type": kind, "content": line, "line": number})
    return {"sections": sections, "content_blocks": blocks}


EXTRACTORS: Dict[str, Callable[[str], Dict[str, Any]]] = {
    PARSE_MARKDOWN: extract_markdown_structure,
    PARSE_TASKS: extract_tasks,
    PARSE_STRUCTURE: extract_document_structure,
}


# ============================================================================
# Recoverer
# ============================================================================

class ParsingRecoverer(CategoryRecoverer):
    """Recoverer and ``safe_parse`` helper for document parsing."""

    category = ErrorCategory.PARSING
    error_type = ParsingError

    def __init__(
        self,
        dispatcher: ErrorDispatcher,
        config: Optional[ParsingRecovererConfig] = None,
        store: Optional[ResourceStore] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(dispatcher, config or ParsingRecovererConfig(), clock)
        self.store = store or LocalResourceStore()
        self._rules: List[FixRule] = default_fix_rules()

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def add_fix_rule(self, rule: FixRule) -> None:
        self._rules.append(rule)

    def get_fix_rules(self) -> List[FixRule]:
        return list(self._rules)

    def auto_fix(self, content: str) -> Tuple[str, int]:
        return fix_content(content, self._rules)

    def apply_fixes(self, content: str) -> str:
        return self.auto_fix(content)[0]

    # ------------------------------------------------------------------
    # Handler / recoverer
    # ------------------------------------------------------------------

    def suggestion_for(self, error: WorkguardError) -> str:
        return OPERATION_SUGGESTIONS.get(error.context.operation, DEFAULT_SUGGESTION)

    async def handle_error(self, error: WorkguardError) -> None:
        if not self.can_handle(error) or not error.context.operation:
            return
        if self.config.log_error_details:
            await super().handle_error(error)
        else:
            logger.info(f"Parsing error suggestion: {self.suggestion_for(error)}")

    def can_recover(self, error: WorkguardError) -> bool:
        if error.context.operation not in PARSE_OPERATIONS or not error.context.resource:
            return False
        return super().can_recover(error)

    async def _recover(self, error: WorkguardError) -> bool:
        operation = error.context.operation
        resource = error.context.resource
        if operation not in PARSE_OPERATIONS or not resource:
            return False

        content = await self.store.read_text(resource)
        if self.config.enable_auto_fix:
            fixed = self.apply_fixes(content)
            if fixed != content:
                await self.store.write_text(resource, fixed)
                logger.info(f"Auto-fixed {resource}")
                return True

        enabled = (self.config.enable_partial_parsing if operation == PARSE_TASKS
                   else self.config.enable_fallback_parsing)
        if enabled:
            EXTRACTORS[operation](content)
            logger.info(f"Fallback extraction succeeded for {resource}")
            return True
        return False

    # ------------------------------------------------------------------
    # Safe parsing
    # ------------------------------------------------------------------

    async def safe_parse(
        self,
        operation: str,
        resource: str,
        parse_fn: Callable[[str], Any],
        fallback_parse_fn: Optional[Callable[[str], Any]] = None,
    ) -> OperationResult:
        """
        Read ``resource`` and parse it, recovering as far as possible.

        Fixed content is written back only when the fix made ``parse_fn``
        succeed. The failure reaches the dispatcher only when every stage
        has failed.
        """
        try:
            content = await self.store.read_text(resource)
        except Exception as e:
            error = ParsingError(
                f"Unable to read file: {self._describe(e)}",
                recovery_strategy=RecoveryStrategy.NONE,
                inner_error=e,
                resource=resource,
                operation=operation,
            )
            self.dispatcher.submit(error, NotificationOptions(show_to_user=False))
            return OperationResult(success=False, error=error)

        try:
            return OperationResult(success=True, data=await maybe_await(parse_fn(content)))
        except Exception as e:
            parse_error = e

        fix_count = 0
        current = content
        if self.config.enable_auto_fix:
            fixed, changes = self.auto_fix(content)
            if fixed != content:
                fix_count = changes
                current = fixed
                try:
                    data = await maybe_await(parse_fn(current))
                except Exception as e:
                    logger.debug(f"Parse still failing after auto-fix: {e}")
                else:
                    await self._write_back(resource, current)
                    return OperationResult(success=True, data=data, fix_count=fix_count)

        if fallback_parse_fn is not None and self.config.enable_fallback_parsing:
            try:
                data = await maybe_await(fallback_parse_fn(current))
                return OperationResult(success=True, data=data, used_fallback=True,
                                       fix_count=fix_count)
            except Exception as e:
                logger.debug(f"Fallback parser failed for {resource}: {e}")

        if self.config.enable_fallback_parsing:
            extractor = EXTRACTORS.get(operation, extract_markdown_structure)
            data = extractor(current)
            logger.info(f"Using permissive extraction for {resource}")
            return OperationResult(success=True, data=data, used_fallback=True,
                                   is_partial=True, fix_count=fix_count)

        error = self._parse_failure(parse_error, operation, resource, current)
        self.dispatcher.submit(error, NotificationOptions(show_to_user=False))
        return OperationResult(success=False, error=error, fix_count=fix_count)

    async def _write_back(self, resource: str, content: str) -> None:
        try:
            await self.store.write_text(resource, content)
        except OSError as e:
            logger.warning(f"Could not write fixed content back to {resource}: {e}")

    def _parse_failure(self, exc: BaseException, operation: str, resource: str,
                       content: str) -> ParsingError:
        lineno = getattr(exc, "lineno", None)
        line_content = None
        if isinstance(lineno, int) and lineno > 0:
            lines = content.split("\n")
            if lineno <= len(lines):
                line_content = lines[lineno - 1]
        return ParsingError(
            self._describe(exc),
            line_content=line_content,
            inner_error=exc,
            resource=resource,
            operation=operation,
            line=lineno if isinstance(lineno, int) else None,
        )
