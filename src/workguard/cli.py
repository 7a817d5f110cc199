#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from workguard.config import load_config
from workguard.errors import WorkguardError
from workguard.logging_config import setup_json_logging
from workguard.recoverers.parsing import extract_document_structure, extract_markdown_structure, extract_tasks, fix_content

EXTRACTORS = {
    "tasks": extract_tasks,
    "markdown": extract_markdown_structure,
    "structure": extract_document_structure,
}


def run_fix(args: argparse.Namespace) -> int:
    """Apply the markdown fix rules to each file; ``--check`` only reports."""
    changed = 0
    for name in args.files:
        path = Path(name)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            print(f"❌ {path}: {e}", file=sys.stderr)
            return 2
        fixed, changes = fix_content(content)
        if fixed == content:
            continue
        changed += 1
        if args.check:
            print(f"⚠️  {path}: {changes} fix(es) needed")
        else:
            path.write_text(fixed, encoding="utf-8")
            print(f"✅ {path}: applied {changes} fix(es)")

    if args.check and changed:
        return 1
    if not changed:
        print("✅ Nothing to fix.")
    return 0


def run_extract(args: argparse.Namespace) -> int:
    """Print the permissive extraction of a document as JSON."""
    path = Path(args.file)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        print(f"❌ {path}: {e}", file=sys.stderr)
        return 2
    print(json.dumps(EXTRACTORS[args.command](content), indent=2))
    return 0


def run_config(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.path)
    except (OSError, WorkguardError) as e:
        print(f"❌ Invalid configuration: {e}", file=sys.stderr)
        return 2
    print(json.dumps(config.to_dict(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workguard",
        description="Workguard: component resilience toolkit\nUse `workguard <subcommand>`",
    )
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON structured logs")
    sub = parser.add_subparsers(dest="command")

    fp = sub.add_parser("fix", help="Normalize markdown headings, task markers, links and code blocks")
    fp.add_argument("files", nargs="+", help="Markdown files to fix in place")
    fp.add_argument("--check", action="store_true", help="Report files needing fixes; exit 1 if any")

    tp = sub.add_parser("tasks", help="Extract task lines as JSON")
    tp.add_argument("file")

    mp = sub.add_parser("markdown", help="Extract headings, paragraphs and lists as JSON")
    mp.add_argument("file")

    stp = sub.add_parser("structure", help="Extract sections and content blocks as JSON")
    stp.add_argument("file")

    cp = sub.add_parser("config", help="Print the effective configuration")
    cp.add_argument("path", nargs="?", help="YAML or JSON config file (default: $WORKGUARD_CONFIG)")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.json_logs:
        setup_json_logging(args.log_level)
    else:
        logging.basicConfig(level=getattr(logging, args.log_level))

    if args.command == "fix":
        sys.exit(run_fix(args))
    elif args.command in EXTRACTORS:
        sys.exit(run_extract(args))
    elif args.command == "config":
        sys.exit(run_config(args))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
