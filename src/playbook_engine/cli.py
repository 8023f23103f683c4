"""``playbook-compile`` — compile Markdown playbooks from the command line.

Prints each compiled template as JSON so authors can check a playbook
before publishing it.  Any ``ParseError`` is reported per file and makes the
command exit with status 1; the remaining files are still checked.

Usage::

    playbook-compile playbooks/bottleneck-minimal-v1.md
    playbook-compile playbooks/*.md --summary
    playbook-compile draft.md --protocol protocols/standard-discovery.yaml
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from playbook_engine.compiler import compile_template
from playbook_engine.errors import ParseError, PlaybookError
from playbook_engine.protocol import load_protocol, resolve_protocol
from playbook_engine.registry import load_text


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="playbook-compile",
        description="Compile Markdown playbooks and print the result as JSON.",
    )
    parser.add_argument("files", nargs="+", type=Path, help="playbook Markdown files")
    parser.add_argument(
        "--summary",
        action="store_true",
        help="print one line per playbook instead of the full JSON",
    )
    parser.add_argument(
        "--protocol",
        type=Path,
        default=None,
        help="protocol YAML; also print it with each playbook's rule overrides applied",
    )
    parser.add_argument("--indent", type=int, default=2, help="JSON indent (default: 2)")
    parser.add_argument(
        "--log-level",
        default=os.getenv("PLAYBOOK_LOG_LEVEL", "WARNING"),
        help="logging level (default: $PLAYBOOK_LOG_LEVEL or WARNING)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Console-script entry point.  Returns the process exit status."""
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    protocol = load_protocol(args.protocol) if args.protocol else None
    failed = 0

    for path in args.files:
        try:
            template = compile_template(load_text(path), source_ref=str(path))
            resolved = resolve_protocol(protocol, template) if protocol else None
        except ParseError as exc:
            failed += 1
            for problem in exc.problems:
                print(f"{path}: {problem}", file=sys.stderr)
            continue
        except (FileNotFoundError, PlaybookError) as exc:
            failed += 1
            print(f"{path}: {exc}", file=sys.stderr)
            continue

        if args.summary:
            print(
                f"{path}: {template.identifier} — "
                f"{template.compile_info.phase_count} phases, "
                f"{template.compile_info.question_count} questions"
            )
            continue

        payload = {"template": template.model_dump(mode="json")}
        if resolved is not None:
            payload["protocol"] = resolved.model_dump(mode="json", by_alias=True)
        print(json.dumps(payload, ensure_ascii=False, indent=args.indent))

    return 1 if failed else 0


def cli() -> None:
    """Console-script entry point: ``playbook-compile``."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
