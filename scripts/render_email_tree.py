#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from pydantic import ValidationError

from mailtree.config import settings as app_settings
from mailtree.renderer.html import render
from mailtree.schemas.email import GlobalSettings
from mailtree.tree.validate import validate_tree


def _load_json(path: Path) -> object:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Validate an email component tree (JSON) and render it to HTML.")
    parser.add_argument("tree", type=Path, help="Path to the component tree JSON file.")
    parser.add_argument("--settings", type=Path, default=None, help="Path to a GlobalSettings JSON file.")
    parser.add_argument("--pretty", action="store_true", help="Indent the HTML output.")
    parser.add_argument("--plain-text", action="store_true", help="Print the plain-text rendition instead of HTML.")
    parser.add_argument("--out", type=Path, default=None, help="Write output to this file instead of stdout.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=app_settings.LOG_LEVEL, stream=sys.stderr)

    try:
        tree = _load_json(args.tree)
        settings = GlobalSettings.model_validate(_load_json(args.settings)) if args.settings else GlobalSettings()
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    result = validate_tree(tree)
    if not result.valid:
        for error in result.errors:
            print(f"invalid: {error}", file=sys.stderr)
        return 1

    rendered = render(tree, settings, pretty=args.pretty, plain_text=args.plain_text)
    for warning in rendered.warnings:
        print(f"warning: {warning}", file=sys.stderr)

    output = rendered.plain_text if args.plain_text else rendered.html
    if args.out:
        args.out.write_text(output or "", encoding="utf-8")
        print(f"wrote {args.out}", file=sys.stderr)
    else:
        sys.stdout.write(output or "")
        if output and not output.endswith("\n"):
            sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
