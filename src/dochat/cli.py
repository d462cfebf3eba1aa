"""Command-line entry point for asking dochat a question."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Sequence

from dochat.config import get_settings
from dochat.dependencies import build_dependencies
from dochat.models import AnswerResult

PREVIEW_CHUNKS = 2
PREVIEW_CHARS = 300


def _format_text(result: AnswerResult) -> str:
    lines = [result.answer, ""]
    if result.sources:
        lines.append(f"Sources: {', '.join(result.sources)}")
    for index, item in enumerate(result.context[:PREVIEW_CHUNKS], start=1):
        preview = item.text[:PREVIEW_CHARS]
        lines.append(f"[{index}] {item.chunk.metadata.citation_label()} (similarity {item.similarity:.2f})")
        lines.append(f"    {preview}")
    lines.append(f"Outcome: {result.diagnostics.get('outcome', '-')}")
    return "\n".join(lines)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Answer a question from a user's indexed documents.")
    parser.add_argument("question", help="Question to answer")
    parser.add_argument("--user-id", required=True, help="Owner of the document namespace to search")
    parser.add_argument("--top-k", type=int, default=None, help="Number of chunks passed to generation")
    parser.add_argument("--json", action="store_true", help="Print the full AnswerResult as JSON")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    deps = build_dependencies(get_settings())
    result = asyncio.run(deps.query_service.answer(args.user_id, args.question, top_k=args.top_k))
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(_format_text(result))
    return 0 if result.diagnostics.get("outcome") not in {"invalid_query", "error"} else 1


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
