"""Generate a complete book from the command line and write the requested exports."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from bookgen import create_app
from bookgen.exporters import EXPORTERS, export_book
from bookgen.services import BookLibrary, ConfigurationError, GenerationOrchestrator
from bookgen.services.book_types import AUDIENCES, GENRES, TONES, WRITING_STYLES
from bookgen.services.validation import validate_configuration


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate an outline and every chapter of a book.")
    parser.add_argument("topic", help="What the book is about.")
    parser.add_argument("--genre", default=GENRES[0], choices=GENRES)
    parser.add_argument("--style", default=WRITING_STYLES[0], choices=WRITING_STYLES)
    parser.add_argument("--tone", default=TONES[0], choices=TONES)
    parser.add_argument("--audience", default=AUDIENCES[2], choices=AUDIENCES)
    parser.add_argument("--chapters", type=int, default=5, help="Number of chapters (1-50).")
    parser.add_argument("--model", help="Override the configured chat model.")
    parser.add_argument(
        "--format",
        dest="formats",
        action="append",
        choices=sorted(EXPORTERS),
        help="Export format; repeat for several (default: txt).",
    )
    parser.add_argument("--output-dir", type=Path, default=Path("."), help="Directory for exported files.")
    parser.add_argument("--save", action="store_true", help="Store the finished book in the library.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    app = create_app()

    with app.app_context():
        try:
            config = validate_configuration(
                {
                    "tema": args.topic,
                    "genero": args.genre,
                    "estiloEscritura": args.style,
                    "tono": args.tone,
                    "audienciaObjetivo": args.audience,
                    "numeroCapitulos": args.chapters,
                    "modelo": args.model or "",
                }
            )
        except ConfigurationError as exc:
            print(f"Invalid configuration: {exc}", file=sys.stderr)
            return 2

        orchestrator = GenerationOrchestrator(summary_limit=app.config["SUMMARY_CHAR_LIMIT"])
        for event in orchestrator.run(config):
            if event.kind == "chunk":
                continue
            print(json.dumps(event.to_payload(), ensure_ascii=False))

        state = orchestrator.state
        if state.error:
            print(f"Generation failed: {state.error}", file=sys.stderr)
            return 1

        args.output_dir.mkdir(parents=True, exist_ok=True)
        for fmt in args.formats or ["txt"]:
            payload = export_book(fmt, state.outline.title, state.outline.synopsis, state.chapters, config)
            target = args.output_dir / payload.filename
            target.write_bytes(payload.data)
            print(f"Wrote {target}")

        if args.save:
            book = orchestrator.save(BookLibrary())
            print(f"Saved to library as {book.id}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
