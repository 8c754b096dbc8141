"""Export the FastAPI OpenAPI schema to docs/openapi.json."""
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SCHEMA_PATH = ROOT / "docs" / "openapi.json"
TMP_DB = ROOT / ".tmp" / "openapi.db"

sys.path.insert(0, str(ROOT))

# Schema export never talks to Stripe or OpenAI; a throwaway SQLite file is enough
os.environ.setdefault("DATABASE_URL", f"sqlite:///{TMP_DB.as_posix()}")
TMP_DB.parent.mkdir(parents=True, exist_ok=True)


def export_schema(output_path: Path) -> Path:
    from vibestack.main import app  # Imported lazily after env defaults are in place

    schema = app.openapi()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(schema, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return output_path


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Export OpenAPI schema for the VibeStack API")
    parser.add_argument(
        "--output",
        type=Path,
        default=SCHEMA_PATH,
        help="Destination file for the OpenAPI document (default: docs/openapi.json)",
    )
    args = parser.parse_args(argv)

    output_path = export_schema(args.output.resolve())
    print(f"Wrote OpenAPI schema to {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
