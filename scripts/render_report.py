import argparse
import sys
from pathlib import Path

from indexer_parity.loaders.report import load_report, render_markdown


def main() -> int:
    parser = argparse.ArgumentParser(description="Render an indexer parity report as Markdown")
    parser.add_argument("report", help="Path to report.json")
    parser.add_argument("--output", default=None, help="Write Markdown here instead of stdout")
    args = parser.parse_args()

    markdown = render_markdown(load_report(args.report))
    if args.output:
        Path(args.output).write_text(markdown, encoding="utf-8")
        print(f"✅ Wrote {args.output}")
    else:
        print(markdown)
    return 0


if __name__ == "__main__":
    sys.exit(main())
