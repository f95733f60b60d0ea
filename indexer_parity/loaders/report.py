import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List


def now_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")


def default_report_path() -> str:
    return f"artifacts/strict-integrity-{now_id()}/report.json"


def write_report(path: str, report: Dict[str, Any]) -> Path:
    target = Path(path).resolve()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")
    return target


def load_report(path: str) -> Dict[str, Any]:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _short(value: Any, width: int = 12) -> str:
    if value is None:
        return "-"
    s = str(value)
    return s if len(s) <= width else f"{s[:width]}…"


def render_markdown(report: Dict[str, Any]) -> str:
    """Human-readable summary of a verification report."""
    verdict = report.get("verdict", {})
    config = report.get("config", {})
    lines: List[str] = []

    lines.append("# Indexer Parity Report\n")
    lines.append(f"- **Generated**: {report.get('generatedAt', '-')}")
    lines.append(f"- **Indexers**: {len(config.get('indexers', []))}")
    status = "✅ PASS" if verdict.get("pass") else "❌ FAIL"
    lines.append(f"- **Verdict**: {status}")
    if verdict.get("reasons"):
        lines.append(f"- **Reasons**: {', '.join(verdict['reasons'])}")
    lines.append(f"- **Mismatches**: {verdict.get('mismatchCount', 0)}\n")

    lines.append("## 1. Table Coverage")
    lines.append("| Table | Supported | Equal Count | Equal Keys | Equal Payload |")
    lines.append("| :--- | :--- | :--- | :--- | :--- |")
    for table, summary in report.get("coverage", {}).items():
        supported = f"{summary.get('supportedOn', 0)}/{summary.get('supportedOn', 0) + summary.get('unsupportedOn', 0)}"
        marks = ["✅" if summary.get(flag) else "❌" for flag in ("allEqualCount", "allEqualKeyHash", "allEqualPayloadHash")]
        lines.append(f"| {table} | {supported} | {marks[0]} | {marks[1]} | {marks[2]} |")

    lines.append("\n## 2. Failing Indexers")
    failing = verdict.get("failingIndexers", [])
    if not failing:
        lines.append("None.")
    for entry in failing:
        lines.append(f"- `{entry.get('baseUrl')}`: {', '.join(entry.get('problems', []))}")

    lines.append("\n## 3. Mismatches")
    mismatches = report.get("mismatches", [])
    if not mismatches:
        lines.append("None.")
    else:
        lines.append("| Table | Kind | Left | Right | Missing Right | Missing Left | Payload Diff |")
        lines.append("| :--- | :--- | :--- | :--- | :--- | :--- | :--- |")
        for m in mismatches:
            lines.append(
                f"| {m.get('table')} | {m.get('kind')} | {m.get('left')} | {m.get('right')} "
                f"| {_short(m.get('missingInRightCount'))} | {_short(m.get('missingInLeftCount'))} "
                f"| {_short(m.get('payloadDiffCount'))} |"
            )
    return "\n".join(lines) + "\n"
