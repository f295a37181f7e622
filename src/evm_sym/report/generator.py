"""Report generator - JSON and Markdown output."""
from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from ..checks.base import EquivalenceReport, ViolationReport, leaf_summary
from ..engine.state import LeafKind

__all__ = ["ReportGenerator"]

Report = ViolationReport | EquivalenceReport


class ReportGenerator:
    def __init__(self, contract_name: str = "unknown") -> None:
        self.contract_name = contract_name

    @staticmethod
    def _kind_counts(leaves: list) -> dict[str, int]:
        counts = {kind.value: 0 for kind in LeafKind}
        for leaf in leaves:
            counts[leaf.kind.value] += 1
        return {kind: count for kind, count in counts.items() if count}

    def _violation_dict(self, report: ViolationReport) -> dict[str, Any]:
        failing = {id(f.leaf): f for f in report.failures}
        undecided = {id(leaf) for leaf in report.undecided}
        leaves = []
        for leaf in report.leaves:
            entry = leaf_summary(leaf)
            failure = failing.get(id(leaf))
            if failure is not None:
                entry["classification"] = "failure"
                entry["description"] = failure.description
                example = failure.counterexample
            else:
                entry["classification"] = "undecided" if id(leaf) in undecided else "ok"
                example = report.witnesses.get(leaf.path_id)
            if example is not None:
                entry["model"] = example.to_dict()
            leaves.append(entry)
        return {
            "mode": report.mode,
            "paths": len(report.leaves),
            "leaf_kinds": self._kind_counts(report.leaves),
            "failures": [
                {
                    "path": f.leaf.label,
                    "description": f.description,
                    "counterexample": f.counterexample.to_dict() if f.counterexample else None,
                }
                for f in report.failures
            ],
            "leaves": leaves,
        }

    def _equivalence_dict(self, report: EquivalenceReport) -> dict[str, Any]:
        return {
            "mode": "equivalence",
            "paths": [len(report.exploration_a.leaves), len(report.exploration_b.leaves)],
            "leaf_kinds": [
                self._kind_counts(report.exploration_a.leaves),
                self._kind_counts(report.exploration_b.leaves),
            ],
            "discrepancies": [
                {
                    "paths": [d.leaf_a.label, d.leaf_b.label],
                    "kinds": [str(d.leaf_a.kind), str(d.leaf_b.kind)],
                    "description": d.description,
                    "counterexample": d.counterexample.to_dict() if d.counterexample else None,
                }
                for d in report.discrepancies
            ],
            "undecided": [[a.label, b.label] for a, b in report.undecided],
        }

    def to_dict(self, report: Report) -> dict[str, Any]:
        """Serialize a check result into a structured report dictionary."""
        if isinstance(report, EquivalenceReport):
            body = self._equivalence_dict(report)
        else:
            body = self._violation_dict(report)
        return {
            "contract": self.contract_name,
            "timestamp": datetime.now(UTC).isoformat(),
            "verdict": report.verdict.value,
            "summary": report.summary(),
            **body,
        }

    def to_json(self, report: Report) -> str:
        """Return the report as a pretty-printed JSON string."""
        return json.dumps(self.to_dict(report), indent=2)

    @staticmethod
    def _markdown_table(headers: list[str], rows: list[list[str]]) -> list[str]:
        sep = "|".join("-" * max(len(h), 3) for h in headers)
        lines = [
            "| " + " | ".join(headers) + " |",
            "|" + sep + "|",
        ]
        for row in rows:
            lines.append("| " + " | ".join(row) + " |")
        return lines

    @staticmethod
    def _model_lines(model: dict[str, Any] | None) -> list[str]:
        if model is None:
            return ["- **Counterexample:** unavailable (solver gave no model)"]
        lines = []
        if model["function"]:
            lines.append(f"- **Function:** `{model['function']}`")
        for name, value in model["arguments"].items():
            lines.append(f"  - `{name}` = `{value}`")
        lines.append(f"- **Calldata:** `{model['calldata']}`")
        lines.append(f"- **Caller:** `{model['caller']}`")
        lines.append(f"- **Call value:** {model['callvalue']}")
        for slot in model["storage"]:
            lines.append(f"- **Storage:** `{slot['address']}[{slot['slot']}] = {slot['value']}`")
        return lines

    def to_markdown(self, report: Report) -> str:
        """Render the report as a Markdown document."""
        d = self.to_dict(report)
        title = "Equivalence Report" if d["mode"] == "equivalence" else "Symbolic Check Report"
        lines = [
            f"# {title}: {self.contract_name}",
            f"\nGenerated: {d['timestamp']}\n",
            "## Summary\n",
            f"- **Verdict:** {d['verdict'].capitalize()}",
            f"- **Result:** {d['summary']}",
            "",
        ]
        if d["mode"] == "equivalence":
            lines.append("## Discrepancies\n")
            if not d["discrepancies"]:
                lines.append("None.\n")
            for i, item in enumerate(d["discrepancies"], 1):
                lines.append(f"### {i}. Paths {item['paths'][0]} / {item['paths'][1]}")
                lines.append(f"\n- **Halts:** {item['kinds'][0]} / {item['kinds'][1]}")
                lines.append(f"- **Description:** {item['description']}")
                lines.extend(self._model_lines(item["counterexample"]))
                lines.append("")
            return "\n".join(lines)

        lines.extend(self._markdown_table(
            ["Leaf Kind", "Count"],
            [[kind, str(count)] for kind, count in d["leaf_kinds"].items()],
        ))
        lines.append("")
        lines.append("## Failures\n")
        if not d["failures"]:
            lines.append("None.\n")
        for i, item in enumerate(d["failures"], 1):
            lines.append(f"### {i}. Path {item['path']}: {item['description']}\n")
            lines.extend(self._model_lines(item["counterexample"]))
            lines.append("")
        lines.append("## Paths\n")
        lines.extend(self._markdown_table(
            ["Path", "Kind", "Constraints", "Classification"],
            [[leaf["path"], leaf["kind"], str(leaf["constraints"]), leaf["classification"]] for leaf in d["leaves"]],
        ))
        return "\n".join(lines)
