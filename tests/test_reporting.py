"""Tests for report output consistency."""
from __future__ import annotations

import json

from evm_sym import Config, run_check, run_equivalence
from evm_sym.report.generator import ReportGenerator

ADD_SIG = "add(uint256,uint256)"


def test_violation_report_shape(faulty_add):
    report = run_check(faulty_add, Config(signature=ADD_SIG))
    data = ReportGenerator("FaultyAdd").to_dict(report)

    assert data["contract"] == "FaultyAdd"
    assert data["verdict"] == "failed"
    assert data["mode"] == "violations"
    assert data["paths"] == 2
    assert data["leaf_kinds"] == {"return": 1, "invalid": 1}
    (failure,) = data["failures"]
    assert failure["path"] == "0"
    assert failure["counterexample"]["function"] == ADD_SIG
    classifications = {leaf["path"]: leaf["classification"] for leaf in data["leaves"]}
    assert classifications == {"0": "failure", "1": "ok"}


def test_witnesses_are_attached_to_passing_leaves(safe_add):
    report = run_check(safe_add, Config(signature=ADD_SIG, get_models=True))
    data = ReportGenerator("SafeAdd").to_dict(report)
    assert all("model" in leaf for leaf in data["leaves"])
    assert data["failures"] == []


def test_json_round_trips(safe_add):
    report = run_check(safe_add, Config(signature=ADD_SIG))
    parsed = json.loads(ReportGenerator("SafeAdd").to_json(report))
    assert parsed["verdict"] == "proved"
    assert parsed["summary"] == "no violations found, 3 paths explored"


def test_markdown_sections(faulty_add):
    report = run_check(faulty_add, Config(signature=ADD_SIG))
    markdown = ReportGenerator("FaultyAdd").to_markdown(report)
    assert markdown.startswith("# Symbolic Check Report: FaultyAdd")
    assert "## Summary" in markdown
    assert "- **Verdict:** Failed" in markdown
    assert "### 1. Path 0: INVALID opcode reached" in markdown
    assert "- **Function:** `add(uint256,uint256)`" in markdown
    assert "## Paths" in markdown


def test_markdown_without_failures_says_none(safe_add):
    report = run_check(safe_add, Config(signature=ADD_SIG))
    markdown = ReportGenerator("SafeAdd").to_markdown(report)
    assert "## Failures\n\nNone." in markdown


def test_equivalence_report_shape(safe_add, unchecked_add):
    report = run_equivalence(safe_add, unchecked_add, Config(signature=ADD_SIG))
    gen = ReportGenerator("safe vs unchecked")
    data = gen.to_dict(report)
    assert data["mode"] == "equivalence"
    assert data["paths"] == [3, 1]
    assert len(data["discrepancies"]) == 2
    assert data["discrepancies"][0]["kinds"] == ["revert", "return"]

    markdown = gen.to_markdown(report)
    assert markdown.startswith("# Equivalence Report: safe vs unchecked")
    assert "## Discrepancies" in markdown
    assert "- **Halts:** revert / return" in markdown
