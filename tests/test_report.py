"""Tests for step results and the run report."""

from arch_setup.report import RunReport, StepResult, StepStatus


def test_report_ok_until_a_failure() -> None:
    report = RunReport()
    report.add(StepResult.ok("a"))
    report.add(StepResult.warn("b", "partial"))
    report.add(StepResult.skipped("c", "disabled"))
    assert report.ok

    report.add(StepResult.failed("d", "boom"))

    assert not report.ok
    assert [r.name for r in report.failures] == ["d"]


def test_extend_with_prefix_keeps_order() -> None:
    sub = RunReport()
    sub.add(StepResult.ok("hypr", "linked 3 path(s)"))
    sub.add(StepResult.failed("faces", "permission denied"))
    report = RunReport()
    report.add(StepResult.ok("need_root"))

    report.extend(sub, prefix="dotfiles:")

    assert [r.name for r in report] == ["need_root", "dotfiles:hypr", "dotfiles:faces"]
    assert report.get("dotfiles:faces").status is StepStatus.FAILED
    assert len(report) == 3


def test_status_values_are_strings() -> None:
    assert StepStatus("skipped") is StepStatus.SKIPPED
    assert StepResult.ok("x").status.value == "success"
