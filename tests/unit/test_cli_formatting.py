from __future__ import annotations

import re

from infra_provisioner.cli.formatting import (
    changes_summary,
    format_apply_result,
    format_change,
    format_changes,
    format_plan,
    format_plan_summary,
)
from infra_provisioner.engine.types import (
    Action,
    ActionResult,
    ActionStatus,
    ApplyResult,
    Plan,
    PlanMetadata,
    ResourceChange,
)
from infra_provisioner.resources import UNKNOWN

_META = PlanMetadata(state_lineage="lineage-1", state_serial=0, engine_version="0.1.0")


def _strip_ansi(text: str) -> str:
    return re.sub(r"\x1b\[[0-9;]*m", "", text)


def _change(action: Action, name: str = "web", **kw: object) -> ResourceChange:
    return ResourceChange(address=f"vm.{name}", kind="vm", name=name, action=action, **kw)


class TestFormatChange:
    def test_create_block(self) -> None:
        change = _change(Action.CREATE, planned={"size": "small", "nic": UNKNOWN, "count": 2})
        out = format_change(change, color=False)
        assert out.splitlines() == [
            "  # vm.web will be created",
            '  + resource "vm" "web" {',
            '      + size  = "small"',
            "      + nic   = (known after apply)",
            "      + count = 2",
            "    }",
        ]

    def test_update_block_shows_from_and_to(self) -> None:
        diff = {"size": {"from": "small", "to": "large"}, "tags": {"from": None, "to": ["a"]}}
        change = _change(Action.UPDATE, diff=diff)
        out = format_change(change, color=False)
        assert "  # vm.web will be updated in-place" in out
        assert '      ~ size = "small" -> "large"' in out
        assert "      ~ tags = null -> ['a']" in out

    def test_delete_block_shows_id(self) -> None:
        out = format_change(_change(Action.DELETE, prior={"id": "vm-1", "size": "s"}), color=False)
        assert "  # vm.web will be destroyed" in out
        assert '      - id = "vm-1"' in out
        assert "size" not in out

    def test_color_adds_ansi(self) -> None:
        out = format_change(_change(Action.CREATE, planned={"a": 1}), color=True)
        assert "\x1b[" in out
        assert _strip_ansi(out) == format_change(
            _change(Action.CREATE, planned={"a": 1}), color=False
        )


class TestFormatPlan:
    def test_no_changes_message(self) -> None:
        assert format_changes([_change(Action.NOOP)], color=False) == (
            "No changes. Resources are up-to-date."
        )

    def test_noops_listed_after_changes(self) -> None:
        plan = Plan(
            metadata=_META,
            changes=[_change(Action.NOOP, "a"), _change(Action.CREATE, "b", planned={})],
        )
        out = format_plan(plan, color=False)
        assert out.index("# vm.b will be created") < out.index("# vm.a is up-to-date")

    def test_summary(self) -> None:
        summary = {"create": 2, "update": 1, "delete": 0, "no-op": 4}
        assert format_plan_summary(summary, color=False) == (
            "Plan: 2 to add, 1 to change, 0 to destroy."
        )

    def test_changes_summary_ignores_noop(self) -> None:
        changes = [_change(Action.UPDATE), _change(Action.NOOP), _change(Action.DELETE)]
        assert changes_summary(changes) == {"create": 0, "update": 1, "delete": 1}


class TestFormatApplyResult:
    def test_success(self) -> None:
        result = ApplyResult(
            results=[
                ActionResult(address="vm.a", action=Action.CREATE, status=ActionStatus.APPLIED),
                ActionResult(address="vm.b", action=Action.NOOP, status=ActionStatus.SKIPPED),
            ]
        )
        assert format_apply_result(result, color=False) == (
            "Apply complete! Resources: 1 added, 0 changed, 0 destroyed."
        )

    def test_failures_listed(self) -> None:
        result = ApplyResult(
            results=[
                ActionResult(
                    address="net.a", action=Action.CREATE, status=ActionStatus.FAILED, error="quota"
                ),
                ActionResult(
                    address="vm.b",
                    action=Action.CREATE,
                    status=ActionStatus.BLOCKED,
                    blocked_by="net.a",
                ),
                ActionResult(address="disk.c", action=Action.DELETE, status=ActionStatus.CANCELED),
                ActionResult(address="disk.d", action=Action.CREATE, status=ActionStatus.APPLIED),
            ],
            canceled=True,
        )
        lines = format_apply_result(result, color=False).splitlines()
        assert lines == [
            "Apply finished with errors! Resources: 1 added, 0 changed, 0 destroyed.",
            "  Failed:   net.a (create): quota",
            "  Blocked:  vm.b (create): depends on net.a",
            "  Canceled: disk.c (delete)",
        ]
