from __future__ import annotations

import argparse
from pathlib import Path

from infra_provisioner.config import apply, load, plan


def _progress(change: object, event: str) -> None:
    address = getattr(change, "address", "unknown")
    print(f"[apply:{event:6}] {address}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Plan/apply an infra-provisioner config")
    parser.add_argument("--config", default="infra.yaml", help="Path to config file")
    parser.add_argument("--apply", action="store_true", help="Apply the generated plan")
    parser.add_argument("--destroy", action="store_true", help="Plan the destruction of everything")
    args = parser.parse_args()

    config = load(Path(args.config))

    plan_obj = plan(config, destroy=args.destroy)
    print("Plan summary:", plan_obj.summary())
    for change in plan_obj.changes:
        print(f"- {change.action.value:6} {change.address}")

    if args.apply:
        result = apply(plan_obj, config, progress=_progress)
        print("Apply summary:", result.status_summary())
        for failed in result.failed:
            print(f"! {failed.address}: {failed.error}")
        for blocked in result.blocked:
            print(f"! {blocked.address}: blocked by {blocked.blocked_by}")


if __name__ == "__main__":
    main()
