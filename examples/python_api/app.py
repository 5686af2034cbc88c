from __future__ import annotations

import argparse
from pathlib import Path

from gce_provisioner.config import load, plan, reconcile
from gce_provisioner.engine import EngineError, ReconcileOptions


def main() -> None:
    parser = argparse.ArgumentParser(description="Plan/apply gce-provisioner config via Python API")
    parser.add_argument("--config", default="gce-provisioner.yaml", help="Path to config file")
    parser.add_argument("--apply", action="store_true", help="Reconcile every instance")
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Read live status from Compute Engine instead of the state file",
    )
    parser.add_argument("--destroy", action="store_true", help="Stop every instance")
    args = parser.parse_args()

    config = load(Path(args.config))
    options = ReconcileOptions(force_refresh=args.refresh, destroy=args.destroy)

    for diff in plan(config, options):
        print(f"{diff.display_name}: {diff.summary()}")
        for change in diff.changes:
            print(f"  ~ {change.attribute}: {change.old!r} -> {change.new!r}")

    if args.apply:
        for resource_id, outcome in reconcile(config, options).items():
            if isinstance(outcome, EngineError):
                print(f"[failed] {resource_id}: {outcome}")
            else:
                print(f"[ok]     {resource_id}: {outcome.state.status}")


if __name__ == "__main__":
    main()
