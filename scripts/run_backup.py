from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

from dbvault.core.config import get_settings
from dbvault.core.container import build_services
from dbvault.core.errors import BackupConflictError, ScheduleNotFoundError
from dbvault.core.logging import configure_logging
from dbvault.db.models import RunOrigin


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one backup schedule now and print its history entry")
    parser.add_argument("schedule_id", nargs="?", help="Schedule id to run")
    parser.add_argument("--state-root", help="State root directory (overrides DBVAULT_STATE_ROOT)")
    parser.add_argument("--profiles", help="Connection profiles JSON file (overrides DBVAULT_PROFILES_PATH)")
    parser.add_argument("--list", action="store_true", help="List schedules and exit")
    parser.add_argument("--scheduled", action="store_true", help="Record the run as scheduled instead of manual")
    return parser.parse_args()


def configure_env(args: argparse.Namespace) -> None:
    if args.state_root:
        os.environ["DBVAULT_STATE_ROOT"] = Path(args.state_root).resolve().as_posix()
    if args.profiles:
        os.environ["DBVAULT_PROFILES_PATH"] = Path(args.profiles).resolve().as_posix()
    get_settings.cache_clear()


def main() -> int:
    args = parse_args()
    configure_env(args)
    settings = get_settings()
    configure_logging(settings.log_level)
    services = build_services(settings)

    if args.list or not args.schedule_id:
        for schedule in services.schedules.list():
            next_run = schedule.next_run_at.isoformat() if schedule.next_run_at else "-"
            print(f"{schedule.id}  {schedule.name}  enabled={schedule.enabled}  next={next_run}")
        return 0

    origin = RunOrigin.SCHEDULED if args.scheduled else RunOrigin.MANUAL
    try:
        entry = services.service.run_schedule(args.schedule_id, origin)
    except (ScheduleNotFoundError, BackupConflictError) as exc:
        print(str(exc), file=sys.stderr)
        return 2

    print(json.dumps(entry.model_dump(mode="json"), indent=2))
    return 0 if entry.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
