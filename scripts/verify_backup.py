from __future__ import annotations

import argparse
import json
from dataclasses import asdict
from pathlib import Path

from dbvault.backups.artifacts import compute_content_hash
from dbvault.backups.health import verify_backup
from dbvault.core.config import get_settings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Health-check a backup artifact")
    parser.add_argument("path", help="Path to a .sql dump or a .zip / .tar.gz archive")
    parser.add_argument(
        "--compressed",
        choices=["auto", "yes", "no"],
        default="auto",
        help="Treat the file as an archive (default: detect from the suffix)",
    )
    parser.add_argument("--hash", action="store_true", help="Also print the content hash")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = get_settings()
    path = Path(args.path)
    if args.compressed == "auto":
        is_compressed = path.name.lower().endswith((".zip", ".tar.gz", ".tgz"))
    else:
        is_compressed = args.compressed == "yes"

    report = verify_backup(path, is_compressed, settings=settings)
    payload: dict[str, object] = {"path": path.as_posix(), "compressed": is_compressed, **asdict(report)}
    if args.hash and path.is_file():
        payload["hash_algorithm"] = settings.hash_algorithm
        payload["content_hash"] = compute_content_hash(path, settings.hash_algorithm)
    print(json.dumps(payload, indent=2))
    return 0 if report.healthy else 1


if __name__ == "__main__":
    raise SystemExit(main())
