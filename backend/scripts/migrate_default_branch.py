#!/usr/bin/env python3
"""
Migration script that writes an explicit ``default_branch`` into every
condition node of exported flow documents.

This script:
1. Reads each flow JSON file given on the command line
2. Sets default_branch to the first conditions_met=false branch where missing
3. Writes the file back (or only reports with --dry-run)
4. Is idempotent (safe to run multiple times)

Usage:
    python scripts/migrate_default_branch.py flows/*.json [--dry-run]
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from chatflow.workflows.migrations import add_default_branches

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def migrate_file(path: Path, dry_run: bool) -> bool:
    """Migrate one flow file. Returns False if some node could not be fixed."""
    flow = json.loads(path.read_text(encoding="utf-8"))
    updated, fixed, unfixable = add_default_branches(flow)

    if fixed:
        logger.info(f"{path}: default_branch added to {len(fixed)} node(s): {', '.join(fixed)}")
        if not dry_run:
            path.write_text(json.dumps(updated, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    else:
        logger.info(f"{path}: nothing to migrate.")

    for node_id in unfixable:
        logger.error(f"{path}: condition node '{node_id}' has no conditions_met=false branch; fix it in the editor.")

    return not unfixable


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Add explicit default_branch to condition nodes.")
    parser.add_argument("files", nargs="+", type=Path, help="Flow JSON documents")
    parser.add_argument("--dry-run", action="store_true", help="Report without writing")
    args = parser.parse_args(argv)

    ok = True
    for path in args.files:
        try:
            ok = migrate_file(path, args.dry_run) and ok
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"{path}: {e}")
            ok = False

    if ok:
        logger.info("✓ Migration completed successfully!")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
