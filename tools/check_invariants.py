#!/usr/bin/env python3
"""taskgraph consistency checks against a projected snapshot.

Usage:
    python3 tools/check_invariants.py
    python3 tools/check_invariants.py path/to/state.json
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from taskgraph.errors import StoreIOError
from taskgraph.invariants import check_store
from taskgraph.persistence.entity_store import EntityStore

DEFAULT_SNAPSHOT = ROOT / "data" / "state.json"


def check(snapshot_path: Path = DEFAULT_SNAPSHOT) -> int:
    if not snapshot_path.exists():
        print(f"Snapshot not found: {snapshot_path}")
        return 1
    try:
        store = EntityStore(storage_path=snapshot_path)
    except StoreIOError as exc:
        print(f"Cannot load snapshot: {exc}")
        return 1

    errors = check_store(store)
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    counts = store.counts()
    print(
        "Invariant checks passed "
        f"({counts['task']} tasks, {counts['dispute']} disputes, {counts['user']} users)."
    )
    return 0


if __name__ == "__main__":
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_SNAPSHOT
    raise SystemExit(check(path))
