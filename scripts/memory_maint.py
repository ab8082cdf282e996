"""
CLI utility for memory maintenance.

Usage:
    python scripts/memory_maint.py --candidates
    python scripts/memory_maint.py --similar --threshold 0.9
    python scripts/memory_maint.py --run               # dry run
    python scripts/memory_maint.py --run --execute     # archive for real
    python scripts/memory_maint.py --replay
"""

import argparse
import asyncio
import sys
from typing import Optional

from memory_engine.memory.integrate import MemoryEngine, create_memory_engine
from memory_engine.telemetry import configure_logging


async def show_candidates(engine: MemoryEngine, namespace: Optional[str]) -> int:
    """Print pruning candidates per bucket."""
    candidates = await engine.identify_candidates(namespace)

    print(f"📊 Pruning candidates ({namespace or engine.user_namespace})\n")
    print(f"{'Bucket':<20} {'Count':>8}")
    print("=" * 30)
    for bucket in ("superseded", "low_effectiveness", "stale"):
        print(f"{bucket:<20} {len(getattr(candidates, bucket)):>8,}")
    print("=" * 30)
    print(f"{'TOTAL':<20} {candidates.total:>8,}\n")

    for bucket in ("superseded", "low_effectiveness", "stale"):
        for record in getattr(candidates, bucket):
            print(f"   [{bucket}] {record.id}: {record.snippet(70)}")
    return 0


async def show_similar(engine: MemoryEngine, namespace: Optional[str], threshold: Optional[float]) -> int:
    """Print near-duplicate groups."""
    groups = await engine.find_similar(threshold, namespace)

    if not groups:
        print("✅ No near-duplicate groups found")
        return 0

    print(f"🔍 {len(groups)} near-duplicate group(s)\n")
    for group in groups:
        print(f"   {group.primary.id}: {group.primary.snippet(70)}")
        for dup in group.duplicates:
            print(f"      ↳ {dup.id} ({dup.similarity:.2f}): {dup.snippet(60)}")
    return 0


async def run_maintenance(engine: MemoryEngine, namespace: Optional[str], execute: bool) -> int:
    """Run a maintenance pass and print the summary."""
    mode = "EXECUTE" if execute else "DRY RUN"
    print(f"🔧 Running maintenance ({mode})\n")

    result = await engine.run_maintenance(dry_run=not execute, namespace=namespace)

    print(f"   Analyzed:      {result.analyzed:>8,}")
    print(f"   Pruned:        {result.pruned:>8,}")
    print(f"   Consolidated:  {result.consolidated:>8,}")
    if result.errors:
        print(f"\n❌ {len(result.errors)} error(s):")
        for error in result.errors:
            print(f"   {error}")
        return 1

    print("\n✅ Maintenance complete")
    return 0


async def replay_failed(engine: MemoryEngine) -> int:
    """Replay the failure queue once."""
    # The queue lives in process memory, so this only helps when embedded
    # in a long-running process; from a fresh CLI process it is empty.
    pending = len(engine.failed_operations())
    if not pending:
        print("✅ Failure queue is empty")
        return 0

    succeeded = await engine.replay_failed()
    print(f"   Replayed {succeeded}/{pending} operation(s)")
    return 0 if succeeded == pending else 1


async def run(args: argparse.Namespace) -> int:
    """Run the requested actions against one engine instance."""
    engine = create_memory_engine()
    exit_code = 0
    try:
        if args.candidates:
            exit_code |= await show_candidates(engine, args.namespace)
        if args.similar:
            exit_code |= await show_similar(engine, args.namespace, args.threshold)
        if args.run:
            exit_code |= await run_maintenance(engine, args.namespace, args.execute)
        if args.replay:
            exit_code |= await replay_failed(engine)
    finally:
        await engine.aclose()
    return exit_code


def main():
    """CLI entrypoint."""
    parser = argparse.ArgumentParser(
        description="Memory maintenance (pruning candidates, duplicates, archival)"
    )
    parser.add_argument(
        "--candidates",
        action="store_true",
        help="Show pruning candidates",
    )
    parser.add_argument(
        "--similar",
        action="store_true",
        help="Show near-duplicate groups",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Similarity threshold for --similar (default: from settings)",
    )
    parser.add_argument(
        "--run",
        action="store_true",
        help="Run a maintenance pass (dry run unless --execute)",
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Actually archive records during --run",
    )
    parser.add_argument(
        "--replay",
        action="store_true",
        help="Replay failed remote operations",
    )
    parser.add_argument(
        "--namespace",
        type=str,
        default=None,
        help="Namespace to maintain (default: user namespace)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print structured log events to stderr",
    )

    args = parser.parse_args()

    if not (args.candidates or args.similar or args.run or args.replay):
        parser.print_help()
        print("\n❌ Error: Must specify --candidates, --similar, --run or --replay")
        sys.exit(1)

    if args.verbose:
        configure_logging(json=False)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
