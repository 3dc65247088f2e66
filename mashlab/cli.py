"""Command-line interface for Mashlab.

Commands:
    analyze     - Analyze audio files and folders, print the library
    mashups     - Rank compatible pairs among analyzed files
    set         - Generate a DJ set along an energy curve
    duplicates  - Report version and exact duplicates
    cache       - Inspect or maintain the analysis cache
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from mashlab.analysis.extractor import FeatureExtractor
from mashlab.core.analysis_service import AnalysisService
from mashlab.core.cache import AnalysisCache
from mashlab.core.config import MashlabConfig, load_config
from mashlab.core.database import Database
from mashlab.core.duplicate_checker import DuplicateChecker
from mashlab.core.errors import InsufficientTracksError
from mashlab.core.library import TrackLibrary, Watchdog
from mashlab.core.mashup import category_counts, find_mashups
from mashlab.core.models import BPMTolerance, EnergyCurve, ExtractionOptions, Track
from mashlab.core.set_generator import SetGenerator, SetPreferences
from mashlab.core.upload_queue import UploadQueue
from mashlab.core.worker_pool import WorkerPool, detect_optimal_concurrency
from mashlab.utils.folders import folder_of
from mashlab.utils.logger import setup_logging
from mashlab.utils.scanner import load_inputs


def _open_database(config: MashlabConfig) -> Database:
    db = Database(config.cache.database)
    db.connect()
    db.initialize_schema()
    return db


@contextmanager
def _library_session(config: MashlabConfig) -> Iterator[tuple[TrackLibrary, Database]]:
    """Wire cache, pool, queue and library; tear them down afterwards."""
    db = _open_database(config)
    cache = AnalysisCache(db.cache, config.cache.memory_limit, config.cache.max_age_days)
    extractor = FeatureExtractor(
        ExtractionOptions(
            mode=config.analysis.mode,
            segment_density=config.analysis.segment_density,
            beat_storage=config.analysis.beat_storage,
            target_sample_rate=config.analysis.target_sample_rate,
        )
    )
    pool = WorkerPool(extractor.extract_input, config.pool.max_workers, config.pool.max_restarts)
    concurrency = detect_optimal_concurrency(
        force=config.pool.force_concurrency, cap=config.pool.max_concurrency_cap
    )
    library = TrackLibrary(
        AnalysisService(pool, cache, config.pool.environment),
        UploadQueue(max_concurrent=concurrency),
        grace_seconds=config.watchdog.grace_seconds,
    )
    watchdog = Watchdog(library, config.watchdog.interval_seconds)
    watchdog.start()
    try:
        yield library, db
    finally:
        watchdog.stop()
        library.queue.close()
        pool.shutdown()
        db.close()


def _analyze_paths(library: TrackLibrary, paths: list[Path]) -> int:
    """Analyze ``paths`` into ``library``. Returns the number of admitted files."""
    inputs = load_inputs(paths)
    if not inputs:
        print("No audio files found.", file=sys.stderr)
        return 0
    try:
        library.add_files(inputs)
    except KeyboardInterrupt:
        removed = library.cancel_analysis()
        print(f"\nCancelled, {removed} analyses dropped.", file=sys.stderr)
        raise
    return len(inputs)


def _print_track_table(tracks: list[Track]) -> None:
    print(f"{'Track':<40} {'Folder':<16} {'BPM':>7} {'Key':<5} {'Energy':>6} {'Conf':>5}")
    print("-" * 84)
    for track in tracks:
        if track.error is not None:
            print(f"{track.name[:40]:<40} {folder_of(track)[:16]:<16} ERROR: {track.error}")
            continue
        print(
            f"{track.name[:40]:<40} {folder_of(track)[:16]:<16} "
            f"{track.bpm:>7.1f} {track.key:<5} {track.energy:>6.2f} {track.confidence:>5.2f}"
        )


# ========== Commands ==========


def cmd_analyze(args: argparse.Namespace, config: MashlabConfig) -> int:
    """Analyze files and folders, print the library and save its snapshot."""
    with _library_session(config) as (library, db):
        if not _analyze_paths(library, args.paths):
            return 1
        _print_track_table(library.tracks)

        stats = library.service.get_stats()
        print()
        print(f"Analyzed:     {stats.total}")
        print(f"Successful:   {stats.successful}")
        print(f"Failed:       {stats.failed}")
        print(f"Cache hits:   {stats.cache_hits} ({stats.cache_hit_rate:.0%})")
        print(f"Average time: {stats.average_time:.2f}s")

        if args.save:
            db.snapshots.save_all(library.snapshot())
            print(f"Saved {len(library.analyzed_tracks())} tracks")
    return 0


def cmd_mashups(args: argparse.Namespace, config: MashlabConfig) -> int:
    """Rank compatible pairs."""
    with _library_session(config) as (library, _):
        if not _analyze_paths(library, args.paths):
            return 1
        folder1, folder2 = args.folder or (None, None)
        report = find_mashups(
            library.tracks,
            tolerance=BPMTolerance(args.tolerance or config.mashup.bpm_tolerance.value),
            min_score=config.mashup.min_score if args.min_score is None else args.min_score,
            require_key_compatibility=args.key_compatible or config.mashup.require_key_compatibility,
            cross_folder_only=args.cross_folder,
            folder1=folder1,
            folder2=folder2,
        )

    print(f"{len(report.candidates)} mashups ({report.comparisons} comparisons, {report.skipped} skipped)")
    counts = category_counts(report.candidates)
    print("  " + ", ".join(f"{category.value}: {count}" for category, count in counts.items()))
    print()
    for candidate in report.candidates[: args.top]:
        print(
            f"{candidate.score:.2f}  {candidate.track1.name}  +  {candidate.track2.name}\n"
            f"      {candidate.reason} | {candidate.match_badge.value}, "
            f"{candidate.mix_difficulty.value}, pitch {candidate.pitch_adjust_percent:.1f}%"
        )
    return 0


def cmd_set(args: argparse.Namespace, config: MashlabConfig) -> int:
    """Generate a set from the analyzed files."""
    preferences = SetPreferences(
        duration_minutes=args.minutes or config.set.duration_minutes,
        energy_curve=EnergyCurve(args.curve) if args.curve else config.set.energy_curve,
        prefer_harmonic_mixing=config.set.prefer_harmonic_mixing,
        avoid_back_to_back_folder=config.set.avoid_back_to_back_folder,
    )
    generator = SetGenerator(preferences, random.Random(args.seed))

    with _library_session(config) as (library, _):
        if not _analyze_paths(library, args.paths):
            return 1
        try:
            generated = generator.generate(library.tracks)
        except InsufficientTracksError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    print(f"Set: {len(generated.tracks)} tracks, {generated.total_duration / 60:.1f} min, "
          f"average transition {generated.average_score:.2f}")
    print()
    print(f"  1. {generated.tracks[0].name} ({generated.tracks[0].bpm:.0f} BPM, {generated.tracks[0].key})")
    for position, transition in enumerate(generated.transitions, start=2):
        track = transition.to_track
        marker = "" if transition.key_compatible else " [key clash]"
        print(f"     mix {transition.mix_point}, score {transition.score:.2f}{marker}")
        print(f"{position:>3}. {track.name} ({track.bpm:.0f} BPM, {track.key})")
    return 0


def cmd_duplicates(args: argparse.Namespace, config: MashlabConfig) -> int:
    """Report duplicate groups."""
    with _library_session(config) as (library, _):
        if not _analyze_paths(library, args.paths):
            return 1
        groups = DuplicateChecker().find_duplicates(library.tracks)

    if not groups:
        print("No duplicates found.")
        return 0
    for group in groups:
        print(f"[{group.kind.value}] {group.base}")
        for track in group.tracks:
            print(f"    {track.name} ({track.bpm:.1f} BPM, {track.key})")
    return 0


def cmd_cache(args: argparse.Namespace, config: MashlabConfig) -> int:
    """Cache maintenance."""
    db = _open_database(config)
    try:
        cache = AnalysisCache(db.cache, config.cache.memory_limit, config.cache.max_age_days)
        if args.action == "stats":
            stats = cache.stats()
            print("Mashlab Analysis Cache")
            print("=" * 40)
            print(f"Database:          {config.cache.database}")
            print(f"Cached results:    {stats.durable_entries:,}")
            print(f"Max age:           {config.cache.max_age_days} days")
        elif args.action == "cleanup":
            deleted = cache.cleanup(args.days)
            print(f"Removed {deleted} expired entries.")
        elif args.action == "clear":
            if not args.force:
                response = input("Clear all cached analysis results? [y/N] ")
                if response.lower() != "y":
                    print("Cancelled.")
                    return 0
            cache.clear()
            print("Cache cleared.")
    finally:
        db.close()
    return 0


def _add_paths_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("paths", nargs="+", type=Path, help="Audio files or folders")


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="mashlab",
        description="BPM/key analysis, mashup discovery and set building for DJs",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: search standard locations)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # analyze command
    analyze_parser = subparsers.add_parser("analyze", help="Analyze files and folders")
    _add_paths_argument(analyze_parser)
    analyze_parser.add_argument(
        "--save",
        action="store_true",
        help="Save the analyzed library snapshot",
    )
    analyze_parser.set_defaults(func=cmd_analyze)

    # mashups command
    mashups_parser = subparsers.add_parser("mashups", help="Find compatible pairs")
    _add_paths_argument(mashups_parser)
    mashups_parser.add_argument(
        "--tolerance", "-t",
        choices=[t.value for t in BPMTolerance],
        default=None,
        help="BPM tolerance (default: from config)",
    )
    mashups_parser.add_argument(
        "--min-score",
        type=float,
        default=None,
        help="Minimum composite score (default: from config)",
    )
    mashups_parser.add_argument(
        "--key-compatible",
        action="store_true",
        help="Only keep same, adjacent or relative keys",
    )
    mashups_parser.add_argument(
        "--cross-folder",
        action="store_true",
        help="Only pair tracks from different folders",
    )
    mashups_parser.add_argument(
        "--folder",
        nargs=2,
        metavar=("FOLDER1", "FOLDER2"),
        help="Only pair tracks between these two folders",
    )
    mashups_parser.add_argument(
        "--top",
        type=int,
        default=20,
        help="Number of pairs to print (default: 20)",
    )
    mashups_parser.set_defaults(func=cmd_mashups)

    # set command
    set_parser = subparsers.add_parser("set", help="Generate a DJ set")
    _add_paths_argument(set_parser)
    set_parser.add_argument(
        "--minutes", "-m",
        type=float,
        default=None,
        help="Target set length in minutes (default: from config)",
    )
    set_parser.add_argument(
        "--curve", "-c",
        choices=[c.value for c in EnergyCurve],
        default=None,
        help="Energy curve (default: from config)",
    )
    set_parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for reproducible sets",
    )
    set_parser.set_defaults(func=cmd_set)

    # duplicates command
    duplicates_parser = subparsers.add_parser("duplicates", help="Find duplicate tracks")
    _add_paths_argument(duplicates_parser)
    duplicates_parser.set_defaults(func=cmd_duplicates)

    # cache command
    cache_parser = subparsers.add_parser("cache", help="Analysis cache maintenance")
    cache_parser.add_argument("action", choices=["stats", "cleanup", "clear"])
    cache_parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Age limit for cleanup (default: from config)",
    )
    cache_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Skip confirmation",
    )
    cache_parser.set_defaults(func=cmd_cache)

    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    setup_logging(config.logging)
    logging.debug(f"[CLI] Running {args.command}")

    try:
        return args.func(args, config)
    except KeyboardInterrupt:
        return 130
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
