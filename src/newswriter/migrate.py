"""Maintenance commands for article directories written by older releases."""

from __future__ import annotations

import argparse
import logging
import sys
from collections import defaultdict
from pathlib import Path
from typing import Callable, Dict, List, Optional

from newswriter.articlestore import extract_hash, extract_source_url, url_hash

logger = logging.getLogger(__name__)

Confirm = Callable[[Path], bool]


def _markdown_files(root: Path) -> List[Path]:
    return sorted(path for path in root.rglob("*.md") if path.is_file())


def add_hashes(root: Path | str) -> List[Path]:
    """Append the URL hash to article filenames that do not carry one yet.

    Returns the new paths of renamed files.  Files without a ``source_url`` in
    their frontmatter, or that already end in a hash suffix, are left alone.
    """

    renamed: List[Path] = []
    for path in _markdown_files(Path(root)):
        if extract_hash(path.name):
            logger.debug("File %s already has hash, skipping", path.name)
            continue

        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("Error reading %s: %s", path, exc)
            continue

        source_url = extract_source_url(text)
        if not source_url:
            logger.info("No source_url found in %s, skipping", path)
            continue

        target = path.with_name(f"{path.stem}-{url_hash(source_url)}.md")
        logger.info("Renaming %s -> %s", path.name, target.name)
        path.rename(target)
        renamed.append(target)

    return renamed


def ask_confirmation(path: Path) -> bool:
    """Prompt on stdin until the user answers yes or no; the default is no."""

    while True:
        try:
            answer = input(f"  DELETE {path.name}? [y/N]: ")
        except EOFError:
            return False
        answer = answer.strip().lower()
        if answer in {"y", "yes"}:
            return True
        if answer in {"", "n", "no"}:
            return False
        print("  Please enter y or n.")


def find_duplicates(root: Path | str) -> Dict[str, List[Path]]:
    """Group article files by hash suffix, keeping only groups with duplicates."""

    groups: Dict[str, List[Path]] = defaultdict(list)
    for path in _markdown_files(Path(root)):
        digest = extract_hash(path.name)
        if digest:
            groups[digest].append(path)
    return {digest: paths for digest, paths in groups.items() if len(paths) > 1}


def remove_duplicates(root: Path | str, confirm: Optional[Confirm] = None) -> List[Path]:
    """Delete all but the first file of every duplicate group after confirmation."""

    confirm = confirm or ask_confirmation
    removed: List[Path] = []

    for digest, paths in sorted(find_duplicates(root).items()):
        print(f"\nFound {len(paths)} duplicates with hash {digest}:")
        keep, *duplicates = paths
        print(f"  KEEP: {keep.name}")

        for path in duplicates:
            if not confirm(path):
                print(f"  SKIP: {path.name}")
                continue
            try:
                path.unlink()
            except OSError as exc:
                logger.error("Error removing %s: %s", path, exc)
                continue
            removed.append(path)
            print(f"  REMOVED: {path.name}")

    print(f"\nRemoved {len(removed)} duplicate files")
    return removed


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="news-writer-migrate",
        description="Maintain article directories created by news-writer.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    add = subparsers.add_parser("add-hashes", help="Append URL hashes to article filenames")
    add.add_argument("directory", type=Path)

    dedupe = subparsers.add_parser("remove-duplicates", help="Delete articles sharing a URL hash")
    dedupe.add_argument("directory", type=Path)

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    if not args.directory.is_dir():
        logging.error("Articles directory not found: %s", args.directory)
        return 2

    if args.command == "add-hashes":
        renamed = add_hashes(args.directory)
        logging.info("Renamed %d files", len(renamed))
    else:
        remove_duplicates(args.directory)
    return 0


if __name__ == "__main__":
    sys.exit(main())
