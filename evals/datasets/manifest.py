"""
Dataset Manifest - Recorded digests and line counts for every dataset.

The manifest file maps dataset name -> {file, sha256, line_count} and
carries a whole-manifest digest that tags every report. Two reports are
only comparable when their manifest digests match.

Usage:
    python -m evals.datasets.manifest                    # Rebuild for every *.jsonl
    python -m evals.datasets.manifest core30 fuzz200     # Rebuild named datasets
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from core.config import settings
from core.domain.fingerprinting import compute_content_hash, compute_file_digest, count_lines


class ManifestEntry(BaseModel):
    """Recorded identity of one dataset file."""

    file: str
    sha256: str
    line_count: int


class Manifest(BaseModel):
    """All recorded datasets plus the derived whole-manifest digest."""

    datasets: Dict[str, ManifestEntry] = Field(default_factory=dict)
    manifest_hash: Optional[str] = None

    def compute_digest(self) -> str:
        """Digest over the dataset entries only, independent of key order."""
        return compute_content_hash(
            {name: entry.model_dump() for name, entry in self.datasets.items()}
        )

    @property
    def digest(self) -> str:
        return self.manifest_hash or self.compute_digest()


def load_manifest(path: Path) -> Manifest:
    """Load a manifest file. The stored digest is recomputed if absent."""
    with open(path, "r", encoding="utf-8") as f:
        manifest = Manifest.model_validate(json.load(f))
    if manifest.manifest_hash is None:
        manifest.manifest_hash = manifest.compute_digest()
    return manifest


def build_manifest(datasets_dir: Path, names: Optional[List[str]] = None) -> Manifest:
    """
    Build a manifest from the dataset files on disk.

    Args:
        datasets_dir: Directory holding <name>.jsonl files
        names: Datasets to include (default: every *.jsonl, sorted)

    Returns:
        Manifest with digests, line counts and whole-manifest digest
    """
    if names is None:
        names = sorted(p.stem for p in datasets_dir.glob("*.jsonl"))

    manifest = Manifest()
    for name in names:
        path = datasets_dir / f"{name}.jsonl"
        if not path.exists():
            raise FileNotFoundError(f"Dataset file not found: {path}")
        manifest.datasets[name] = ManifestEntry(
            file=path.name,
            sha256=compute_file_digest(path),
            line_count=count_lines(path),
        )
    manifest.manifest_hash = manifest.compute_digest()
    return manifest


def write_manifest(manifest: Manifest, path: Path) -> Path:
    """Write the manifest as indented JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(manifest.model_dump_json(indent=2))
        f.write("\n")
    return path


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="evals.datasets.manifest",
        description="Rebuild the dataset integrity manifest"
    )
    parser.add_argument(
        "datasets",
        nargs="*",
        help="Dataset names to include (default: all *.jsonl files)"
    )
    parser.add_argument(
        "--datasets-dir",
        type=Path,
        default=settings.datasets_dir,
        help="Directory holding dataset files"
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=settings.manifest_path,
        help="Manifest file to write"
    )

    args = parser.parse_args()

    try:
        manifest = build_manifest(args.datasets_dir, args.datasets or None)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    write_manifest(manifest, args.output)

    print(f"Wrote {args.output}")
    for name, entry in manifest.datasets.items():
        print(f"  {name}: {entry.line_count} lines, sha256 {entry.sha256[:16]}...")
    print(f"Manifest hash: {manifest.manifest_hash}")


if __name__ == "__main__":
    main()
