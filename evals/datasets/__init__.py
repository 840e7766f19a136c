"""
Datasets - Labeled transcript datasets and their integrity manifest.
"""

from .loader import Dataset, DatasetMetadata, Strictness, TestCase, load_dataset, parse_case
from .manifest import Manifest, ManifestEntry, build_manifest, load_manifest, write_manifest
from .integrity import IntegrityValidator

__all__ = [
    "Dataset",
    "DatasetMetadata",
    "Strictness",
    "TestCase",
    "load_dataset",
    "parse_case",
    "Manifest",
    "ManifestEntry",
    "build_manifest",
    "load_manifest",
    "write_manifest",
    "IntegrityValidator",
]
