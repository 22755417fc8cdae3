"""
Modules of the dataset preparation pipeline.
"""

from .ingest import Dataset, ImageRecord, ImageSizeProbe, build_dataset, list_images
from .label_writer import ManifestWriter, VOCWriter
from .merge import BoxMerger, box_overlap, find_best_match
from .patches import BackgroundSampler
from .split import (
    Capacities,
    Partition,
    PartitionAssigner,
    assign,
    negative_patch_count,
    patches_per_image,
)

__all__ = [
    "Dataset",
    "ImageRecord",
    "ImageSizeProbe",
    "build_dataset",
    "list_images",
    "ManifestWriter",
    "VOCWriter",
    "BoxMerger",
    "box_overlap",
    "find_best_match",
    "BackgroundSampler",
    "Capacities",
    "Partition",
    "PartitionAssigner",
    "assign",
    "negative_patch_count",
    "patches_per_image",
]
