"""
Output writers: PASCAL VOC XML annotation records and partition manifests.
"""

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional, Union

from .ingest import ImageRecord
from .split import Partition

logger = logging.getLogger("arrowprep.label_writer")


def format_coord(value: Union[int, float]) -> str:
    """Render a coordinate, dropping a zero fractional part."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


class ManifestWriter:
    """Appends image names to per-partition manifest files."""

    def __init__(
        self,
        output_dir: Path,
        class_name: Optional[str] = "arrowhead",
        trainval: bool = True,
        aggregate: bool = False,
        positive_label: str = "1",
        negative_label: str = "-1",
    ):
        """
        Initialize writer.

        Args:
            output_dir: Directory for manifest files
            class_name: Prefix of the labelled manifests ("<class>_train.txt");
                None writes labelled lines to "train.txt" etc.
            trainval: Also list train and val lines in a trainval manifest
            aggregate: Also write bare names to "train.txt" etc.
            positive_label: Label written after positive image names
            negative_label: Label written after negative image names
        """
        if class_name is None and aggregate:
            raise ValueError("Aggregate manifests need a class name for the labelled manifests")

        self.output_dir = Path(output_dir)
        self.class_name = class_name
        self.trainval = trainval
        self.aggregate = aggregate
        self.positive_label = positive_label
        self.negative_label = negative_label

    def _labelled_path(self, split: str) -> Path:
        if self.class_name:
            return self.output_dir / f"{self.class_name}_{split}.txt"
        return self.output_dir / f"{split}.txt"

    def _aggregate_path(self, split: str) -> Path:
        return self.output_dir / f"{split}.txt"

    def manifest_paths(self) -> List[Path]:
        """Every manifest file this writer may produce."""
        splits = [p.value for p in Partition]
        if self.trainval:
            splits.append("trainval")

        paths = [self._labelled_path(s) for s in splits]
        if self.aggregate:
            paths.extend(self._aggregate_path(s) for s in splits)
        return paths

    def reset(self) -> None:
        """Remove manifests left by a previous run."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        for path in self.manifest_paths():
            if path.exists():
                path.unlink()
                logger.debug(f"Removed previous manifest {path}")

    def append(self, partition: Partition, name: str, positive: bool = True) -> None:
        """
        Record an image in a partition.

        Args:
            partition: Partition the image was assigned to
            name: Image name as listed in the manifest
            positive: Whether the image is a positive example
        """
        label = self.positive_label if positive else self.negative_label
        line = f"{name} {label}"

        in_trainval = partition in (Partition.TRAIN, Partition.VALIDATION)

        self._append_line(self._labelled_path(partition.value), line)
        if self.trainval and in_trainval:
            self._append_line(self._labelled_path("trainval"), line)

        if self.aggregate:
            self._append_line(self._aggregate_path(partition.value), name)
            if self.trainval and in_trainval:
                self._append_line(self._aggregate_path("trainval"), name)

    def _append_line(self, path: Path, line: str) -> None:
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")


class VOCWriter:
    """Writes one PASCAL VOC style XML annotation file per image."""

    def __init__(
        self,
        output_dir: Path,
        folder: str = "VOC2020",
        annotator: str = "arrowprep",
        database: str = "UW CSE",
        image_source: str = "google",
        depth: int = 3,
    ):
        self.output_dir = Path(output_dir)
        self.folder = folder
        self.annotator = annotator
        self.database = database
        self.image_source = image_source
        self.depth = depth

    def build(self, record: ImageRecord) -> ET.ElementTree:
        """Build the XML tree of an image record."""
        root = ET.Element("annotation")
        ET.SubElement(root, "filename").text = f"{record.name}.jpg"
        ET.SubElement(root, "folder").text = self.folder

        for box in record.boxes:
            obj = ET.SubElement(root, "object")
            ET.SubElement(obj, "name").text = record.category

            bndbox = ET.SubElement(obj, "bndbox")
            ET.SubElement(bndbox, "xmax").text = format_coord(box.xmax)
            ET.SubElement(bndbox, "xmin").text = format_coord(box.xmin)
            ET.SubElement(bndbox, "ymax").text = format_coord(box.ymax)
            ET.SubElement(bndbox, "ymin").text = format_coord(box.ymin)

            ET.SubElement(obj, "difficult").text = "0"
            ET.SubElement(obj, "occluded").text = "0"
            ET.SubElement(obj, "pose").text = "Unspecified"
            ET.SubElement(obj, "truncated").text = "0"

        ET.SubElement(root, "segmented").text = "0"

        size = ET.SubElement(root, "size")
        ET.SubElement(size, "depth").text = str(self.depth)
        ET.SubElement(size, "height").text = str(record.height)
        ET.SubElement(size, "width").text = str(record.width)

        source = ET.SubElement(root, "source")
        ET.SubElement(source, "annotation").text = self.annotator
        ET.SubElement(source, "database").text = self.database
        ET.SubElement(source, "image").text = self.image_source

        tree = ET.ElementTree(root)
        ET.indent(tree, space="\t")
        return tree

    def write(self, record: ImageRecord) -> Path:
        """
        Write the annotation file of an image record.

        Returns:
            Path of the written file
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        output_path = self.output_dir / f"{record.sanitized_name}.xml"
        self.build(record).write(output_path, encoding="utf-8")
        return output_path
