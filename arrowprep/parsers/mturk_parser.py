"""
Mechanical Turk CSV Annotation Parser

Parses the results CSV downloaded from a crowdsourcing batch. Each row is
one worker's answer for one image; answer columns hold one arrow each as
two circles:

    (head_radius,head_cx,head_cy),(tail_radius,tail_cx,tail_cy)

Only the head circle is turned into a box. Every row becomes one
annotator run of the image it names.
"""

import csv
import logging
import math
import re
from pathlib import Path
from typing import Dict, List, Optional

from .base import AnnotatedImage, BaseParser, Box

logger = logging.getLogger("arrowprep.parsers.mturk")


def normalize_header(name: str) -> str:
    """
    Normalize a CSV header the way symbolized headers are built:
    lower-case, punctuation dropped, whitespace runs turned into "_".

    "Input.image_url" -> "inputimage_url", "Answer.arrow_1" -> "answerarrow_1"
    """
    name = re.sub(r"[^\s\w]+", "", name.lower()).strip()
    return re.sub(r"\s+", "_", name)


def parse_arrow_cell(value: str) -> Optional[Box]:
    """
    Parse a single answer cell into the head box.

    Returns None for blank or malformed cells.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    parts = value.split("),(")
    head = parts[0].lstrip("(").rstrip(")")

    try:
        radius, center_x, center_y = (float(v) for v in head.split(","))
        if not all(math.isfinite(v) for v in (radius, center_x, center_y)):
            raise ValueError("non-finite circle")
        return Box.from_circle(radius, center_x, center_y)
    except (ValueError, OverflowError):
        logger.debug(f"Malformed arrow cell: {value!r}")
        return None


class MTurkCSVParser(BaseParser):
    """Parser for crowdsourced arrow annotation results."""

    def __init__(
        self,
        image_column: str = "Input.image_url",
        answer_prefix: str = "Answer.arrow_",
        encoding: str = "utf-8-sig",
    ):
        """
        Initialize parser.

        Args:
            image_column: Column holding the image identifier
            answer_prefix: Prefix shared by all arrow answer columns
            encoding: File encoding (default: "utf-8-sig" for BOM handling)
        """
        self.image_column = normalize_header(image_column)
        self.answer_prefix = normalize_header(answer_prefix)
        self.encoding = encoding

    def parse_file(self, ann_path: Path) -> Dict[str, AnnotatedImage]:
        """
        Parse a results CSV file.

        Args:
            ann_path: Path to the CSV file

        Returns:
            Mapping of image identifier to annotator runs, in row order
        """
        results: Dict[str, AnnotatedImage] = {}

        with open(ann_path, "r", encoding=self.encoding, newline="") as f:
            reader = csv.reader(f)
            try:
                header = [normalize_header(h) for h in next(reader)]
            except StopIteration:
                logger.warning(f"Empty annotation file: {ann_path}")
                return results

            if self.image_column not in header:
                raise ValueError(
                    f"Column {self.image_column!r} not found in {ann_path}"
                )

            image_idx = header.index(self.image_column)
            answer_idx = [
                i for i, name in enumerate(header)
                if name.startswith(self.answer_prefix)
            ]

            for row in reader:
                if len(row) <= image_idx or not row[image_idx].strip():
                    continue

                image_id = row[image_idx].strip()
                boxes = self._parse_answers(row, answer_idx)

                annotated = results.setdefault(image_id, AnnotatedImage(image_id=image_id))
                annotated.add_run(boxes)

        logger.info(
            f"Parsed {sum(a.num_runs for a in results.values())} annotator runs "
            f"for {len(results)} images from {Path(ann_path).name}"
        )
        return results

    def _parse_answers(self, row: List[str], answer_idx: List[int]) -> List[Box]:
        boxes = []
        for i in answer_idx:
            if i >= len(row):
                continue
            box = parse_arrow_cell(row[i])
            if box is not None:
                boxes.append(box)
        return boxes
