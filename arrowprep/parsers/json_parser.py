"""
JSON Hand-Annotation Parser

Parses hand annotations stored as a single JSON object:

    {
        "image_name": [
            {"bounds": {"coords": [{"x": 10, "y": 12}, {"x": 40, "y": 44}]}},
            ...
        ]
    }

The two coords are the min and max corners of the box. Hand annotations
come from a single trusted annotator, so every image gets exactly one run.
"""

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, Optional

from .base import AnnotatedImage, BaseParser, Box

logger = logging.getLogger("arrowprep.parsers.json")


class JSONAnnotationParser(BaseParser):
    """Parser for hand annotations keyed by image name."""

    def parse_file(self, ann_path: Path) -> Dict[str, AnnotatedImage]:
        with open(ann_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object in {ann_path}")

        results: Dict[str, AnnotatedImage] = {}
        for image_id, labels in data.items():
            boxes = []
            for label in labels or []:
                box = self._parse_label(label)
                if box is None:
                    logger.debug(f"Skipping malformed label for {image_id}: {label!r}")
                    continue
                boxes.append(box)

            annotated = AnnotatedImage(image_id=image_id)
            annotated.add_run(boxes)
            results[image_id] = annotated

        logger.info(f"Parsed hand annotations for {len(results)} images from {Path(ann_path).name}")
        return results

    def _parse_label(self, label: Any) -> Optional[Box]:
        """Parse a single label object; None unless all four coords are finite numbers."""
        try:
            coords = label["bounds"]["coords"]
            first, second = coords[0], coords[1]
            values = (first["x"], first["y"], second["x"], second["y"])
        except (KeyError, IndexError, TypeError):
            return None

        if not all(_is_coord(v) for v in values):
            return None
        return Box.from_corners(*values)


def _is_coord(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)
