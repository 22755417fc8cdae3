"""
Base Parser

Box geometry and the abstract base class for annotation parsers.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Union

Number = Union[int, float]


@dataclass(frozen=True)
class Box:
    """Axis-aligned bounding box in pixel coordinates."""
    xmin: Number
    ymin: Number
    xmax: Number
    ymax: Number

    @property
    def width(self) -> Number:
        return self.xmax - self.xmin

    @property
    def height(self) -> Number:
        return self.ymax - self.ymin

    @property
    def area(self) -> Number:
        return self.width * self.height

    @property
    def is_valid(self) -> bool:
        """A box is valid only with strictly positive width and height."""
        return self.xmax > self.xmin and self.ymax > self.ymin

    def clamp(self, width: Number, height: Number) -> "Box":
        """Clamp to the image canvas [0, width] x [0, height]."""
        return Box(
            xmin=max(self.xmin, 0),
            ymin=max(self.ymin, 0),
            xmax=min(self.xmax, width),
            ymax=min(self.ymax, height),
        )

    @classmethod
    def from_circle(cls, radius: float, center_x: float, center_y: float) -> "Box":
        """
        Bounding box of a circle, rounded outward to whole pixels.

        Args:
            radius: Circle radius
            center_x: Circle center x
            center_y: Circle center y
        """
        return cls(
            xmin=math.floor(center_x - radius),
            ymin=math.floor(center_y - radius),
            xmax=math.ceil(center_x + radius),
            ymax=math.ceil(center_y + radius),
        )

    @classmethod
    def from_corners(cls, x1: Number, y1: Number, x2: Number, y2: Number) -> "Box":
        """Box from a (min corner, max corner) pair, taken as given."""
        return cls(xmin=x1, ymin=y1, xmax=x2, ymax=y2)

    @classmethod
    def full_image(cls, width: int, height: int) -> "Box":
        """Box covering a whole image."""
        return cls(xmin=0, ymin=0, xmax=width, ymax=height)


# One annotator's boxes for one image
AnnotatorRun = List[Box]


@dataclass
class AnnotatedImage:
    """All annotator runs submitted for a single image."""
    image_id: str
    runs: List[AnnotatorRun] = field(default_factory=list)

    @property
    def num_runs(self) -> int:
        return len(self.runs)

    @property
    def num_boxes(self) -> int:
        return sum(len(run) for run in self.runs)

    def add_run(self, boxes: AnnotatorRun) -> None:
        self.runs.append(list(boxes))


class BaseParser(ABC):
    """Abstract base class for annotation parsers."""

    @abstractmethod
    def parse_file(self, ann_path: Path) -> Dict[str, AnnotatedImage]:
        """
        Parse an annotation file.

        Args:
            ann_path: Path to annotation file

        Returns:
            Mapping of image identifier to its annotator runs, in file order
        """
        pass

    def parse_files(self, ann_paths: List[Path]) -> Dict[str, AnnotatedImage]:
        """
        Parse several annotation files into one mapping.

        Runs for an image that appears in more than one file are appended
        in the order the files are given.
        """
        merged: Dict[str, AnnotatedImage] = {}
        for path in ann_paths:
            for image_id, annotated in self.parse_file(path).items():
                target = merged.setdefault(image_id, AnnotatedImage(image_id=image_id))
                target.runs.extend(annotated.runs)
        return merged
