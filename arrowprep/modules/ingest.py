"""
Dataset ingestion module: image records, size probing and the
positive/negative split of merged annotations.
"""

import io
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import requests
from PIL import Image
from tqdm import tqdm

from ..parsers.base import AnnotatedImage, Box
from .merge import BoxMerger

logger = logging.getLogger("arrowprep.ingest")

ImageSize = Tuple[int, int]


def sanitize_name(name: str) -> str:
    """Output file stem for an image name."""
    return name.replace(" ", "_")


def image_name(image_id: str, strip_extension: bool = False) -> str:
    """Last path or URL segment of an image identifier."""
    name = image_id.rstrip("/").split("/")[-1]
    if strip_extension and "." in name:
        name = name.rsplit(".", 1)[0]
    return name


@dataclass
class ImageRecord:
    """One image ready to be written out."""
    image_id: str
    name: str
    width: int
    height: int
    boxes: List[Box] = field(default_factory=list)
    category: str = "arrowhead"

    @property
    def sanitized_name(self) -> str:
        return sanitize_name(self.name)


@dataclass
class Dataset:
    """Merged positive boxes per image plus negative image identifiers."""
    positives: Dict[str, List[Box]] = field(default_factory=dict)
    negatives: List[str] = field(default_factory=list)

    @property
    def num_positive_boxes(self) -> int:
        return sum(len(boxes) for boxes in self.positives.values())

    def add_negatives(self, image_ids: Iterable[str]) -> None:
        """Append negatives, skipping ones already known."""
        known = set(self.negatives) | set(self.positives)
        for image_id in image_ids:
            if image_id not in known:
                self.negatives.append(image_id)
                known.add(image_id)


def build_dataset(
    annotated: Dict[str, AnnotatedImage],
    merger: Optional[BoxMerger] = None,
    extra_negatives: Iterable[str] = (),
) -> Dataset:
    """
    Reduce annotator runs to final boxes and split positives from negatives.

    Args:
        annotated: Annotator runs per image, in input order
        merger: Merger for multi-annotator input; None trusts every box of
            every run as-is
        extra_negatives: Negative image identifiers from a separate source

    Returns:
        Dataset with images receiving no boxes listed as negatives first,
        followed by the extra negatives
    """
    dataset = Dataset()

    for image_id, image in annotated.items():
        if merger is not None:
            boxes = merger.merge(image.runs)
        else:
            boxes = [box for run in image.runs for box in run]

        if boxes:
            dataset.positives[image_id] = boxes
        else:
            dataset.negatives.append(image_id)

    dataset.add_negatives(extra_negatives)

    logger.info(
        f"Dataset: {len(dataset.positives)} positive images with "
        f"{dataset.num_positive_boxes} boxes, {len(dataset.negatives)} negative images"
    )
    return dataset


class ImageSizeProbe:
    """Looks up pixel dimensions of local or http(s) hosted images."""

    def __init__(
        self,
        url_template: Optional[str] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize probe.

        Args:
            url_template: Location template with a "{name}" placeholder for
                the last segment of the identifier; None probes identifiers
                as given
            timeout: HTTP timeout in seconds
        """
        self.url_template = url_template
        self.timeout = timeout
        self._local = threading.local()
        self._cache: Dict[str, Optional[ImageSize]] = {}

    def locate(self, image_id: str) -> str:
        if self.url_template:
            return self.url_template.format(name=image_name(image_id))
        return image_id

    def probe(self, image_id: str) -> Optional[ImageSize]:
        """
        Get (width, height) of an image.

        Returns:
            Image size, or None if the image cannot be read
        """
        if image_id in self._cache:
            return self._cache[image_id]

        location = self.locate(image_id)
        try:
            if location.startswith(("http://", "https://")):
                size = self._probe_remote(location)
            else:
                with Image.open(location) as img:
                    size = img.size
        except (OSError, ValueError, requests.RequestException) as e:
            logger.debug(f"Could not read size of {location}: {e}")
            size = None

        self._cache[image_id] = size
        return size

    @property
    def session(self) -> requests.Session:
        """HTTP session of the calling thread."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
        return session

    def _probe_remote(self, url: str) -> ImageSize:
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        with Image.open(io.BytesIO(response.content)) as img:
            return img.size

    def probe_many(
        self,
        image_ids: Sequence[str],
        workers: int = 1,
        desc: str = "Probing images",
    ) -> Dict[str, Optional[ImageSize]]:
        """
        Probe several images, optionally in parallel.

        Returns:
            Sizes keyed by identifier, in input order
        """
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                sizes = list(tqdm(
                    executor.map(self.probe, image_ids),
                    total=len(image_ids),
                    desc=desc,
                ))
        else:
            sizes = [self.probe(image_id) for image_id in tqdm(image_ids, desc=desc)]

        return dict(zip(image_ids, sizes))


def list_images(folder: Union[str, Path]) -> List[str]:
    """
    List files in an image folder, sorted by name.

    Raises:
        FileNotFoundError: If the folder does not exist
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise FileNotFoundError(f"Image folder not found: {folder}")

    return [
        str(path) for path in sorted(folder.iterdir())
        if path.is_file() and not path.name.startswith(".")
    ]
