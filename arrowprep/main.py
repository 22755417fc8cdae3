"""
Main orchestration module for arrowhead dataset preparation.

Each sub-command turns one kind of annotation source into PASCAL VOC
annotation records and train/val/test manifests:

    mturk        crowdsourced CSV, several annotators per image, merged
    json         hand annotations of a single trusted annotator
    cropped      folders of tight positive crops and large negative images
    descriptors  classification lists for positive and negative folders
"""

import logging
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from tqdm import tqdm

from .config import Config, load_config, parse_args
from .modules.ingest import (
    ImageRecord,
    ImageSizeProbe,
    build_dataset,
    image_name,
    list_images,
)
from .modules.label_writer import ManifestWriter, VOCWriter
from .modules.merge import BoxMerger
from .modules.patches import BackgroundSampler
from .modules.split import (
    Capacities,
    PartitionAssigner,
    negative_patch_count,
    patches_per_image,
)
from .parsers import JSONAnnotationParser, MTurkCSVParser
from .parsers.base import Box
from .utils import save_report, setup_logging

logger = logging.getLogger("arrowprep")


@dataclass
class BuildStats:
    """Statistics from a build run."""
    command: str
    images_written: int = 0
    images_skipped: int = 0
    images_unassigned: int = 0
    boxes_accepted: int = 0
    boxes_rejected: int = 0
    positive_totals: Dict[str, float] = field(default_factory=dict)
    negative_totals: Dict[str, float] = field(default_factory=dict)
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class DatasetBuilder:
    """Builds annotation records and partition manifests from one source."""

    REPORT_FILE = "build_report.json"

    def __init__(
        self,
        config: Config,
        probe: Optional[ImageSizeProbe] = None,
        sampler: Optional[BackgroundSampler] = None,
    ):
        self.config = config
        self.output_dir = Path(config.output.output_dir)

        # Annotation identifiers may need the URL template; folder listings never do
        self.probe = probe or ImageSizeProbe(url_template=config.input.image_url_template)
        self.local_probe = probe or ImageSizeProbe()

        if sampler is None:
            sampler = BackgroundSampler(
                patch_size=config.negatives.patch_size,
                seed=config.negatives.seed,
            )
            if config.negatives.seed is not None:
                logger.info(f"Background patch seed: {config.negatives.seed}")
        self.sampler = sampler
        self.voc_writer = VOCWriter(
            self.output_dir,
            folder=config.voc.folder,
            annotator=config.voc.annotator,
            database=config.voc.database,
            image_source=config.voc.image_source,
        )

        self.stats = BuildStats(command=config.command)

    def check_inputs(self) -> None:
        """
        Check that the inputs of the configured command exist.

        Raises:
            ValueError: If the command is unknown or an input is not configured
            FileNotFoundError: If a configured input is missing
        """
        inputs = self.config.input
        required = {
            "mturk": [(inputs.csv_file, "Annotation CSV")],
            "json": [(inputs.annotations_json, "Annotation JSON"), (inputs.images_dir, "Image folder")],
            "cropped": [(inputs.positives_dir, "Positive folder"), (inputs.negatives_dir, "Negative folder")],
            "descriptors": [(inputs.positives_dir, "Positive folder"), (inputs.negatives_dir, "Negative folder")],
        }
        if self.config.command not in required:
            raise ValueError(f"Unknown command: {self.config.command}")

        for path, what in required[self.config.command]:
            self._require(path, what)
        if self.config.command == "mturk" and inputs.negatives_dir is not None:
            self._require(inputs.negatives_dir, "Negative folder")

    def run(self) -> BuildStats:
        """Run the pipeline selected by the config command."""
        pipelines = {
            "mturk": self.build_mturk,
            "json": self.build_json,
            "cropped": self.build_cropped,
            "descriptors": self.build_descriptors,
        }
        self.check_inputs()
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.stats.start_time = datetime.now().isoformat()
        pipelines[self.config.command]()
        self.stats.end_time = datetime.now().isoformat()

        self.log_summary()
        return self.stats

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    def build_mturk(self) -> None:
        """Merge crowdsourced annotations and write VOC records and manifests."""
        csv_file = self._require(self.config.input.csv_file, "Annotation CSV")
        extra_negatives = self._optional_listing(self.config.input.negatives_dir)

        annotated = MTurkCSVParser().parse_file(csv_file)
        merger = BoxMerger(threshold=self.config.merge.overlap_threshold)
        dataset = build_dataset(annotated, merger, extra_negatives=extra_negatives)

        manifests = self._manifest_writer(trainval=True, aggregate=False)
        capacities = self._positive_capacities(len(dataset.positives))

        positives = self._positive_records(
            self._sized(list(dataset.positives), self.probe, "Positive images"),
            dataset.positives,
        )
        self.stats.positive_totals = self._emit(positives, capacities, manifests, positive=True)

        local = set(extra_negatives)
        annotated_negatives = [n for n in dataset.negatives if n not in local]
        sized_negatives = self._chain(
            self._sized(annotated_negatives, self.probe, "Negative images"),
            self._sized([n for n in dataset.negatives if n in local], self.local_probe, "Negative folder"),
        )
        negatives = self._patch_records(
            sized_negatives,
            count=lambda w, h: negative_patch_count(w, h, self.config.negatives.patch_area_divisor),
            local=local,
        )
        self.stats.negative_totals = self._emit(
            negatives,
            capacities.scaled(self.config.split.negative_factor),
            manifests,
            positive=False,
        )

    def build_json(self) -> None:
        """Convert hand annotations; unannotated images become negatives."""
        annotations_json = self._require(self.config.input.annotations_json, "Annotation JSON")
        images_dir = self._require(self.config.input.images_dir, "Image folder")

        annotated = JSONAnnotationParser().parse_file(annotations_json)
        annotated = {str(images_dir / image_id): image for image_id, image in annotated.items()}
        known = {image_name(image_id) for image_id in annotated}

        extra_negatives = [
            path for path in list_images(images_dir)
            if image_name(path) not in known
        ]
        dataset = build_dataset(annotated, merger=None, extra_negatives=extra_negatives)

        manifests = self._manifest_writer(trainval=True, aggregate=True)
        capacities = self._positive_capacities(len(dataset.positives))

        positives = self._positive_records(
            self._sized(list(dataset.positives), self.local_probe, "Positive images"),
            dataset.positives,
        )
        self.stats.positive_totals = self._emit(positives, capacities, manifests, positive=True)

        negatives = (
            (self._record(image_id, w, h, [Box.full_image(w, h)], "background"), 1)
            for image_id, w, h in self._sized(dataset.negatives, self.local_probe, "Negative images")
        )
        self.stats.negative_totals = self._emit(
            negatives,
            capacities.scaled(self.config.split.negative_factor),
            manifests,
            positive=False,
        )

    def build_cropped(self) -> None:
        """Tight positive crops as whole-image boxes plus random background patches."""
        positive_images = list_images(self._require(self.config.input.positives_dir, "Positive folder"))
        negative_images = list_images(self._require(self.config.input.negatives_dir, "Negative folder"))
        logger.info(f"Total positive images: {len(positive_images)}")
        logger.info(f"Total negative images: {len(negative_images)}")

        manifests = self._manifest_writer(trainval=True, aggregate=True)
        capacities = self._positive_capacities(len(positive_images))
        class_name = self.config.voc.class_name

        positives = (
            (self._record(image_id, w, h, [Box.full_image(w, h)], class_name, strip_extension=True), 1)
            for image_id, w, h in self._sized(positive_images, self.local_probe, "Positive images")
        )
        self.stats.positive_totals = self._emit(positives, capacities, manifests, positive=True)

        num_patches = patches_per_image(
            len(positive_images), len(negative_images), self.config.split.negative_factor
        )
        negatives = self._patch_records(
            self._sized(negative_images, self.local_probe, "Negative images"),
            count=lambda w, h: num_patches,
            local=set(negative_images),
        )
        self.stats.negative_totals = self._emit(
            negatives,
            capacities.scaled(self.config.split.negative_factor),
            manifests,
            positive=False,
        )

    def build_descriptors(self) -> None:
        """Labelled image lists (1 positive, 0 negative) without VOC records."""
        positive_images = list_images(self._require(self.config.input.positives_dir, "Positive folder"))
        negative_images = list_images(self._require(self.config.input.negatives_dir, "Negative folder"))
        logger.info(f"Total positive images: {len(positive_images)}")
        logger.info(f"Total negative images: {len(negative_images)}")

        manifests = ManifestWriter(
            self.output_dir,
            class_name=None,
            trainval=False,
            aggregate=False,
            positive_label="1",
            negative_label="0",
        )
        manifests.reset()
        capacities = self._positive_capacities(len(positive_images))

        positives = (
            (self._record(image_id, w, h, [], self.config.voc.class_name), 1)
            for image_id, w, h in self._sized(positive_images, self.local_probe, "Positive images")
        )
        self.stats.positive_totals = self._emit(
            positives, capacities, manifests, positive=True, write_voc=False
        )

        negatives = (
            (self._record(image_id, w, h, [], "background"), 1)
            for image_id, w, h in self._sized(negative_images, self.local_probe, "Negative images")
        )
        self.stats.negative_totals = self._emit(
            negatives,
            capacities.scaled(self.config.split.negative_factor),
            manifests,
            positive=False,
            write_voc=False,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, path: Optional[Path], what: str) -> Path:
        if path is None:
            raise ValueError(f"{what} not configured")
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"{what} not found: {path}")
        return path

    def _optional_listing(self, folder: Optional[Path]) -> List[str]:
        if folder is None:
            return []
        return list_images(self._require(folder, "Negative folder"))

    def _manifest_writer(self, trainval: bool, aggregate: bool) -> ManifestWriter:
        manifests = ManifestWriter(
            self.output_dir,
            class_name=self.config.voc.class_name,
            trainval=trainval,
            aggregate=aggregate,
        )
        manifests.reset()
        return manifests

    def _positive_capacities(self, num_positives: int) -> Capacities:
        """Configured quotas, or the fractional rule when train/val are unset."""
        split = self.config.split
        if split.num_train is None or split.num_val is None:
            base = Capacities.from_fraction(num_positives, split.train_fraction)
            return Capacities(train=base.train, validation=base.validation, test=split.num_test)
        return Capacities(train=split.num_train, validation=split.num_val, test=split.num_test)

    def _chain(self, *iterables: Iterable) -> Iterator:
        for iterable in iterables:
            yield from iterable

    def _sized(
        self,
        image_ids: Sequence[str],
        probe: ImageSizeProbe,
        desc: str,
    ) -> Iterator[Tuple[str, int, int]]:
        """Yield (image_id, width, height), skipping images whose size is unknown."""
        sizes = probe.probe_many(image_ids, workers=self.config.workers, desc=desc)
        for image_id in image_ids:
            size = sizes[image_id]
            if size is None:
                logger.debug(f"Skipping unreadable image: {image_id}")
                self.stats.images_skipped += 1
                continue
            yield image_id, size[0], size[1]

    def _record(
        self,
        image_id: str,
        width: int,
        height: int,
        boxes: List[Box],
        category: str,
        strip_extension: bool = False,
    ) -> ImageRecord:
        return ImageRecord(
            image_id=image_id,
            name=image_name(image_id, strip_extension=strip_extension),
            width=width,
            height=height,
            boxes=boxes,
            category=category,
        )

    def _positive_records(
        self,
        sized: Iterable[Tuple[str, int, int]],
        positives: Dict[str, List[Box]],
    ) -> Iterator[Tuple[ImageRecord, int]]:
        """Clamp merged boxes to the canvas; weight is the number kept."""
        for image_id, width, height in sized:
            accepted = []
            for box in positives[image_id]:
                clamped = box.clamp(width, height)
                if not clamped.is_valid:
                    logger.warning(
                        f"Rejecting box {box} of {image_id}: no area inside {width}x{height}"
                    )
                    self.stats.boxes_rejected += 1
                    continue
                accepted.append(clamped)

            if not accepted:
                logger.warning(f"Skipping {image_id}: every box was rejected")
                self.stats.images_skipped += 1
                continue

            self.stats.boxes_accepted += len(accepted)
            record = self._record(image_id, width, height, accepted, self.config.voc.class_name)
            yield record, len(accepted)

    def _patch_records(
        self,
        sized: Iterable[Tuple[str, int, int]],
        count,
        local: set,
    ) -> Iterator[Tuple[ImageRecord, int]]:
        """Negative records with random background boxes; weight is the patch count."""
        for image_id, width, height in sized:
            num_patches = count(width, height)
            boxes = self.sampler.sample_many(width, height, num_patches)
            record = self._record(
                image_id, width, height, boxes, "background",
                strip_extension=image_id in local,
            )
            yield record, num_patches

    def _emit(
        self,
        records: Iterable[Tuple[ImageRecord, float]],
        capacities: Capacities,
        manifests: ManifestWriter,
        positive: bool,
        write_voc: bool = True,
    ) -> Dict[str, float]:
        """
        Write records and place them in partitions, in input order.

        Returns:
            Weight placed in each partition
        """
        assigner = PartitionAssigner(capacities)
        kind = "positive" if positive else "negative"

        for record, weight in tqdm(records, desc=f"Writing {kind} images"):
            if write_voc:
                self.voc_writer.write(record)

            partition = assigner.place(record.image_id, weight)
            if partition is None:
                self.stats.images_unassigned += 1
                continue

            manifests.append(partition, record.sanitized_name, positive=positive)
            self.stats.images_written += 1

        totals = assigner.totals.as_dict()
        logger.info(
            f"{kind.capitalize()} counts: train={totals['train']}, "
            f"val={totals['val']}, test={totals['test']}"
        )
        return totals

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def log_summary(self) -> None:
        logger.info(f"Build '{self.stats.command}' complete:")
        logger.info(f"  Images written:   {self.stats.images_written}")
        logger.info(f"  Images skipped:   {self.stats.images_skipped}")
        logger.info(f"  Boxes accepted:   {self.stats.boxes_accepted}")
        logger.info(f"  Boxes rejected:   {self.stats.boxes_rejected}")
        if self.stats.images_unassigned:
            logger.warning(f"  Images over quota: {self.stats.images_unassigned}")

    def save_report(self, output_path: Optional[Path] = None) -> Path:
        """Save build report to JSON file."""
        if output_path is None:
            output_path = self.output_dir / self.REPORT_FILE

        report = {
            "stats": asdict(self.stats),
            "config": {
                "command": self.config.command,
                "output_dir": str(self.config.output.output_dir),
                "overlap_threshold": self.config.merge.overlap_threshold,
                "num_train": self.config.split.num_train,
                "num_val": self.config.split.num_val,
                "num_test": self.config.split.num_test,
                "negative_factor": self.config.split.negative_factor,
                "seed": self.config.negatives.seed,
            },
        }
        save_report(report, output_path)

        logger.info(f"Report saved to: {output_path}")
        return output_path


def print_summary(stats: BuildStats) -> None:
    """Print a summary of the build results."""
    print("\n" + "=" * 50)
    print(f"Build Summary ({stats.command}):")
    print("=" * 50)
    print(f"  Images written:  {stats.images_written}")
    print(f"  Images skipped:  {stats.images_skipped}")
    print(f"  Boxes accepted:  {stats.boxes_accepted}")
    print(f"  Boxes rejected:  {stats.boxes_rejected}")

    for kind, totals in (("Positive", stats.positive_totals), ("Negative", stats.negative_totals)):
        if totals:
            print(
                f"  {kind} train/val/test: "
                f"{totals.get('train', 0)}/{totals.get('val', 0)}/{totals.get('test', 0)}"
            )


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = parse_args(argv)

    try:
        config = load_config(args)
        builder = DatasetBuilder(config)
        builder.check_inputs()
    except (FileNotFoundError, ValueError) as e:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
        logger.error(str(e))
        return 2

    setup_logging(config.output.output_dir, verbose=config.verbose)

    try:
        stats = builder.run()
    except (FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        return 2

    builder.save_report()
    print_summary(stats)
    return 0


if __name__ == "__main__":
    sys.exit(main())
