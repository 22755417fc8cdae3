"""
Dataset partitioning module for train/val/test assignment.

Items are placed strictly in input order: train takes items until its
running weight reaches its capacity, then validation, then test. Nothing is
ever moved once placed, so the same ordered input always yields the same
assignment.
"""

import logging
import math
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple

logger = logging.getLogger("arrowprep.split")


class Partition(str, Enum):
    TRAIN = "train"
    VALIDATION = "val"
    TEST = "test"


@dataclass(frozen=True)
class Capacities:
    """Weight quotas per partition; test=None leaves test unbounded."""
    train: float
    validation: float
    test: Optional[float] = None

    def __post_init__(self):
        for name, value in (("train", self.train), ("validation", self.validation), ("test", self.test)):
            if value is not None and value < 0:
                raise ValueError(f"Capacity for {name} must be non-negative, got {value}")

    def scaled(self, factor: float) -> "Capacities":
        """Capacities for negatives, given the negative:positive ratio."""
        return Capacities(
            train=self.train * factor,
            validation=self.validation * factor,
            test=None if self.test is None else self.test * factor,
        )

    @classmethod
    def from_fraction(cls, count: int, fraction: float = 0.45) -> "Capacities":
        """Equal train and val quotas of floor(count * fraction), test takes the rest."""
        quota = math.floor(count * fraction)
        return cls(train=quota, validation=quota)


@dataclass
class PartitionTotals:
    """Running weight placed in each partition."""
    train: float = 0
    validation: float = 0
    test: float = 0

    def as_dict(self) -> Dict[str, float]:
        return {
            Partition.TRAIN.value: self.train,
            Partition.VALIDATION.value: self.validation,
            Partition.TEST.value: self.test,
        }


class PartitionAssigner:
    """Assigns items to partitions in a single sequential pass."""

    def __init__(self, capacities: Capacities):
        """
        Initialize assigner.

        Args:
            capacities: Weight quotas for each partition
        """
        self.capacities = capacities
        self.totals = PartitionTotals()
        self._assignments: "OrderedDict[str, Partition]" = OrderedDict()

    @property
    def assignments(self) -> Dict[str, Partition]:
        """Assignments made so far, in placement order."""
        return dict(self._assignments)

    def place(self, item_id: str, weight: float = 1) -> Optional[Partition]:
        """
        Place one item.

        Args:
            item_id: Item identifier
            weight: Weight added to the receiving partition's running total

        Returns:
            The partition the item went to, or None when a bounded test
            partition is already full
        """
        if item_id in self._assignments:
            raise ValueError(f"Item already assigned: {item_id}")

        if self.totals.train < self.capacities.train:
            partition = Partition.TRAIN
            self.totals.train += weight
        elif self.totals.validation < self.capacities.validation:
            partition = Partition.VALIDATION
            self.totals.validation += weight
        elif self.capacities.test is None or self.totals.test < self.capacities.test:
            partition = Partition.TEST
            self.totals.test += weight
        else:
            logger.debug(f"All partitions full, leaving {item_id} unassigned")
            return None

        self._assignments[item_id] = partition
        return partition


def assign(
    items: Iterable[Tuple[str, float]],
    capacities: Capacities,
) -> Dict[str, Partition]:
    """
    Assign (id, weight) items to partitions in order.

    Args:
        items: Ordered (item_id, weight) pairs
        capacities: Weight quotas for each partition

    Returns:
        Mapping of item_id to partition; items left over by a bounded test
        partition are absent
    """
    assigner = PartitionAssigner(capacities)
    for item_id, weight in items:
        assigner.place(item_id, weight)

    logger.info(
        f"Partitioned {len(assigner.assignments)} items: "
        f"train={assigner.totals.train}, val={assigner.totals.validation}, "
        f"test={assigner.totals.test}"
    )
    return assigner.assignments


def negative_patch_count(width: int, height: int, divisor: int = 10000) -> int:
    """Number of background patches a negative image contributes."""
    return width * height // divisor + 1


def patches_per_image(num_positives: int, num_negative_images: int, factor: float = 2.0) -> int:
    """Background patches to draw from each negative image to reach factor x positives."""
    if num_negative_images <= 0:
        return 0
    return math.ceil(num_positives * factor / num_negative_images)
