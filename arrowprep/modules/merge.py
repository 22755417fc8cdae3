"""
Multi-annotator box deduplication.

Each image is labelled by several annotators, and each annotator run holds
its own boxes for the same arrowheads. Boxes that overlap well enough across
runs are merged into one consensus box; boxes nobody else confirmed are
dropped.

Merging walks the runs in order, taking each run in turn as the reference
and matching its boxes against the best candidate of every later run. This
is O(n^2) in the number of boxes per run rather than the O(n^3) of a full
pairwise consensus, at the cost of biasing consensus coordinates toward
whichever run is processed first. A sparse first run can therefore leave
pairs from later runs unmerged until they become the reference.
"""

import logging
from typing import List, Sequence, Tuple

from ..parsers.base import AnnotatorRun, Box

logger = logging.getLogger("arrowprep.merge")


def box_overlap(box_1: Box, box_2: Box) -> float:
    """Intersection over union of two boxes, 0.0 when they do not overlap."""
    overlap_x = max(min(box_1.xmax, box_2.xmax) - max(box_1.xmin, box_2.xmin), 0)
    overlap_y = max(min(box_1.ymax, box_2.ymax) - max(box_1.ymin, box_2.ymin), 0)

    intersection = overlap_x * overlap_y
    if intersection <= 0:
        return 0.0

    union = box_1.area + box_2.area - intersection
    if union <= 0:
        return 0.0

    return intersection / union


def find_best_match(box: Box, candidates: Sequence[Box]) -> Tuple[int, float]:
    """
    Find the candidate overlapping a box the most.

    Ties keep the earliest candidate.

    Returns:
        Tuple of (candidate index, score), or (-1, 0.0) if nothing overlaps
    """
    best_idx = -1
    best_score = 0.0

    for i, candidate in enumerate(candidates):
        score = box_overlap(box, candidate)
        if score > best_score:
            best_score = score
            best_idx = i

    return best_idx, best_score


def intersect_all(boxes: Sequence[Box]) -> Box:
    """Tightest box contained in every given box."""
    return Box(
        xmin=max(b.xmin for b in boxes),
        ymin=max(b.ymin for b in boxes),
        xmax=min(b.xmax for b in boxes),
        ymax=min(b.ymax for b in boxes),
    )


class BoxMerger:
    """Merges overlapping boxes from several annotator runs of one image."""

    def __init__(self, threshold: float = 0.3):
        """
        Initialize merger.

        Args:
            threshold: Minimum overlap score for two boxes to agree, in (0, 1]
        """
        if not 0 < threshold <= 1:
            raise ValueError(f"Overlap threshold must be in (0, 1], got {threshold}")
        self.threshold = threshold

    def merge(self, runs: Sequence[AnnotatorRun]) -> List[Box]:
        """
        Merge annotator runs into consensus boxes.

        For every box of the reference run, the best match of each later
        run is looked up. If any of them reaches the threshold, all later
        matches reaching it agree with the reference box; their common
        intersection becomes a consensus box and the matched boxes are
        consumed so they cannot agree again.

        Args:
            runs: Annotator runs in processing order (left untouched)

        Returns:
            Consensus boxes in the order they were found
        """
        remaining = [list(run) for run in runs]
        consensus: List[Box] = []

        start = 0
        while len(remaining) - start > 1:
            for box in remaining[start]:
                matches = [
                    find_best_match(box, run)
                    for run in remaining[start + 1:]
                ]

                if max(score for _, score in matches) < self.threshold:
                    continue

                # (run index, box index) of every later box agreeing with the reference
                agreeing = [
                    (start + 1 + offset, idx)
                    for offset, (idx, score) in enumerate(matches)
                    if score >= self.threshold
                ]

                consensus.append(
                    intersect_all([box] + [remaining[r][i] for r, i in agreeing])
                )

                for r, i in agreeing:
                    del remaining[r][i]

            start += 1

        logger.debug(
            f"Merged {sum(len(run) for run in runs)} boxes from {len(runs)} runs "
            f"into {len(consensus)} consensus boxes"
        )
        return consensus
