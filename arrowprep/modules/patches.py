"""
Random background patch boxes for negative images.
"""

import logging
from typing import List, Optional

import numpy as np

from ..parsers.base import Box

logger = logging.getLogger("arrowprep.patches")


class BackgroundSampler:
    """Draws fixed-size background boxes at random positions inside an image."""

    def __init__(
        self,
        patch_size: int = 150,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None,
    ):
        """
        Initialize sampler.

        Args:
            patch_size: Side length of each patch in pixels
            rng: Random generator to draw positions from
            seed: Seed for a fresh generator when rng is not given
        """
        if patch_size <= 0:
            raise ValueError(f"Patch size must be positive, got {patch_size}")
        self.patch_size = patch_size
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def sample(self, width: int, height: int) -> Box:
        """
        Draw one patch box.

        Images smaller than the patch yield a box clipped to the image.
        """
        size = self.patch_size

        xmax = min(int(self.rng.integers(max(width - size, 1))) + size, width)
        xmin = max(xmax - size, 0)

        ymax = min(int(self.rng.integers(max(height - size, 1))) + size, height)
        ymin = max(ymax - size, 0)

        return Box(xmin=xmin, ymin=ymin, xmax=xmax, ymax=ymax)

    def sample_many(self, width: int, height: int, count: int) -> List[Box]:
        return [self.sample(width, height) for _ in range(count)]
