"""
Arrowhead Dataset Preparation

Turns crowdsourced, hand-made and folder-based arrowhead annotations into
PASCAL VOC annotation records and train/val/test manifests for training an
arrowhead detector.
"""

__version__ = "1.0.0"
