"""
Configuration management for the dataset preparation tools.
"""

import argparse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

# Defaults that differ between the preparation commands
COMMAND_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "mturk": {
        "num_train": 520,
        "num_val": 520,
        "num_test": 110,
        "negative_factor": 1.0,
        "image_source": "google",
    },
    "json": {
        "annotations_json": "annotations.json",
        "images_dir": "images",
        "num_train": 0,
        "num_val": 0,
        "image_source": "q1 targets",
    },
    "cropped": {
        "positives_dir": "learning_set",
        "negatives_dir": "negative_set",
        "negative_factor": 2.0,
        "image_source": "pptx",
    },
    "descriptors": {
        "positives_dir": "positives",
        "negatives_dir": "negatives",
        "negative_factor": 2.0,
    },
}


@dataclass
class InputConfig:
    csv_file: Optional[Path] = None
    annotations_json: Optional[Path] = None
    images_dir: Optional[Path] = None
    positives_dir: Optional[Path] = None
    negatives_dir: Optional[Path] = None
    image_url_template: Optional[str] = None


@dataclass
class OutputConfig:
    output_dir: Path


@dataclass
class MergeConfig:
    overlap_threshold: float = 0.3


@dataclass
class SplitConfig:
    num_train: Optional[float] = None
    num_val: Optional[float] = None
    num_test: Optional[float] = None
    train_fraction: float = 0.45
    negative_factor: float = 2.0


@dataclass
class NegativesConfig:
    patch_size: int = 150
    patch_area_divisor: int = 10000
    seed: Optional[int] = None


@dataclass
class VOCConfig:
    folder: str = "VOC2020"
    annotator: str = "arrowprep"
    database: str = "UW CSE"
    image_source: str = "google"
    class_name: str = "arrowhead"


@dataclass
class Config:
    command: str
    input: InputConfig
    output: OutputConfig
    merge: MergeConfig = field(default_factory=MergeConfig)
    split: SplitConfig = field(default_factory=SplitConfig)
    negatives: NegativesConfig = field(default_factory=NegativesConfig)
    voc: VOCConfig = field(default_factory=VOCConfig)
    workers: int = 1
    verbose: bool = False


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", type=Path, default=None,
        help="YAML config file (CLI args override YAML)"
    )
    parser.add_argument(
        "--num-train", type=float, default=None,
        help="Train quota (weight) for positives"
    )
    parser.add_argument(
        "--num-val", type=float, default=None,
        help="Validation quota (weight) for positives"
    )
    parser.add_argument(
        "--num-test", type=float, default=None,
        help="Test quota (weight) for positives; unbounded if unset"
    )
    parser.add_argument(
        "--negative-factor", type=float, default=None,
        help="Negative quotas as a multiple of the positive quotas"
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Random seed for background patch placement"
    )
    parser.add_argument(
        "--workers", "-w", type=int, default=None,
        help="Parallel workers for image size probing"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Verbose output"
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser with one sub-command per tool."""
    parser = argparse.ArgumentParser(
        description="Arrowhead detector dataset preparation",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    mturk = subparsers.add_parser(
        "mturk",
        help="Merge crowdsourced CSV annotations into VOC records and manifests"
    )
    mturk.add_argument("csv_file", type=Path, help="Crowdsourcing results CSV")
    mturk.add_argument("output_dir", type=Path, help="Output folder for annotation files")
    mturk.add_argument(
        "--url-template", type=str, default=None,
        help="Image location with a {name} placeholder, e.g. http://host/processed/{name}.jpg"
    )
    mturk.add_argument(
        "--negatives-dir", type=Path, default=None,
        help="Folder with additional negative images"
    )
    mturk.add_argument(
        "--threshold", type=float, default=None,
        help="Overlap (IoU) threshold for annotators to agree"
    )

    hand = subparsers.add_parser(
        "json",
        help="Convert JSON hand annotations into VOC records and manifests"
    )
    hand.add_argument("output_dir", type=Path, help="Output folder for annotation files")
    hand.add_argument("--annotations", type=Path, default=None, help="Hand annotation JSON")
    hand.add_argument("--images-dir", type=Path, default=None, help="Folder with all images")

    for name, help_text in (
        ("cropped", "Whole-image positives and random background patches as VOC records"),
        ("descriptors", "Classification descriptor lists for positive and negative images"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("output_dir", type=Path, help="Output folder for annotation files")
        sub.add_argument("--positives-dir", type=Path, default=None, help="Folder with positive images")
        sub.add_argument("--negatives-dir", type=Path, default=None, help="Folder with negative images")

    for sub in subparsers.choices.values():
        _add_common_arguments(sub)

    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    return build_parser().parse_args(argv)


def load_yaml_config(config_path: Path) -> dict:
    """Load configuration from YAML file."""
    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


def _pick(cli_value: Any, section: dict, key: str, default: Any) -> Any:
    """CLI value if given, else the YAML value, else the default."""
    if cli_value is not None:
        return cli_value
    return section.get(key, default)


def _as_path(value: Any) -> Optional[Path]:
    return None if value is None else Path(value)


def merge_configs(yaml_config: dict, args: argparse.Namespace) -> Config:
    """Merge YAML config with CLI arguments (CLI takes precedence)."""
    command = args.command
    defaults = COMMAND_DEFAULTS.get(command, {})

    input_cfg = yaml_config.get("input", {})
    output_cfg = yaml_config.get("output", {})
    merge_cfg = yaml_config.get("merge", {})
    split_cfg = yaml_config.get("split", {})
    neg_cfg = yaml_config.get("negatives", {})
    voc_cfg = yaml_config.get("voc", {})

    input_config = InputConfig(
        csv_file=_as_path(_pick(
            getattr(args, "csv_file", None), input_cfg, "csv_file", None)),
        annotations_json=_as_path(_pick(
            getattr(args, "annotations", None), input_cfg, "annotations_json",
            defaults.get("annotations_json"))),
        images_dir=_as_path(_pick(
            getattr(args, "images_dir", None), input_cfg, "images_dir",
            defaults.get("images_dir"))),
        positives_dir=_as_path(_pick(
            getattr(args, "positives_dir", None), input_cfg, "positives_dir",
            defaults.get("positives_dir"))),
        negatives_dir=_as_path(_pick(
            getattr(args, "negatives_dir", None), input_cfg, "negatives_dir",
            defaults.get("negatives_dir"))),
        image_url_template=_pick(
            getattr(args, "url_template", None), input_cfg, "image_url_template", None),
    )

    output_config = OutputConfig(
        output_dir=Path(_pick(getattr(args, "output_dir", None), output_cfg, "output_dir", "."))
    )

    merge_config = MergeConfig(
        overlap_threshold=_pick(
            getattr(args, "threshold", None), merge_cfg, "overlap_threshold", 0.3)
    )

    split_config = SplitConfig(
        num_train=_pick(args.num_train, split_cfg, "num_train", defaults.get("num_train")),
        num_val=_pick(args.num_val, split_cfg, "num_val", defaults.get("num_val")),
        num_test=_pick(args.num_test, split_cfg, "num_test", defaults.get("num_test")),
        train_fraction=split_cfg.get("train_fraction", 0.45),
        negative_factor=_pick(
            args.negative_factor, split_cfg, "negative_factor",
            defaults.get("negative_factor", 2.0)),
    )

    negatives_config = NegativesConfig(
        patch_size=neg_cfg.get("patch_size", 150),
        patch_area_divisor=neg_cfg.get("patch_area_divisor", 10000),
        seed=_pick(args.seed, neg_cfg, "seed", None),
    )

    voc_config = VOCConfig(
        folder=voc_cfg.get("folder", "VOC2020"),
        annotator=voc_cfg.get("annotator", "arrowprep"),
        database=voc_cfg.get("database", "UW CSE"),
        image_source=voc_cfg.get("image_source", defaults.get("image_source", "google")),
        class_name=voc_cfg.get("class_name", "arrowhead"),
    )

    return Config(
        command=command,
        input=input_config,
        output=output_config,
        merge=merge_config,
        split=split_config,
        negatives=negatives_config,
        voc=voc_config,
        workers=_pick(args.workers, yaml_config, "workers", 1),
        verbose=args.verbose or bool(yaml_config.get("verbose", False)),
    )


def load_config(args: Optional[argparse.Namespace] = None) -> Config:
    """Load configuration from CLI args and optional YAML file."""
    if args is None:
        args = parse_args()

    if args.config is not None:
        if not args.config.exists():
            raise FileNotFoundError(f"Config file not found: {args.config}")
        yaml_config = load_yaml_config(args.config)
    else:
        yaml_config = {}

    return merge_configs(yaml_config, args)
