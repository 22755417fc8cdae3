"""
Annotation Parsers

Format-specific parsers for reading arrowhead annotations.
"""

from .base import AnnotatedImage, AnnotatorRun, BaseParser, Box
from .json_parser import JSONAnnotationParser
from .mturk_parser import MTurkCSVParser

__all__ = [
    "AnnotatedImage",
    "AnnotatorRun",
    "BaseParser",
    "Box",
    "JSONAnnotationParser",
    "MTurkCSVParser",
]

# Parser registry
PARSERS = {
    "mturk": MTurkCSVParser,
    "json": JSONAnnotationParser,
}


def get_parser(parser_type: str) -> type:
    """Get parser class by type name."""
    if parser_type not in PARSERS:
        raise ValueError(f"Unknown parser type: {parser_type}. Available: {list(PARSERS.keys())}")
    return PARSERS[parser_type]
