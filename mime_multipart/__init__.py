# This is the canonical package information.
__author__ = "mime-multipart Developers"
__license__ = "Apache"
__copyright__ = "Copyright (c) 2016, mime-multipart Developers"
__version__ = "0.1.0"

from .headers import Headers, parse_options_header
from .multipart import (
    MultipartParser,
    TreeParser,
    create_tree_parser,
    iter_leaves,
    parse,
    parse_message,
)
from .nodes import InlinePart, MultipartContainer, Node, StoredPart
from .scanner import BoundaryScanner
from .writer import MultipartWriter, dumps, generate_boundary, write

__all__ = (
    "BoundaryScanner",
    "Headers",
    "InlinePart",
    "MultipartContainer",
    "MultipartParser",
    "MultipartWriter",
    "Node",
    "StoredPart",
    "TreeParser",
    "create_tree_parser",
    "dumps",
    "generate_boundary",
    "iter_leaves",
    "parse",
    "parse_message",
    "parse_options_header",
    "write",
)
