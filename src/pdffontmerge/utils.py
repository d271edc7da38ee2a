# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Utility functions for pdffontmerge."""

import logging
import sys
from typing import Any

import pikepdf

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False, quiet: bool = False) -> logging.Logger:
    """Configures logging for pdffontmerge.

    Args:
        verbose: If True, DEBUG level is used.
        quiet: If True, only ERROR and higher are output.
            Takes precedence over verbose.

    Returns:
        Configured logger for pdffontmerge.
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    package_logger = logging.getLogger("pdffontmerge")
    package_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    package_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)

    logger.debug("Logging configured with level: %s", logging.getLevelName(level))
    return package_logger


def is_pdf_encrypted(pdf: pikepdf.Pdf) -> bool:
    """Checks if a PDF is encrypted.

    Args:
        pdf: Opened pikepdf PDF object.

    Returns:
        True if the PDF is encrypted.
    """
    return pdf.is_encrypted


def resolve_indirect(obj: Any) -> Any:
    """Resolve indirect object reference if needed.

    Args:
        obj: A pikepdf object that may be an indirect reference.

    Returns:
        The resolved object.
    """
    try:
        return obj.get_object()
    except Exception:
        return obj


def obj_key(obj: pikepdf.Object) -> tuple[int, int] | None:
    """Returns a stable identity key for an indirect object.

    Args:
        obj: A pikepdf object.

    Returns:
        The (obj_num, gen) tuple for indirect objects, or None for
        direct objects.
    """
    try:
        og = obj.objgen
        if og != (0, 0):
            return og
    except Exception:
        pass
    return None


def safe_str(obj: pikepdf.Object, fallback: str = "Unknown") -> str:
    """Converts a pikepdf object to string, handling non-UTF-8 bytes.

    Args:
        obj: pikepdf object to convert.
        fallback: Value to return if conversion fails entirely.

    Returns:
        String representation of the object.
    """
    try:
        return str(obj)
    except (UnicodeDecodeError, UnicodeEncodeError):
        try:
            return bytes(obj).decode("latin-1")
        except Exception:
            return fallback


def inherited_resources(page_obj: pikepdf.Dictionary) -> pikepdf.Dictionary | None:
    """Returns the /Resources of a page, walking the /Parent chain.

    Includes cycle detection to avoid infinite loops.

    Args:
        page_obj: The page dictionary.

    Returns:
        The effective resource dictionary, or None if there is none.
    """
    visited: set[tuple[int, int]] = set()
    node = page_obj
    while node is not None:
        objgen = obj_key(node)
        if objgen is not None:
            if objgen in visited:
                return None
            visited.add(objgen)
        resources = node.get("/Resources")
        if resources is not None:
            resources = resolve_indirect(resources)
            if isinstance(resources, pikepdf.Dictionary):
                return resources
        parent = node.get("/Parent")
        node = resolve_indirect(parent) if parent is not None else None
    return None
