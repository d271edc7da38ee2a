# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Pytest fixtures for the pdffontmerge test suite."""

from pathlib import Path

import pikepdf
import pytest
from pikepdf import Array, Dictionary, Name, Pdf

# -- Global PDF tracker --

_tracked_pdfs: list[Pdf] = []


@pytest.fixture(autouse=True)
def _auto_close_pdfs():
    """Close all tracked PDF objects after each test."""
    yield
    for pdf in reversed(_tracked_pdfs):
        try:
            pdf.close()
        except Exception:
            pass
    _tracked_pdfs.clear()


def new_pdf(**kwargs) -> Pdf:
    """Create a tracked Pdf (auto-closed after test)."""
    pdf = Pdf.new(**kwargs)
    _tracked_pdfs.append(pdf)
    return pdf


def open_pdf(source, **kwargs) -> Pdf:
    """Open a tracked Pdf (auto-closed after test)."""
    pdf = Pdf.open(source, **kwargs)
    _tracked_pdfs.append(pdf)
    return pdf


# -- Fixtures --


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Temporary directory for tests.

    Args:
        tmp_path: Pytest-provided temporary directory.

    Returns:
        Path to the temporary directory.
    """
    return tmp_path


@pytest.fixture
def sample_pdf(tmp_dir: Path) -> Path:
    """Minimal valid PDF without fonts on disk.

    Args:
        tmp_dir: Temporary directory.

    Returns:
        Path to the PDF file.
    """
    pdf = new_pdf()
    page = pikepdf.Page(Dictionary(Type=Name.Page, MediaBox=Array([0, 0, 612, 792])))
    pdf.pages.append(page)

    pdf_path = tmp_dir / "sample.pdf"
    pdf.save(pdf_path)
    return pdf_path


@pytest.fixture
def encrypted_pdf(tmp_dir: Path) -> Path:
    """Encrypted PDF for error tests.

    Args:
        tmp_dir: Temporary directory.

    Returns:
        Path to the encrypted PDF file.
    """
    pdf = new_pdf()
    page = pikepdf.Page(Dictionary(Type=Name.Page, MediaBox=Array([0, 0, 612, 792])))
    pdf.pages.append(page)

    encrypted_path = tmp_dir / "encrypted.pdf"
    pdf.save(encrypted_path, encryption=pikepdf.Encryption(owner="testpassword"))
    return encrypted_path
