# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Combining source documents into one output with merged fonts."""

# Standard Library
import logging
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path

# Third Party
import pikepdf
from pikepdf import Dictionary, Name
from tqdm import tqdm

# Local
from .config import MergeSettings
from .exceptions import MergeError, UnsupportedPDFError
from .fonts.loader import FontResourceLoader
from .fonts.registry import FontMergeSession
from .rewriter import ContentStreamRewriter, PageRewrite
from .utils import inherited_resources, is_pdf_encrypted, resolve_indirect

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    """Result of merging several PDF documents.

    Attributes:
        success: True if the output was written.
        output_path: Path to the output PDF.
        input_paths: Paths of the source PDFs, in order.
        page_count: Number of pages written.
        merged_font_count: Number of merged fonts embedded in the output.
        forked_font_count: Merged fonts created under a disambiguated name.
        resources_merged: Font resources folded into merged fonts.
        pages_rewritten: Pages whose content stream was rewritten.
        warnings: List of warnings during merging.
        processing_time: Processing time in seconds.
    """

    success: bool
    output_path: Path
    input_paths: list[Path]
    page_count: int = 0
    merged_font_count: int = 0
    forked_font_count: int = 0
    resources_merged: int = 0
    pages_rewritten: int = 0
    warnings: list[str] = field(default_factory=list)
    processing_time: float = 0.0


class FontMergingAssembler:
    """Appends source pages to an output document, rewriting their fonts.

    Args:
        output: The output document.
        settings: Merge settings.
    """

    def __init__(self, output: pikepdf.Pdf, settings: MergeSettings | None = None) -> None:
        self.output = output
        self.settings = settings or MergeSettings()
        self.session = FontMergeSession(self.settings)
        self.page_count = 0
        self.pages_rewritten = 0
        self.warnings: list[str] = []

    def add_document(self, index: int, source: pikepdf.Pdf, progress: tqdm | None = None) -> None:
        """Appends every page of a source document.

        Args:
            index: Position of the document among the inputs.
            source: The open source document. It must stay open until the
                output is saved.
            progress: Optional progress bar advanced per page.
        """
        loader = FontResourceLoader(index, self.settings.font_cache_capacity)
        rewriter = ContentStreamRewriter(self.session, loader)
        for page in source.pages:
            rewrite = None
            if self.settings.merge_fonts:
                rewrite = rewriter.rewrite_page(page)
            self.output.pages.append(page)
            self.page_count += 1
            if rewrite is not None:
                self._apply(self.output.pages[-1], rewrite)
                self.pages_rewritten += 1
                if rewrite.reverted_operands:
                    self.warnings.append(
                        f"Page {self.page_count}: {rewrite.reverted_operands} text "
                        "operand(s) kept with original codes"
                    )
            if progress is not None:
                progress.update(1)
        logger.debug(
            "Document %d: font cache cleared %d time(s)", index, loader.cache.clears
        )

    def _apply(self, page: pikepdf.Page, rewrite: PageRewrite) -> None:
        """Installs a rewritten content stream and font table on an output page.

        The page gets its own /Resources and /Font dictionaries, since both
        may be shared with pages that were not rewritten.
        """
        page_obj = page.obj
        resources = inherited_resources(page_obj)
        new_resources = Dictionary()
        if resources is not None:
            for key, value in resources.items():
                new_resources[key] = value

        fonts = Dictionary()
        existing = new_resources.get("/Font")
        if existing is not None:
            existing = resolve_indirect(existing)
            for key, value in existing.items():
                if key not in rewrite.substitutions:
                    fonts[key] = value
        for merged_name in sorted(set(rewrite.substitutions.values())):
            fonts[Name(f"/{merged_name}")] = self.session.font_reference(
                merged_name, self.output
            )
        new_resources[Name.Font] = fonts

        page_obj[Name.Resources] = new_resources
        page_obj[Name.Contents] = self.output.make_stream(rewrite.content)

    def finish(self) -> int:
        """Writes the merged fonts into the output document."""
        return self.session.finalize(self.output)


def _check_inputs(input_paths: list[Path], output_path: Path) -> None:
    if not input_paths:
        raise MergeError("No input files given")
    for path in input_paths:
        if not path.exists():
            raise FileNotFoundError(f"Input file not found: {path}")
        if path.resolve() == output_path.resolve():
            raise MergeError(f"Input and output paths must differ: {path}")


def merge_pdfs(
    input_paths: list[Path],
    output_path: Path,
    settings: MergeSettings | None = None,
    *,
    show_progress: bool = False,
) -> MergeResult:
    """Merges PDF files into one, consolidating shared embedded fonts.

    Args:
        input_paths: Source PDFs, in output order.
        output_path: Path for the merged PDF.
        settings: Merge settings. Defaults to MergeSettings().
        show_progress: If True, a progress bar over pages is shown.

    Returns:
        MergeResult with status and details.

    Raises:
        FileNotFoundError: If an input file does not exist.
        UnsupportedPDFError: If an input PDF is encrypted.
        MergeError: If the merge fails.
    """
    settings = settings or MergeSettings()
    input_paths = [Path(p) for p in input_paths]
    output_path = Path(output_path)
    start_time = time.perf_counter()
    _check_inputs(input_paths, output_path)

    logger.info("Starting merge of %d file(s) -> %s", len(input_paths), output_path)

    try:
        with ExitStack() as stack:
            sources = []
            for path in input_paths:
                source = stack.enter_context(pikepdf.open(path))
                if is_pdf_encrypted(source):
                    raise UnsupportedPDFError(
                        f"PDF is encrypted and cannot be merged: {path}"
                    )
                sources.append(source)

            output = stack.enter_context(pikepdf.new())
            assembler = FontMergingAssembler(output, settings)

            progress = None
            if show_progress:
                progress = tqdm(
                    total=sum(len(s.pages) for s in sources),
                    desc="Merging",
                    unit="page",
                    ncols=80,
                )
            try:
                for index, source in enumerate(sources):
                    assembler.add_document(index, source, progress)
            finally:
                if progress is not None:
                    progress.close()

            merged_fonts = assembler.finish()
            output.save(output_path, deterministic_id=True)

        session = assembler.session
        processing_time = time.perf_counter() - start_time
        logger.info(
            "Merge successful: %s (%d pages, %d merged fonts, %.2f seconds)",
            output_path,
            assembler.page_count,
            merged_fonts,
            processing_time,
        )
        return MergeResult(
            success=True,
            output_path=output_path,
            input_paths=input_paths,
            page_count=assembler.page_count,
            merged_font_count=merged_fonts,
            forked_font_count=session.fork_count,
            resources_merged=sum(1 for d in session.decisions if d.accepted),
            pages_rewritten=assembler.pages_rewritten,
            warnings=assembler.warnings,
            processing_time=processing_time,
        )

    except pikepdf.PasswordError as e:
        raise UnsupportedPDFError(f"PDF is encrypted and cannot be merged: {e}") from e

    except pikepdf.PdfError as e:
        error_msg = f"PDF processing error: {e}"
        logger.error(error_msg)
        raise MergeError(error_msg) from e

    except (UnsupportedPDFError, MergeError, PermissionError):
        # Re-raise specific errors unchanged
        raise

    except OSError as e:
        error_msg = f"Cannot write {output_path}: {e}"
        logger.error(error_msg)
        raise MergeError(error_msg) from e
