"""
SynPat PDF Merger
Concatenates rendered PDFs and builds complete portfolio packets.
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pypdf import PdfReader, PdfWriter

from .config import build_config
from .database import DatabaseManager
from .errors import (
    ExternalToolUnavailable, InvalidInputError, MergeUnavailableError,
    SourceNotFoundError, SynPatError,
)
from .external_tools import find_executable, run_tool
from .hooks import HookEvent, HookRegistry
from .pdf_generator import DocumentRenderer, GeneratedDocument, public_url

logger = logging.getLogger(__name__)


class MergeStrategy(ABC):
    name = "base"

    def is_available(self) -> bool:
        return True

    @abstractmethod
    def execute(self, paths: Sequence[Path], output_path: Path) -> None:
        """Write the concatenation of ``paths`` to ``output_path`` or raise"""
        pass


class GhostscriptMergeStrategy(MergeStrategy):
    name = "ghostscript"

    def __init__(self, candidates: Optional[List[str]] = None, timeout: float = 120):
        self.candidates = candidates or ['gs', '/usr/bin/gs', '/usr/local/bin/gs']
        self.timeout = timeout

    def is_available(self) -> bool:
        return find_executable(self.candidates) is not None

    def execute(self, paths: Sequence[Path], output_path: Path) -> None:
        binary = find_executable(self.candidates)
        if not binary:
            raise ExternalToolUnavailable("ghostscript not found")

        argv = [binary, '-dBATCH', '-dNOPAUSE', '-q', '-sDEVICE=pdfwrite',
                f'-sOutputFile={output_path}'] + [str(p) for p in paths]
        if not run_tool(argv, timeout=self.timeout) or not output_path.exists():
            raise MergeUnavailableError("ghostscript merge failed")


class PypdfMergeStrategy(MergeStrategy):
    """In-process page import with pypdf"""

    name = "pypdf"

    def execute(self, paths: Sequence[Path], output_path: Path) -> None:
        writer = PdfWriter()
        for path in paths:
            reader = PdfReader(str(path))
            for page in reader.pages:
                writer.add_page(page)
        with open(output_path, 'wb') as f:
            writer.write(f)


def default_merge_strategies(config: Dict[str, Any]) -> List[MergeStrategy]:
    pdf_config = config.get('pdf', {})
    return [
        GhostscriptMergeStrategy(pdf_config.get('merge_tool_paths'), pdf_config.get('tool_timeout', 120)),
        PypdfMergeStrategy(),
    ]


class DocumentMerger:
    """Merge PDFs in order; build portfolio + patents packets"""

    def __init__(self, db: DatabaseManager, config: Optional[Dict[str, Any]] = None,
                 hooks: Optional[HookRegistry] = None,
                 renderer: Optional[DocumentRenderer] = None,
                 strategies: Optional[List[MergeStrategy]] = None):
        self.db = db
        self.config = config or build_config()
        self.hooks = hooks or db.hooks
        self.output_dir = Path(self.config['paths']['output_folder'])
        self.temp_dir = Path(self.config['paths']['temp_folder'])
        self.base_url = self.config['storage']['base_url']
        self.renderer = renderer or DocumentRenderer(db, self.config, self.hooks)
        self.strategies = strategies if strategies is not None else default_merge_strategies(self.config)

    def merge(self, paths: Sequence, output_path=None) -> GeneratedDocument:
        """Merge ``paths`` in order into ``output_path`` (generated when omitted)"""
        if not paths:
            raise InvalidInputError("No PDF files provided")

        sources = [Path(p) for p in paths]
        for source in sources:
            if not source.is_file():
                raise SourceNotFoundError(source.name)

        if output_path is None:
            output_path = self.output_dir / f"merged-{int(time.time())}-{uuid.uuid4().hex[:8]}.pdf"
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        # Existing files at output_path (even a source) are only replaced on success
        work_path = output_path.with_name(f".{output_path.name}.{uuid.uuid4().hex[:8]}.part")

        for strategy in self.strategies:
            if not strategy.is_available():
                logger.info(f"Merge strategy {strategy.name} unavailable, falling back")
                continue
            try:
                strategy.execute(sources, work_path)
                if not work_path.exists() or work_path.stat().st_size == 0:
                    raise MergeUnavailableError(f"{strategy.name} wrote no output")
            except Exception as e:
                logger.warning(f"Merge strategy {strategy.name} failed: {e}")
                self._remove(work_path)
                continue

            work_path.replace(output_path)
            logger.info(f"Merged {len(sources)} files with {strategy.name}: {output_path}")
            self.hooks.emit(HookEvent.DOCUMENTS_MERGED, paths=[str(s) for s in sources],
                            output_path=str(output_path))
            return GeneratedDocument(
                file_path=output_path,
                file_url=public_url(self.base_url, self.output_dir, output_path),
                strategy=strategy.name,
            )

        raise MergeUnavailableError("Failed to merge PDF files: no merge strategy succeeded")

    def merge_portfolio_with_patents(self, portfolio_id: int,
                                     patent_ids: Optional[List[int]] = None) -> GeneratedDocument:
        """
        Render the portfolio and each patent, merge them in that order and
        delete the intermediate files whatever the outcome.

        Patents default to the portfolio's patents in join order. A patent that
        fails to render is skipped; a portfolio that fails to render aborts.
        """
        intermediates: List[Path] = []
        try:
            portfolio_doc = self.renderer.render('portfolio', portfolio_id, output_dir=self.temp_dir)
            intermediates.append(portfolio_doc.file_path)

            if not patent_ids:
                patent_ids = [p.id for p in self.db.get_portfolio_patents(portfolio_id)]

            for patent_id in patent_ids:
                try:
                    doc = self.renderer.render('patent', patent_id, output_dir=self.temp_dir)
                except SynPatError as e:
                    logger.warning(f"Skipping patent {patent_id} in portfolio {portfolio_id}: {e.message}")
                    continue
                intermediates.append(doc.file_path)

            pdfs = [p for p in intermediates if p.suffix.lower() == '.pdf']
            if not pdfs or pdfs[0] != portfolio_doc.file_path:
                raise MergeUnavailableError(
                    f"Portfolio {portfolio_id} could not be rendered as PDF; nothing to merge"
                )
            if len(pdfs) < len(intermediates):
                logger.warning(f"{len(intermediates) - len(pdfs)} document(s) were rendered "
                               f"as HTML and left out of the merge")

            timestamp = datetime.now().strftime('%Y%m%d%H%M%S')
            output_path = self.output_dir / f"portfolio-{portfolio_id}-complete-{timestamp}.pdf"
            return self.merge(pdfs, output_path)
        finally:
            for path in intermediates:
                self._remove(path)

    def cleanup_temp_files(self, max_age_hours: Optional[float] = None) -> int:
        """Delete temp PDFs at least ``max_age_hours`` old; returns the count removed"""
        if max_age_hours is None:
            max_age_hours = self.config.get('pdf', {}).get('temp_max_age_hours', 24)
        if not self.temp_dir.is_dir():
            return 0

        cutoff = time.time() - max_age_hours * 3600
        removed = 0
        for path in self.temp_dir.glob('*.pdf'):
            try:
                if path.is_file() and path.stat().st_mtime <= cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.debug(f"Could not remove {path}: {e}")

        if removed:
            logger.info(f"Removed {removed} temporary PDF(s) from {self.temp_dir}")
        return removed

    @staticmethod
    def _remove(path: Path) -> None:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.debug(f"Could not remove {path}: {e}")
