"""
SynPat PDF Generator
Renders portfolio, patent and claim chart documents to PDF.

Conversion runs through an ordered list of strategies; the first one that
succeeds wins:

    1. wkhtmltopdf (external converter, full HTML/CSS fidelity)
    2. embedded plain-text PDF writer (reportlab, text only)
    3. printable HTML file (always available, not a PDF)
"""

import html as html_lib
import logging
import re
import textwrap
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from .config import build_config
from .database import DatabaseManager
from .errors import ExternalToolUnavailable, InvalidInputError, NotFoundError, RenderFailedError
from .external_tools import find_executable, run_tool
from .hooks import HookEvent, HookRegistry
from .templates import DocumentTemplates

logger = logging.getLogger(__name__)

SUBJECT_TYPES = ('portfolio', 'patent', 'claim_chart')

PRINT_CSS = """
<style>
    @page { size: letter; margin: 0.75in; }
    @media print {
        body { padding: 0; }
        .page-break { page-break-after: always; }
        .section { page-break-inside: avoid; }
        a { color: inherit; text-decoration: none; }
    }
</style>
"""


@dataclass
class GeneratedDocument:
    """A file produced by the renderer or the merger"""
    file_path: Path
    file_url: str
    strategy: str
    is_pdf: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'file_path': str(self.file_path),
            'file_url': self.file_url,
            'strategy': self.strategy,
            'is_pdf': self.is_pdf,
        }


def slugify(text: Any, max_length: int = 50) -> str:
    slug = re.sub(r'[^a-z0-9]+', '-', str(text or '').lower()).strip('-')
    return slug[:max_length].strip('-') or 'document'


def public_url(base_url: str, root: Path, path: Path) -> str:
    """Public URL of ``path``, which lives somewhere under ``root``"""
    try:
        relative = Path(path).resolve().relative_to(Path(root).resolve()).as_posix()
    except ValueError:
        relative = Path(path).name
    return f"{base_url.rstrip('/')}/{relative}"


def html_to_text(html: str) -> str:
    """Strip markup down to readable plain text"""
    text = re.sub(r'(?is)<(style|script|head)\b.*?</\1>', '', html)
    text = re.sub(r'(?i)<br\s*/?>', '\n', text)
    text = re.sub(r'(?i)</(p|div|h[1-6]|tr|table|li)>', '\n', text)
    text = re.sub(r'(?i)</t[dh]>', '  ', text)
    text = re.sub(r'<[^>]+>', '', text)
    text = html_lib.unescape(text)
    lines = [re.sub(r'[ \t]+', ' ', line).strip() for line in text.splitlines()]
    text = '\n'.join(lines)
    return re.sub(r'\n{3,}', '\n\n', text).strip()


# ----------------------------------------------------------------------
# Conversion strategies
# ----------------------------------------------------------------------
class ConversionStrategy(ABC):
    """Turns an HTML document into a file at (or next to) ``output_path``"""

    name = "base"

    def is_available(self) -> bool:
        return True

    @abstractmethod
    def execute(self, html: str, output_path: Path) -> Path:
        """Write the document; return the path actually written"""
        pass


class WkhtmltopdfStrategy(ConversionStrategy):
    name = "wkhtmltopdf"

    def __init__(self, candidates: Optional[List[str]] = None, timeout: float = 120):
        self.candidates = candidates or ['/usr/bin/wkhtmltopdf', '/usr/local/bin/wkhtmltopdf', 'wkhtmltopdf']
        self.timeout = timeout

    def is_available(self) -> bool:
        return find_executable(self.candidates) is not None

    def execute(self, html: str, output_path: Path) -> Path:
        binary = find_executable(self.candidates)
        if not binary:
            raise ExternalToolUnavailable("wkhtmltopdf not found")

        scratch = output_path.with_name(output_path.name + '.tmp.html')
        scratch.write_text(html, encoding='utf-8')
        try:
            ok = run_tool(
                [binary, '--quiet', '--enable-local-file-access', str(scratch), str(output_path)],
                timeout=self.timeout,
            )
        finally:
            scratch.unlink(missing_ok=True)

        if not ok or not output_path.exists() or output_path.stat().st_size == 0:
            raise RenderFailedError("wkhtmltopdf produced no output")
        return output_path


class PlainTextPdfStrategy(ConversionStrategy):
    """Single Helvetica text stream; no layout, no images"""

    name = "plain_text_pdf"

    FONT = "Helvetica"
    FONT_SIZE = 10
    LEADING = 13
    MARGIN = 54
    WRAP_WIDTH = 80

    def execute(self, html: str, output_path: Path) -> Path:
        lines: List[str] = []
        for paragraph in html_to_text(html).split('\n'):
            lines.extend(textwrap.wrap(paragraph, self.WRAP_WIDTH) or [''])

        width, height = letter
        pdf = canvas.Canvas(str(output_path), pagesize=letter)
        pdf.setFont(self.FONT, self.FONT_SIZE)
        y = height - self.MARGIN
        for line in lines:
            if y < self.MARGIN:
                pdf.showPage()
                pdf.setFont(self.FONT, self.FONT_SIZE)
                y = height - self.MARGIN
            # Standard Type 1 fonts only cover cp1252
            pdf.drawString(self.MARGIN, y, line.encode('cp1252', 'replace').decode('cp1252'))
            y -= self.LEADING
        pdf.save()
        return output_path


class PrintableHtmlStrategy(ConversionStrategy):
    """Last resort: an HTML file styled for the browser's print dialog"""

    name = "printable_html"

    def execute(self, html: str, output_path: Path) -> Path:
        target = output_path.with_suffix('.html')
        if re.search(r'(?i)</head>', html):
            printable = re.sub(r'(?i)</head>', PRINT_CSS + '</head>', html, count=1)
        else:
            printable = PRINT_CSS + html
        target.write_text(printable, encoding='utf-8')
        return target


def default_strategies(config: Dict[str, Any]) -> List[ConversionStrategy]:
    pdf_config = config.get('pdf', {})
    return [
        WkhtmltopdfStrategy(pdf_config.get('converter_paths'), pdf_config.get('tool_timeout', 120)),
        PlainTextPdfStrategy(),
        PrintableHtmlStrategy(),
    ]


# ----------------------------------------------------------------------
# Renderer
# ----------------------------------------------------------------------
class DocumentRenderer:
    """Resolves a subject, renders its template and converts it to a file"""

    def __init__(self, db: DatabaseManager, config: Optional[Dict[str, Any]] = None,
                 hooks: Optional[HookRegistry] = None,
                 strategies: Optional[List[ConversionStrategy]] = None,
                 templates: Optional[DocumentTemplates] = None):
        self.db = db
        self.config = config or build_config()
        self.hooks = hooks or db.hooks
        self.output_dir = Path(self.config['paths']['output_folder'])
        self.base_url = self.config['storage']['base_url']
        self.strategies = strategies if strategies is not None else default_strategies(self.config)
        self.templates = templates or DocumentTemplates(
            self.hooks, self.config.get('pdf', {}).get('footer_text')
        )

    def render(self, subject_type: str, subject_id: int, template_name: Optional[str] = None,
               output_dir: Optional[Path] = None) -> GeneratedDocument:
        if subject_type not in SUBJECT_TYPES:
            raise InvalidInputError(f"Unknown document type: {subject_type}")
        template_name = template_name or subject_type
        if not self.templates.has_template(template_name):
            raise InvalidInputError(f"Unknown template: {template_name}")

        data, label = self._load_subject(subject_type, subject_id)
        html = self.templates.render(template_name, **data)
        output_path = self._output_path(subject_type, label, output_dir)

        for strategy in self.strategies:
            if not strategy.is_available():
                logger.info(f"Strategy {strategy.name} unavailable, falling back")
                continue
            try:
                written = strategy.execute(html, output_path)
            except Exception as e:
                logger.warning(f"Strategy {strategy.name} failed for {subject_type} {subject_id}: {e}")
                self._discard(output_path)
                continue

            document = GeneratedDocument(
                file_path=written,
                file_url=public_url(self.base_url, self.output_dir, written),
                strategy=strategy.name,
                is_pdf=written.suffix.lower() == '.pdf',
            )
            logger.info(f"Rendered {subject_type} {subject_id} with {strategy.name}: {written}")
            self.hooks.emit(HookEvent.DOCUMENT_GENERATED, subject_type=subject_type,
                            subject_id=subject_id, file_path=str(written))
            return document

        raise RenderFailedError(f"All rendering strategies failed for {subject_type} {subject_id}")

    def _load_subject(self, subject_type: str, subject_id: int):
        if subject_type == 'portfolio':
            portfolio = self.db.get_portfolio(subject_id)
            if not portfolio:
                raise NotFoundError("portfolio", subject_id)
            patents = self.db.get_portfolio_patents(subject_id)
            return {'portfolio': portfolio, 'patents': patents}, portfolio.title

        if subject_type == 'patent':
            patent = self.db.get_patent(subject_id)
            if not patent:
                raise NotFoundError("patent", subject_id)
            charts = self.db.get_patent_claim_charts(subject_id)
            return {'patent': patent, 'claim_charts': charts}, patent.patent_number

        chart = self.db.get_claim_chart(subject_id)
        if not chart:
            raise NotFoundError("claim_chart", subject_id)
        patent = self.db.get_patent(chart.patent_id)
        return {'claim_chart': chart, 'patent': patent}, chart.title

    def _output_path(self, subject_type: str, label: str, output_dir: Optional[Path] = None) -> Path:
        directory = Path(output_dir) if output_dir else self.output_dir
        directory.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime('%Y%m%d%H%M%S')
        filename = f"{subject_type.replace('_', '-')}-{slugify(label)}-{timestamp}-{uuid.uuid4().hex[:8]}.pdf"
        path = (directory / filename).resolve()
        try:
            path.relative_to(directory.resolve())
        except ValueError:
            raise InvalidInputError(f"Output path escapes {directory}: {filename}")
        return path

    @staticmethod
    def _discard(output_path: Path) -> None:
        for leftover in (output_path, output_path.with_suffix('.html')):
            try:
                leftover.unlink(missing_ok=True)
            except OSError as e:
                logger.debug(f"Could not remove {leftover}: {e}")
