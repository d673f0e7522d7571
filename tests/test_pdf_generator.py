import re
from decimal import Decimal
from pathlib import Path

import pytest
from pypdf import PdfReader

from synpat import pdf_generator
from synpat.errors import InvalidInputError, NotFoundError, RenderFailedError
from synpat.hooks import HookEvent, HookFilter
from synpat.pdf_generator import (
    ConversionStrategy, DocumentRenderer, PlainTextPdfStrategy, PrintableHtmlStrategy,
    WkhtmltopdfStrategy, html_to_text, slugify,
)


class RecordingStrategy(ConversionStrategy):
    name = "recording"

    def __init__(self):
        self.calls = 0
        self.html = None

    def execute(self, html, output_path):
        self.calls += 1
        self.html = html
        output_path.write_bytes(b"%PDF-1.4 fake")
        return output_path


class BrokenStrategy(ConversionStrategy):
    """Writes a partial file, then fails"""

    name = "broken"

    def execute(self, html, output_path):
        output_path.write_bytes(b"%PDF-partial")
        raise RuntimeError("converter crashed")


class MissingStrategy(ConversionStrategy):
    name = "missing"

    def is_available(self):
        return False

    def execute(self, html, output_path):
        raise AssertionError("unavailable strategy must not run")


def files_in(folder):
    folder = Path(folder)
    return sorted(p.name for p in folder.rglob('*') if p.is_file()) if folder.exists() else []


class TestRender:
    def test_unknown_subject_produces_no_file(self, db, config):
        renderer = DocumentRenderer(db, config, strategies=[RecordingStrategy()])
        for subject_type in ('portfolio', 'patent', 'claim_chart'):
            with pytest.raises(NotFoundError):
                renderer.render(subject_type, 404)
        assert files_in(config['paths']['output_folder']) == []

    def test_unknown_subject_type(self, db, config):
        with pytest.raises(InvalidInputError):
            DocumentRenderer(db, config, strategies=[]).render('invoice', 1)

    def test_first_available_success_wins(self, db, config, widget_patent):
        first, second = RecordingStrategy(), RecordingStrategy()
        renderer = DocumentRenderer(db, config, strategies=[MissingStrategy(), first, second])

        document = renderer.render('patent', widget_patent)

        assert document.strategy == 'recording'
        assert document.is_pdf
        assert (first.calls, second.calls) == (1, 0)

    def test_failed_strategy_leaves_no_partial_output(self, db, config, widget_patent):
        renderer = DocumentRenderer(db, config, strategies=[BrokenStrategy(), PrintableHtmlStrategy()])

        document = renderer.render('patent', widget_patent)

        assert document.strategy == 'printable_html'
        assert not document.is_pdf
        assert document.file_path.suffix == '.html'
        assert files_in(config['paths']['output_folder']) == [document.file_path.name]

    def test_all_strategies_failing(self, db, config, widget_patent):
        renderer = DocumentRenderer(db, config, strategies=[BrokenStrategy(), MissingStrategy()])
        with pytest.raises(RenderFailedError):
            renderer.render('patent', widget_patent)
        assert files_in(config['paths']['output_folder']) == []

    def test_file_name_and_url(self, db, config, widget_patent):
        document = DocumentRenderer(db, config, strategies=[RecordingStrategy()]).render('patent', widget_patent)

        assert re.fullmatch(r'patent-us1234567-\d{14}-[0-9a-f]{8}\.pdf', document.file_path.name)
        assert document.file_path.parent == Path(config['paths']['output_folder']).resolve()
        assert document.file_url == f"https://files.example.com/pdfs/{document.file_path.name}"

    def test_emits_document_generated(self, db, config, hooks, widget_patent):
        events = []
        hooks.subscribe(HookEvent.DOCUMENT_GENERATED, lambda **payload: events.append(payload))
        document = DocumentRenderer(db, config, strategies=[RecordingStrategy()]).render('patent', widget_patent)
        assert events == [{'subject_type': 'patent', 'subject_id': widget_patent,
                           'file_path': str(document.file_path)}]

    def test_portfolio_lists_patents_in_join_order(self, db, config, portfolio):
        recorder = RecordingStrategy()
        DocumentRenderer(db, config, strategies=[recorder]).render('portfolio', portfolio['id'])

        assert 'Wireless Widgets' in recorder.html
        assert recorder.html.index('US1111111') < recorder.html.index('US2222222')
        assert '$250,000.00' in recorder.html

    def test_claim_chart_document(self, db, config, widget_patent):
        from synpat.claim_chart import ClaimChartService

        chart_id = ClaimChartService(db).generate_from_claims(widget_patent, [1])[0]
        recorder = RecordingStrategy()
        DocumentRenderer(db, config, strategies=[recorder]).render('claim_chart', chart_id)

        assert 'Claim Chart for US1234567 - Claim 1' in recorder.html
        assert 'A widget comprising a frame' in recorder.html


class TestTemplates:
    def test_values_are_escaped(self, db, config, make_patent):
        patent_id = make_patent("US9999999", "<script>alert(1)</script>")
        recorder = RecordingStrategy()
        DocumentRenderer(db, config, strategies=[recorder]).render('patent', patent_id)

        assert '<script>alert(1)</script>' not in recorder.html
        assert '&lt;script&gt;' in recorder.html

    def test_filters_are_applied(self, db, config, hooks, widget_patent):
        hooks.add_filter(HookFilter.PDF_FOOTER_TEXT, lambda text: "Internal use only")
        hooks.add_filter(HookFilter.PDF_LOGO_URL, lambda url: "https://cdn.example.com/logo.png")
        hooks.add_filter(HookFilter.PDF_TEMPLATE, lambda html, template_name: html + f"<!-- {template_name} -->")
        recorder = RecordingStrategy()
        DocumentRenderer(db, config, strategies=[recorder]).render('patent', widget_patent)

        assert 'Internal use only' in recorder.html
        assert 'Confidential - Generated by SynPat' not in recorder.html
        assert 'src="https://cdn.example.com/logo.png"' in recorder.html
        assert recorder.html.endswith('<!-- patent -->')


class TestWkhtmltopdfStrategy:
    def test_scratch_file_is_removed_after_success(self, tmp_path, monkeypatch):
        calls = []

        def fake_run_tool(argv, timeout):
            scratch = Path(argv[-2])
            calls.append((argv, scratch.exists(), timeout))
            Path(argv[-1]).write_bytes(b"%PDF-1.4")
            return True

        monkeypatch.setattr(pdf_generator, 'find_executable', lambda candidates: '/opt/wkhtmltopdf')
        monkeypatch.setattr(pdf_generator, 'run_tool', fake_run_tool)

        output = tmp_path / 'doc.pdf'
        assert WkhtmltopdfStrategy(timeout=30).execute('<html></html>', output) == output

        argv, scratch_existed, timeout = calls[0]
        assert argv == ['/opt/wkhtmltopdf', '--quiet', '--enable-local-file-access',
                        str(tmp_path / 'doc.pdf.tmp.html'), str(output)]
        assert scratch_existed and timeout == 30
        assert not (tmp_path / 'doc.pdf.tmp.html').exists()

    def test_scratch_file_is_removed_after_failure(self, tmp_path, monkeypatch):
        monkeypatch.setattr(pdf_generator, 'find_executable', lambda candidates: '/opt/wkhtmltopdf')
        monkeypatch.setattr(pdf_generator, 'run_tool', lambda argv, timeout: False)

        with pytest.raises(RenderFailedError):
            WkhtmltopdfStrategy().execute('<html></html>', tmp_path / 'doc.pdf')
        assert list(tmp_path.iterdir()) == []

    def test_unavailable_without_binary(self, monkeypatch):
        monkeypatch.setattr(pdf_generator, 'find_executable', lambda candidates: None)
        assert not WkhtmltopdfStrategy().is_available()


class TestEmbeddedStrategies:
    def test_plain_text_pdf_is_a_real_pdf(self, tmp_path):
        html = "<html><body><h1>US1234567</h1>" + "<p>" + "word " * 2000 + "</p></body></html>"
        output = PlainTextPdfStrategy().execute(html, tmp_path / 'plain.pdf')

        assert output.read_bytes().startswith(b'%PDF')
        reader = PdfReader(str(output))
        assert len(reader.pages) >= 2
        assert 'US1234567' in reader.pages[0].extract_text()

    def test_printable_html_adds_print_css(self, tmp_path):
        output = PrintableHtmlStrategy().execute('<html><head></head><body>x</body></html>', tmp_path / 'a.pdf')
        assert output == tmp_path / 'a.html'
        assert '@page' in output.read_text()


def test_html_to_text_strips_markup():
    text = html_to_text("<style>p {}</style><h1>Title</h1><p>A &amp; B</p><table><tr><td>x</td><td>y</td></tr></table>")
    assert text.splitlines()[0] == 'Title'
    assert 'A & B' in text
    assert 'p {}' not in text


def test_slugify():
    assert slugify("Wireless Widgets: 5G / LTE") == 'wireless-widgets-5g-lte'
    assert slugify("../../etc/passwd") == 'etc-passwd'
    assert slugify("") == 'document'


def test_money_formatting():
    from synpat.templates import _fmt_money

    assert _fmt_money(Decimal('1234.5')) == '$1,234.50'
    assert _fmt_money(250000) == '$250,000.00'
    assert _fmt_money('n/a') == ''
