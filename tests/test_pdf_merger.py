import os
import time
from pathlib import Path

import pytest
from pypdf import PdfReader, PdfWriter

from synpat import pdf_merger
from synpat.errors import InvalidInputError, MergeUnavailableError, NotFoundError, SourceNotFoundError
from synpat.hooks import HookEvent
from synpat.pdf_generator import ConversionStrategy, DocumentRenderer
from synpat.pdf_merger import DocumentMerger, GhostscriptMergeStrategy, MergeStrategy, PypdfMergeStrategy


def write_pdf(path, pages=1):
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=200, height=200)
    with open(path, 'wb') as f:
        writer.write(f)
    return Path(path)


class BlankPdfStrategy(ConversionStrategy):
    name = "blank_pdf"

    def execute(self, html, output_path):
        return write_pdf(output_path)


class PartialMergeStrategy(MergeStrategy):
    name = "partial"

    def __init__(self):
        self.calls = 0

    def execute(self, paths, output_path):
        self.calls += 1
        output_path.write_bytes(b"%PDF-partial")
        raise RuntimeError("merge tool crashed")


@pytest.fixture
def renderer(db, config):
    return DocumentRenderer(db, config, strategies=[BlankPdfStrategy()])


@pytest.fixture
def merger(db, config, renderer):
    return DocumentMerger(db, config, renderer=renderer, strategies=[PypdfMergeStrategy()])


class TestMerge:
    def test_empty_input(self, merger):
        with pytest.raises(InvalidInputError):
            merger.merge([])

    def test_missing_source_aborts_before_merging(self, db, config, tmp_path):
        strategy = PartialMergeStrategy()
        merger = DocumentMerger(db, config, strategies=[strategy])
        present = write_pdf(tmp_path / 'a.pdf')
        output = tmp_path / 'out.pdf'

        with pytest.raises(SourceNotFoundError) as exc:
            merger.merge([present, tmp_path / 'missing.pdf'], output)

        assert 'missing.pdf' in exc.value.message
        assert strategy.calls == 0
        assert not output.exists()

    def test_pages_are_concatenated_in_order(self, merger, tmp_path):
        first = write_pdf(tmp_path / 'first.pdf', pages=1)
        second = write_pdf(tmp_path / 'second.pdf', pages=2)

        document = merger.merge([first, second], tmp_path / 'merged.pdf')

        assert document.strategy == 'pypdf'
        assert len(PdfReader(str(document.file_path)).pages) == 3

    def test_default_output_goes_to_output_folder(self, merger, config, tmp_path):
        document = merger.merge([write_pdf(tmp_path / 'a.pdf')])
        assert document.file_path.parent == Path(config['paths']['output_folder'])
        assert document.file_path.name.startswith('merged-')
        assert document.file_url.startswith('https://files.example.com/pdfs/merged-')

    def test_partial_output_removed_before_fallback(self, db, config, tmp_path):
        partial = PartialMergeStrategy()
        merger = DocumentMerger(db, config, strategies=[partial, PypdfMergeStrategy()])

        document = merger.merge([write_pdf(tmp_path / 'a.pdf')], tmp_path / 'out.pdf')

        assert partial.calls == 1
        assert document.strategy == 'pypdf'
        assert len(PdfReader(str(document.file_path)).pages) == 1

    def test_no_strategy_succeeds(self, db, config, tmp_path):
        merger = DocumentMerger(db, config, strategies=[PartialMergeStrategy()])
        output = tmp_path / 'out.pdf'
        with pytest.raises(MergeUnavailableError):
            merger.merge([write_pdf(tmp_path / 'a.pdf')], output)
        assert not output.exists()

    def test_failed_merge_keeps_existing_destination(self, db, config, tmp_path):
        merger = DocumentMerger(db, config, strategies=[PartialMergeStrategy()])
        existing = write_pdf(tmp_path / 'out.pdf', pages=2)
        before = existing.read_bytes()

        with pytest.raises(MergeUnavailableError):
            merger.merge([write_pdf(tmp_path / 'a.pdf')], existing)

        assert existing.read_bytes() == before
        assert sorted(p.name for p in tmp_path.iterdir()) == ['a.pdf', 'out.pdf']

    def test_failed_merge_into_a_source_keeps_the_source(self, db, config, tmp_path):
        merger = DocumentMerger(db, config, strategies=[PartialMergeStrategy()])
        source = write_pdf(tmp_path / 'a.pdf', pages=2)

        with pytest.raises(MergeUnavailableError):
            merger.merge([source, write_pdf(tmp_path / 'b.pdf')], source)

        assert len(PdfReader(str(source)).pages) == 2

    def test_merge_into_a_source_replaces_it(self, merger, tmp_path):
        source = write_pdf(tmp_path / 'a.pdf', pages=2)
        document = merger.merge([source, write_pdf(tmp_path / 'b.pdf')], source)

        assert document.file_path == source
        assert len(PdfReader(str(source)).pages) == 3
        assert sorted(p.name for p in tmp_path.iterdir()) == ['a.pdf', 'b.pdf']

    def test_unreadable_pdf_fails_over_to_unavailable(self, merger, tmp_path):
        bogus = tmp_path / 'bogus.pdf'
        bogus.write_text('not a pdf')
        with pytest.raises(MergeUnavailableError):
            merger.merge([bogus], tmp_path / 'out.pdf')
        assert not (tmp_path / 'out.pdf').exists()

    def test_emits_documents_merged(self, merger, hooks, tmp_path):
        events = []
        hooks.subscribe(HookEvent.DOCUMENTS_MERGED, lambda **payload: events.append(payload))
        source = write_pdf(tmp_path / 'a.pdf')
        merger.merge([source], tmp_path / 'out.pdf')
        assert events == [{'paths': [str(source)], 'output_path': str(tmp_path / 'out.pdf')}]


class TestGhostscriptStrategy:
    def test_command_line(self, tmp_path, monkeypatch):
        calls = []

        def fake_run_tool(argv, timeout):
            calls.append(argv)
            Path(argv[5].split('=', 1)[1]).write_bytes(b'%PDF-1.4')
            return True

        monkeypatch.setattr(pdf_merger, 'find_executable', lambda candidates: '/usr/bin/gs')
        monkeypatch.setattr(pdf_merger, 'run_tool', fake_run_tool)

        output = tmp_path / 'out.pdf'
        GhostscriptMergeStrategy().execute([tmp_path / 'a.pdf', tmp_path / 'b.pdf'], output)

        assert calls == [[
            '/usr/bin/gs', '-dBATCH', '-dNOPAUSE', '-q', '-sDEVICE=pdfwrite',
            f'-sOutputFile={output}', str(tmp_path / 'a.pdf'), str(tmp_path / 'b.pdf'),
        ]]

    def test_nonzero_exit_is_a_failure(self, tmp_path, monkeypatch):
        monkeypatch.setattr(pdf_merger, 'find_executable', lambda candidates: '/usr/bin/gs')
        monkeypatch.setattr(pdf_merger, 'run_tool', lambda argv, timeout: False)
        with pytest.raises(MergeUnavailableError):
            GhostscriptMergeStrategy().execute([tmp_path / 'a.pdf'], tmp_path / 'out.pdf')


def temp_files(config):
    folder = Path(config['paths']['temp_folder'])
    return list(folder.iterdir()) if folder.exists() else []


class TestPortfolioPacket:
    def test_portfolio_then_patents(self, merger, config, portfolio):
        document = merger.merge_portfolio_with_patents(portfolio['id'])

        assert document.file_path.name.startswith(f"portfolio-{portfolio['id']}-complete-")
        assert len(PdfReader(str(document.file_path)).pages) == 3
        assert temp_files(config) == []

    def test_intermediates_removed_when_merge_fails(self, db, config, renderer, portfolio):
        merger = DocumentMerger(db, config, renderer=renderer, strategies=[PartialMergeStrategy()])

        with pytest.raises(MergeUnavailableError):
            merger.merge_portfolio_with_patents(portfolio['id'])

        assert temp_files(config) == []
        assert not list(Path(config['paths']['output_folder']).glob('portfolio-*-complete-*.pdf'))

    def test_unrenderable_patent_is_skipped(self, merger, portfolio):
        patent_ids = [portfolio['patent_ids'][0], 999]
        document = merger.merge_portfolio_with_patents(portfolio['id'], patent_ids)
        assert len(PdfReader(str(document.file_path)).pages) == 2

    def test_unknown_portfolio(self, merger, config):
        with pytest.raises(NotFoundError):
            merger.merge_portfolio_with_patents(404)
        assert temp_files(config) == []


class TestCleanup:
    def test_removes_only_old_pdfs(self, merger, config):
        temp_dir = Path(config['paths']['temp_folder'])
        temp_dir.mkdir(parents=True)
        old_pdf = write_pdf(temp_dir / 'old.pdf')
        new_pdf = write_pdf(temp_dir / 'new.pdf')
        old_note = temp_dir / 'old.txt'
        old_note.write_text('keep')
        two_days_ago = time.time() - 2 * 86400
        os.utime(old_pdf, (two_days_ago, two_days_ago))
        os.utime(old_note, (two_days_ago, two_days_ago))

        assert merger.cleanup_temp_files() == 1
        assert not old_pdf.exists()
        assert new_pdf.exists() and old_note.exists()

    def test_missing_temp_folder(self, merger):
        assert merger.cleanup_temp_files(max_age_hours=0) == 0
