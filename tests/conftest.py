"""Pytest configuration and shared fixtures.

Every test gets its own SQLite file and output folders under ``tmp_path``;
nothing touches the working directory or the network.
"""

from datetime import date

import pytest

from synpat.config import build_config
from synpat.database import DatabaseManager
from synpat.data_import import DataImporter
from synpat.hooks import HookRegistry

WIDGET_CLAIMS = "1. A widget comprising a frame. 2. The widget of claim 1, wherein the frame is metal."
TRAILING_REFERENCE_CLAIMS = (
    "1. A widget comprising a frame. 2. The widget as recited in claim 1. "
    "3. A method comprising assembling a frame."
)


@pytest.fixture
def config(tmp_path, tmp_path_factory):
    return build_config({
        'paths': {
            'database': str(tmp_path_factory.mktemp('db') / 'synpat.db'),
            'output_folder': str(tmp_path / 'pdfs'),
            'export_folder': str(tmp_path / 'exports'),
            'report_folder': str(tmp_path / 'reports'),
            'temp_folder': str(tmp_path / 'pdfs' / 'temp'),
        },
        'storage': {
            'base_url': 'https://files.example.com/pdfs',
            'export_url': 'https://files.example.com/exports',
            'report_url': 'https://files.example.com/reports',
        },
        'batch': {'pause_seconds': 0},
    })


@pytest.fixture
def hooks():
    return HookRegistry()


@pytest.fixture
def db(config, hooks):
    return DatabaseManager(config['paths']['database'], hooks)


@pytest.fixture
def make_patent(db):
    """Insert a patent through the importer; returns its id"""
    importer = DataImporter(db)

    def _make(patent_number="US1234567", title="Widget frame", **fields):
        record = {'patent_number': patent_number, 'title': title}
        record.update(fields)
        patent_id, _ = importer.import_record(record)
        return patent_id

    return _make


@pytest.fixture
def widget_patent(make_patent):
    return make_patent(
        "US1234567",
        "Widget frame",
        abstract="A widget with a rigid frame.",
        claims=WIDGET_CLAIMS,
        inventor="A. Inventor",
        assignee="Widget Corp",
        classification="A47B",
        filing_date="2010-03-01",
    )


@pytest.fixture
def portfolio(db, make_patent):
    """Portfolio with two patents; the second is essential"""
    portfolio_id = db.create_portfolio({
        'title': 'Wireless Widgets',
        'description': 'Core widget patents.',
        'licensee_count': 3,
        'upfront_fee': 250000,
    })
    first = make_patent("US1111111", "Widget hinge", claims=WIDGET_CLAIMS, filing_date=date(2008, 1, 15))
    second = make_patent("US2222222", "Widget latch", claims="1. A latch system comprising a hook.")
    db.add_patent_to_portfolio(portfolio_id, first)
    db.add_patent_to_portfolio(portfolio_id, second, is_essential=True)
    return {'id': portfolio_id, 'patent_ids': [first, second]}
