"""
SynPat Data Import
Validate and upsert patent records from CSV, JSON, XML files or Google Patents.
"""

import csv
import html
import json
import logging
import re
import xml.etree.ElementTree as ET
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .database import DatabaseManager, ImportLog, Patent
from .errors import (
    InvalidFormatError, MissingFieldError, NotFoundError, SynPatError,
    UnsupportedFormatError, ValidationError,
)
from .hooks import HookEvent, HookRegistry

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('patent_number', 'title')
PATENT_NUMBER_PATTERN = re.compile(r'^[A-Z]{2}\d+')
SUPPORTED_FORMATS = ('csv', 'json', 'xml')

TEXT_FIELDS = ('patent_number', 'title', 'abstract', 'claims', 'inventor', 'assignee',
               'classification')
DATE_FIELDS = ('filing_date', 'grant_date', 'expiration_date')
COUNT_FIELDS = ('forward_citations', 'backward_citations')

GOOGLE_PATENTS_URL = "https://patents.google.com/patent/{number}/en"


def validate_record(record: Dict[str, Any]) -> None:
    """Raise MissingFieldError / InvalidFormatError for an unusable record"""
    for field in REQUIRED_FIELDS:
        value = record.get(field)
        if value is None or not str(value).strip():
            raise MissingFieldError(field)

    if not PATENT_NUMBER_PATTERN.match(str(record['patent_number']).strip()):
        raise InvalidFormatError(f"Invalid patent number format: {record['patent_number']}")


def parse_date(field: str, value: Any) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise InvalidFormatError(f"Invalid date for {field}: {value}")


def map_fields(record: Dict[str, Any]) -> Dict[str, Any]:
    """Record keys -> Patent columns; absent keys are left out"""
    data: Dict[str, Any] = {}
    for field in TEXT_FIELDS:
        if record.get(field) is not None:
            data[field] = str(record[field]).strip()
    for field in DATE_FIELDS:
        if field in record:
            data[field] = parse_date(field, record[field])
    for field in COUNT_FIELDS:
        if record.get(field) not in (None, ''):
            try:
                data[field] = max(0, int(record[field]))
            except (TypeError, ValueError):
                raise InvalidFormatError(f"Invalid number for {field}: {record[field]}")
    if record.get('status') and str(record['status']).strip():
        data['status'] = str(record['status']).strip().lower()
    if isinstance(record.get('cited_patents'), list):
        data['cited_patents'] = record['cited_patents']
    return data


# ----------------------------------------------------------------------
# File parsers
# ----------------------------------------------------------------------
def parse_csv(path: Path) -> List[Dict[str, Any]]:
    with open(path, newline='', encoding='utf-8-sig') as f:
        return [dict(row) for row in csv.DictReader(f)]


def parse_json(path: Path) -> List[Dict[str, Any]]:
    try:
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidFormatError(f"Invalid JSON file: {e}")

    if isinstance(data, dict):
        data = data.get('patents', [data])
    if not isinstance(data, list):
        raise InvalidFormatError("JSON import must contain a list of records")
    return data


def parse_xml(path: Path) -> List[Dict[str, Any]]:
    """<patents><patent><patent_number>..</patent_number>..</patent>..</patents>"""
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        raise InvalidFormatError(f"Invalid XML file: {e}")

    records = []
    for element in root:
        records.append({child.tag: (child.text or '').strip() for child in element})
    return records


PARSERS = {
    'csv': parse_csv,
    'json': parse_json,
    'xml': parse_xml,
}


# ----------------------------------------------------------------------
# Google Patents page extraction
# ----------------------------------------------------------------------
def clean_patent_number(patent_number: str) -> str:
    clean = re.sub(r'[^\w]', '', patent_number or '').upper()
    if clean and clean[0].isdigit():
        clean = f"US{clean}"
    return clean


def _strip_tags(fragment: str) -> str:
    text = re.sub(r'<(br|div|p|li)[^>]*>', '\n', fragment, flags=re.IGNORECASE)
    text = re.sub(r'<[^>]+>', '', text)
    text = html.unescape(text)
    text = re.sub(r'[ \t]+', ' ', text)
    return re.sub(r'\n\s*\n', '\n\n', text).strip()


def _meta(page: str, name: str, scheme: Optional[str] = None) -> List[str]:
    values = []
    for tag in re.findall(r'<meta\b[^>]*>', page, re.IGNORECASE):
        if not re.search(rf'name=["\']{re.escape(name)}["\']', tag, re.IGNORECASE):
            continue
        if scheme and not re.search(rf'scheme=["\']{re.escape(scheme)}["\']', tag, re.IGNORECASE):
            continue
        content = re.search(r'content=["\']([^"\']*)["\']', tag, re.IGNORECASE)
        if content:
            values.append(html.unescape(content.group(1)).strip())
    return values


def parse_google_patents_page(page: str, patent_number: str) -> Dict[str, Any]:
    """Extract a patent record from a Google Patents HTML page"""
    record: Dict[str, Any] = {'patent_number': patent_number}

    titles = _meta(page, 'DC.title')
    if titles:
        record['title'] = titles[0]
    else:
        match = re.search(r'<title>(.*?)</title>', page, re.DOTALL | re.IGNORECASE)
        if match:
            # "US1234567B2 - Widget frame - Google Patents"
            parts = [p.strip() for p in html.unescape(match.group(1)).split(' - ')]
            record['title'] = parts[1] if len(parts) > 2 else parts[0]

    match = re.search(r'<section[^>]*itemprop=["\']abstract["\'][^>]*>(.*?)</section>',
                      page, re.DOTALL | re.IGNORECASE)
    if match:
        record['abstract'] = re.sub(r'^Abstract\s*', '', _strip_tags(match.group(1)))
    else:
        descriptions = _meta(page, 'DC.description')
        if descriptions:
            record['abstract'] = descriptions[0]

    match = re.search(r'<section[^>]*itemprop=["\']claims["\'][^>]*>(.*?)</section>',
                      page, re.DOTALL | re.IGNORECASE)
    if match:
        record['claims'] = _strip_tags(match.group(1))

    inventors = _meta(page, 'DC.contributor', 'inventor')
    if inventors:
        record['inventor'] = ', '.join(inventors)
    assignees = _meta(page, 'DC.contributor', 'assignee')
    if assignees:
        record['assignee'] = assignees[0]
    filed = _meta(page, 'DC.date', 'dateSubmitted')
    if filed:
        record['filing_date'] = filed[0]
    granted = _meta(page, 'DC.date', 'issue')
    if granted:
        record['grant_date'] = granted[0]

    return record


class DataImporter:
    """Upserts validated patent records keyed by patent number"""

    def __init__(self, db: DatabaseManager, config: Optional[Dict[str, Any]] = None,
                 hooks: Optional[HookRegistry] = None,
                 http_client: Optional[httpx.Client] = None):
        self.db = db
        self.config = config or {}
        self.hooks = hooks or db.hooks
        self.http_client = http_client
        self.api_timeout = self.config.get('import', {}).get('api_timeout', 15.0)

    def import_record(self, record: Dict[str, Any]) -> Tuple[int, bool]:
        """Validate and upsert one record; returns (patent_id, created)"""
        validate_record(record)
        data = map_fields(record)

        with self.db.session_scope() as session:
            patent = session.query(Patent).filter(
                Patent.patent_number == data['patent_number']
            ).first()
            created = patent is None
            if created:
                patent = Patent(**data)
                session.add(patent)
            else:
                for key, value in data.items():
                    setattr(patent, key, value)
            session.flush()
            patent_id = patent.id

        logger.debug(f"{'Created' if created else 'Updated'} patent {data['patent_number']} (id {patent_id})")
        self.hooks.emit(HookEvent.PATENT_IMPORTED, patent_id=patent_id,
                        patent_number=data['patent_number'], created=created)
        return patent_id, created

    def import_records(self, records: List[Dict[str, Any]], source: str = "api") -> Dict[str, Any]:
        """Import every record; failing rows are collected, never fatal"""
        results = {
            'total': len(records),
            'imported': 0,
            'created': 0,
            'updated': 0,
            'skipped': 0,
            'errors': [],
        }

        for index, record in enumerate(records):
            try:
                if not isinstance(record, dict):
                    raise InvalidFormatError("Record is not a mapping")
                _, created = self.import_record(record)
            except (ValidationError, ValueError) as e:
                results['errors'].append({'row': index + 1, 'error': str(e)})
                results['skipped'] += 1
                continue
            results['imported'] += 1
            results['created' if created else 'updated'] += 1

        self._log_import(source, results)
        logger.info(f"Import from {source}: {results['imported']}/{results['total']} imported, "
                    f"{results['skipped']} skipped")
        return results

    def import_from_file(self, file_path, fmt: Optional[str] = None) -> Dict[str, Any]:
        path = Path(file_path)
        if not path.is_file():
            raise NotFoundError("file", str(path))

        fmt = (fmt or path.suffix.lstrip('.')).lower()
        if fmt not in PARSERS:
            raise UnsupportedFormatError(f"Unsupported import format: {fmt}")

        records = PARSERS[fmt](path)
        return self.import_records(records, source=path.name)

    def import_from_google_patents(self, patent_number: str) -> Tuple[int, bool]:
        """Fetch a patent page from Google Patents and import it"""
        number = clean_patent_number(patent_number)
        if not number:
            raise MissingFieldError('patent_number')

        url = GOOGLE_PATENTS_URL.format(number=number)
        logger.info(f"Fetching patent from: {url}")
        try:
            if self.http_client is not None:
                response = self.http_client.get(url, timeout=self.api_timeout, follow_redirects=True)
            else:
                response = httpx.get(url, timeout=self.api_timeout, follow_redirects=True)
            if response.status_code == 404:
                raise NotFoundError("patent", number)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SynPatError(f"Failed to fetch {number} from Google Patents: {e}", code="fetch_failed")

        record = parse_google_patents_page(response.text, number)
        return self.import_record(record)

    def _log_import(self, source: str, results: Dict[str, Any]) -> None:
        with self.db.session_scope() as session:
            session.add(ImportLog(
                source=source,
                total_records=results['total'],
                imported=results['imported'],
                skipped=results['skipped'],
                errors=results['errors'],
            ))
