"""
SynPat Claim Charts
Expert claim charts mapping claim elements to product features.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from .database import ChartStatus, ClaimChart, DatabaseManager, Patent
from .errors import InvalidFormatError, MissingFieldError, NotFoundError
from .hooks import HookEvent, HookRegistry
from .patent_analyzer import split_claims

logger = logging.getLogger(__name__)

CHART_FIELDS = ('title', 'claim_number', 'claim_text', 'product_description',
                'mapping', 'status', 'created_by')
CHART_STATUSES = tuple(s.value for s in ChartStatus)

_ELEMENT_SPLIT = re.compile(r'[;,]|\bwherein\b|\bwhereby\b', re.IGNORECASE)


def extract_claim_text(claims_text: Optional[str], claim_number) -> str:
    """Text of claim ``claim_number`` up to the next numbered claim; '' when absent"""
    wanted = str(claim_number).strip()
    for number, text in split_claims(claims_text):
        if number == wanted:
            return text
    return ''


def claim_numbers(claims_text: Optional[str]) -> List[str]:
    seen: List[str] = []
    for number, _ in split_claims(claims_text):
        if number is not None and number not in seen:
            seen.append(number)
    return seen


def parse_claim_elements(claim_text: str) -> List[Dict[str, str]]:
    """Split a claim on ';', ',', 'wherein' and 'whereby' into mappable elements"""
    parts = [part.strip() for part in _ELEMENT_SPLIT.split(claim_text or '')]
    return [
        {'id': f"element_{index}", 'text': part, 'mapping': ''}
        for index, part in enumerate((p for p in parts if p), start=1)
    ]


def _validate_mapping(mapping: Any) -> List[Dict[str, Any]]:
    if mapping is None:
        return []
    if not isinstance(mapping, list) or not all(isinstance(row, dict) for row in mapping):
        raise InvalidFormatError("Claim chart mapping must be a list of objects")
    return mapping


class ClaimChartService:
    """Create, update, delete and generate claim charts"""

    def __init__(self, db: DatabaseManager, hooks: Optional[HookRegistry] = None):
        self.db = db
        self.hooks = hooks or db.hooks

    def _prepare(self, data: Dict[str, Any]) -> Dict[str, Any]:
        chart_data = {k: v for k, v in data.items() if k in CHART_FIELDS}
        if 'status' in chart_data:
            status = str(chart_data['status'] or '').strip().lower()
            if status not in CHART_STATUSES:
                raise InvalidFormatError(
                    f"Invalid claim chart status: {chart_data['status']} "
                    f"(expected one of {', '.join(CHART_STATUSES)})"
                )
            chart_data['status'] = status
        if 'mapping' in chart_data:
            chart_data['mapping'] = _validate_mapping(chart_data['mapping'])
        if 'title' in chart_data:
            chart_data['title'] = str(chart_data['title'] or '').strip()
            if not chart_data['title']:
                raise MissingFieldError('title')
        return chart_data

    def create(self, data: Dict[str, Any]) -> int:
        if not data.get('title'):
            raise MissingFieldError('title')
        chart_data = self._prepare(data)

        with self.db.session_scope() as session:
            patent_id = data.get('patent_id')
            if not patent_id or not session.get(Patent, patent_id):
                raise NotFoundError("patent", patent_id)
            chart = ClaimChart(patent_id=patent_id, **chart_data)
            session.add(chart)
            session.flush()
            chart_id = chart.id

        logger.info(f"Created claim chart {chart_id} for patent {patent_id}")
        self.hooks.emit(HookEvent.CLAIM_CHART_CREATED, chart_id=chart_id, data=chart_data)
        return chart_id

    def update(self, chart_id: int, data: Dict[str, Any]) -> ClaimChart:
        chart_data = self._prepare(data)
        with self.db.session_scope() as session:
            chart = session.get(ClaimChart, chart_id)
            if not chart:
                raise NotFoundError("claim_chart", chart_id)
            for key, value in chart_data.items():
                setattr(chart, key, value)

        self.hooks.emit(HookEvent.CLAIM_CHART_UPDATED, chart_id=chart_id, data=chart_data)
        return chart

    def delete(self, chart_id: int) -> bool:
        with self.db.session_scope() as session:
            deleted = session.query(ClaimChart).filter(ClaimChart.id == chart_id).delete()
        if deleted:
            self.hooks.emit(HookEvent.CLAIM_CHART_DELETED, chart_id=chart_id)
        return deleted > 0

    def get(self, chart_id: int) -> ClaimChart:
        chart = self.db.get_claim_chart(chart_id)
        if not chart:
            raise NotFoundError("claim_chart", chart_id)
        return chart

    def for_patent(self, patent_id: int) -> List[ClaimChart]:
        return self.db.get_patent_claim_charts(patent_id)

    def generate_from_claims(self, patent_id: int, numbers: Optional[List] = None) -> List[int]:
        """
        Create one draft chart per requested claim found in the patent's claims,
        with the claim's elements pre-seeded as mapping rows.

        ``numbers`` defaults to every numbered claim; numbers that don't resolve
        are skipped.
        """
        patent = self.db.get_patent(patent_id)
        if not patent:
            raise NotFoundError("patent", patent_id)

        if numbers is None:
            numbers = claim_numbers(patent.claims)

        chart_ids = []
        for number in numbers:
            claim_text = extract_claim_text(patent.claims, number)
            if not claim_text:
                logger.info(f"Claim {number} not found in {patent.patent_number}")
                continue
            mapping = [
                {'id': element['id'], 'element': element['text'], 'feature': '', 'analysis': ''}
                for element in parse_claim_elements(claim_text)
            ]
            chart_ids.append(self.create({
                'patent_id': patent_id,
                'title': f"Claim Chart for {patent.patent_number} - Claim {number}",
                'claim_number': str(number),
                'claim_text': claim_text,
                'mapping': mapping,
                'status': ChartStatus.DRAFT.value,
            }))
        return chart_ids
