"""
SynPat Prior Art
Prior-art reports and catalog search with relevance scoring.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from .database import ChartStatus, DatabaseManager, Patent, PriorArtReport
from .errors import InvalidFormatError, MissingFieldError, NotFoundError
from .hooks import HookEvent, HookFilter, HookRegistry

logger = logging.getLogger(__name__)

REPORT_FIELDS = ('title', 'references', 'analysis', 'status', 'created_by')
REPORT_STATUSES = tuple(s.value for s in ChartStatus)
SEARCH_LIMIT = 50
SNIPPET_LENGTH = 200

TITLE_MATCH_SCORE = 50
ABSTRACT_MATCH_SCORE = 30
AGE_SCORE_CAP = 20


def _as_date(value: Any, field: str) -> Optional[date]:
    if value in (None, ''):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise InvalidFormatError(f"Invalid date for {field}: {value}")


def score_references(references: List[Dict[str, Any]], keywords: str = '',
                     date_before=None) -> List[Dict[str, Any]]:
    """
    Set each reference's ``relevance``:

        +50 keywords found in the title
        +30 keywords found in the abstract
        +min(20, years filed before ``date_before`` * 2)

    and return them sorted by relevance, highest first.
    """
    needle = (keywords or '').strip().lower()
    cutoff = _as_date(date_before, 'date_before')

    for reference in references:
        score = 0.0
        if needle and needle in (reference.get('title') or '').lower():
            score += TITLE_MATCH_SCORE
        if needle and needle in (reference.get('abstract') or '').lower():
            score += ABSTRACT_MATCH_SCORE

        filed = _as_date(reference.get('filing_date'), 'filing_date')
        if cutoff and filed:
            years = (cutoff - filed).days / 365
            if years > 0:
                score += min(AGE_SCORE_CAP, years * 2)

        reference['relevance'] = round(score, 2)

    return sorted(references, key=lambda r: r['relevance'], reverse=True)


def overall_relevance(references: List[Dict[str, Any]]) -> float:
    """Highest reference relevance, clamped to [0, 100]"""
    scores = []
    for reference in references or []:
        try:
            scores.append(float(reference.get('relevance') or 0))
        except (TypeError, ValueError):
            continue
    if not scores:
        return 0.0
    return max(0.0, min(100.0, max(scores)))


def _validate_references(references: Any) -> List[Dict[str, Any]]:
    if references is None:
        return []
    if not isinstance(references, list) or not all(isinstance(r, dict) for r in references):
        raise InvalidFormatError("Prior art references must be a list of objects")
    return references


class PriorArtService:
    """Prior-art report CRUD plus catalog search"""

    def __init__(self, db: DatabaseManager, hooks: Optional[HookRegistry] = None):
        self.db = db
        self.hooks = hooks or db.hooks

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------
    def _prepare(self, data: Dict[str, Any]) -> Dict[str, Any]:
        report_data = {k: v for k, v in data.items() if k in REPORT_FIELDS}
        if 'title' in report_data:
            report_data['title'] = str(report_data['title'] or '').strip()
            if not report_data['title']:
                raise MissingFieldError('title')
        if 'status' in report_data:
            status = str(report_data['status'] or '').strip().lower()
            if status not in REPORT_STATUSES:
                raise InvalidFormatError(f"Invalid prior art report status: {report_data['status']}")
            report_data['status'] = status
        if 'references' in report_data:
            report_data['references'] = _validate_references(report_data['references'])
            report_data['relevance_score'] = overall_relevance(report_data['references'])
        return report_data

    def create_report(self, data: Dict[str, Any]) -> int:
        if not data.get('title'):
            raise MissingFieldError('title')
        report_data = self._prepare(data)
        report_data.setdefault('references', [])
        report_data.setdefault('relevance_score', 0.0)

        with self.db.session_scope() as session:
            target_id = data.get('target_patent_id')
            if not target_id or not session.get(Patent, target_id):
                raise NotFoundError("patent", target_id)
            report = PriorArtReport(target_patent_id=target_id, **report_data)
            session.add(report)
            session.flush()
            report_id = report.id

        logger.info(f"Created prior art report {report_id} for patent {target_id}")
        self.hooks.emit(HookEvent.PRIOR_ART_CREATED, report_id=report_id, data=report_data)
        return report_id

    def update_report(self, report_id: int, data: Dict[str, Any]) -> PriorArtReport:
        report_data = self._prepare(data)
        with self.db.session_scope() as session:
            report = session.get(PriorArtReport, report_id)
            if not report:
                raise NotFoundError("prior_art_report", report_id)
            for key, value in report_data.items():
                setattr(report, key, value)

        self.hooks.emit(HookEvent.PRIOR_ART_UPDATED, report_id=report_id, data=report_data)
        return report

    def delete_report(self, report_id: int) -> bool:
        with self.db.session_scope() as session:
            deleted = session.query(PriorArtReport).filter(PriorArtReport.id == report_id).delete()
        if deleted:
            self.hooks.emit(HookEvent.PRIOR_ART_DELETED, report_id=report_id)
        return deleted > 0

    def get_report(self, report_id: int) -> PriorArtReport:
        report = self.db.get_prior_art_report(report_id)
        if not report:
            raise NotFoundError("prior_art_report", report_id)
        return report

    def reports_for_patent(self, patent_id: int) -> List[PriorArtReport]:
        session = self.db.get_session()
        try:
            return (
                session.query(PriorArtReport)
                .filter(PriorArtReport.target_patent_id == patent_id)
                .order_by(PriorArtReport.created_at.desc(), PriorArtReport.id.desc())
                .all()
            )
        finally:
            session.close()

    def add_reference(self, report_id: int, reference: Dict[str, Any]) -> PriorArtReport:
        if not isinstance(reference, dict):
            raise InvalidFormatError("Reference must be an object")
        report = self.get_report(report_id)
        references = list(report.references or [])
        references.append(reference)
        return self.update_report(report_id, {'references': references})

    def remove_reference(self, report_id: int, index: int) -> PriorArtReport:
        """Drop the reference at ``index``; out-of-range indexes change nothing"""
        report = self.get_report(report_id)
        references = list(report.references or [])
        if 0 <= index < len(references):
            references.pop(index)
        return self.update_report(report_id, {'references': references})

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------
    def search(self, keywords: str = '', classification: str = '', date_before=None,
               limit: int = SEARCH_LIMIT) -> Dict[str, Any]:
        """Catalog search for candidate references, most relevant first"""
        cutoff = _as_date(date_before, 'date_before')

        session = self.db.get_session()
        try:
            query = session.query(Patent)
            if keywords:
                pattern = f"%{keywords}%"
                query = query.filter(Patent.title.ilike(pattern) | Patent.abstract.ilike(pattern))
            if classification:
                query = query.filter(Patent.classification.ilike(f"%{classification}%"))
            if cutoff:
                query = query.filter(Patent.filing_date < cutoff)
            patents = query.limit(limit).all()
        finally:
            session.close()

        references = [
            {
                'type': 'patent',
                'patent_number': p.patent_number,
                'title': p.title,
                'abstract': p.abstract or '',
                'snippet': (p.abstract or '')[:SNIPPET_LENGTH],
                'filing_date': p.filing_date.isoformat() if p.filing_date else None,
                'inventor': p.inventor,
                'relevance': 0,
            }
            for p in patents
        ]
        references = score_references(references, keywords, cutoff)
        results = {'total': len(references), 'references': references}

        return self.hooks.apply_filters(
            HookFilter.SEARCH_RESULTS, results,
            keywords=keywords, classification=classification, date_before=cutoff,
        )
