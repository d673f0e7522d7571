"""
SynPat Patent Analyzer
Claim parsing, strength scoring and stored patent analysis.

The strength score is a deterministic heuristic on a 0-100 scale built from
three capped sub-scores:

    claims      min(40, independent_claims * 10)
    citations   min(40, (forward * 2 + backward * 0.5) * 2)
    complexity  min(20, average per-claim complexity)

It makes no claim to reflect legal strength; it is a testable transform.
"""

import logging
import re
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .database import AnalysisStatus, DatabaseManager, ExpertAnalysis, Patent
from .errors import NotFoundError
from .hooks import HookEvent, HookRegistry

logger = logging.getLogger(__name__)

CLAIM_SCORE_CAP = 40
CITATION_SCORE_CAP = 40
COMPLEXITY_SCORE_CAP = 20

TECHNICAL_TERMS = (
    'apparatus', 'method', 'system', 'device', 'mechanism',
    'configured', 'coupled', 'comprising', 'plurality',
)

STRENGTH_ANALYSIS_TYPE = "strength"

# "1. A widget..." / "... a frame. 2. The widget..."; "... recited in claim 1." is not a boundary
CLAIM_BOUNDARY = re.compile(r'(?:^|(?<=\s))(?<![Cc]laim )(?<![Cc]laims )(\d+)\.\s+')
_CLAIM_REFERENCE = re.compile(r'claim\s+\d+', re.IGNORECASE)
_WORD = re.compile(r"[A-Za-z][A-Za-z'-]*")


def split_claims(claims_text: Optional[str]) -> List[Tuple[Optional[str], str]]:
    """
    ``(number, text)`` pieces of free claim text, in order.

    Text ahead of the first numbered claim comes back with number ``None``;
    empty pieces are dropped.
    """
    if not claims_text:
        return []
    pieces = []
    number, start = None, 0
    for match in CLAIM_BOUNDARY.finditer(claims_text):
        pieces.append((number, claims_text[start:match.start()]))
        number, start = match.group(1), match.end()
    pieces.append((number, claims_text[start:]))
    return [(n, text.strip()) for n, text in pieces if text.strip()]


def extract_claims(claims_text: Optional[str]) -> List[str]:
    """Split free claim text on number-dot boundaries, dropping empty pieces"""
    return [text for _, text in split_claims(claims_text)]


def is_independent_claim(claim: str) -> bool:
    """Independent claims don't reference other claims"""
    return not _CLAIM_REFERENCE.search(claim)


def count_words(text: str) -> int:
    return len(_WORD.findall(text))


def count_technical_terms(text: str) -> int:
    lowered = text.lower()
    return sum(lowered.count(term) for term in TECHNICAL_TERMS)


def claim_complexity(claim: str) -> float:
    lowered = claim.lower()
    nesting = lowered.count('wherein') + lowered.count('whereby')
    return count_words(claim) * 0.1 + count_technical_terms(claim) * 2 + nesting * 5


@dataclass
class ScoreBreakdown:
    """Strength score and the figures it was derived from"""
    total: float
    claim_score: float
    citation_score: float
    complexity_score: float
    total_claims: int
    independent_claims: int
    dependent_claims: int
    citation_impact: float
    average_complexity: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _field(patent: Any, name: str, default: Any = None) -> Any:
    if isinstance(patent, dict):
        value = patent.get(name, default)
    else:
        value = getattr(patent, name, default)
    return default if value is None else value


def score_patent(patent: Any) -> ScoreBreakdown:
    """
    Compute the strength score for a patent row, dataclass or mapping.

    Absent fields contribute zero; the result is always within [0, 100].
    """
    claims = extract_claims(_field(patent, 'claims', ''))
    independent = sum(1 for c in claims if is_independent_claim(c))
    dependent = len(claims) - independent

    forward = max(0, int(_field(patent, 'forward_citations', 0)))
    backward = max(0, int(_field(patent, 'backward_citations', 0)))
    citation_impact = forward * 2 + backward * 0.5

    average_complexity = 0.0
    if claims:
        average_complexity = round(sum(claim_complexity(c) for c in claims) / len(claims), 2)

    claim_score = min(CLAIM_SCORE_CAP, independent * 10)
    citation_score = min(CITATION_SCORE_CAP, citation_impact * 2)
    complexity_score = min(COMPLEXITY_SCORE_CAP, average_complexity)

    return ScoreBreakdown(
        total=round(claim_score + citation_score + complexity_score, 2),
        claim_score=float(claim_score),
        citation_score=float(citation_score),
        complexity_score=float(complexity_score),
        total_claims=len(claims),
        independent_claims=independent,
        dependent_claims=dependent,
        citation_impact=float(citation_impact),
        average_complexity=average_complexity,
    )


def extract_key_terms(text: str, limit: int = 10) -> List[str]:
    """Most frequent words of ``text``; ties keep first-seen order"""
    words = [w.lower() for w in _WORD.findall(text or '')]
    return [word for word, _ in Counter(words).most_common(limit)]


class PatentAnalyzer:
    """Runs, stores and compares patent strength analyses"""

    def __init__(self, db: DatabaseManager, hooks: Optional[HookRegistry] = None):
        self.db = db
        self.hooks = hooks or db.hooks
        # Lives as long as the analyzer (one request / one batch run)
        self._cache: Dict[int, Dict[str, Any]] = {}

    def analyze_patent(self, patent_id: int) -> Dict[str, Any]:
        """Perform a full analysis, store it and notify subscribers"""
        patent = self.db.get_patent(patent_id)
        if not patent:
            raise NotFoundError("patent", patent_id)

        breakdown = score_patent(patent)
        analysis = {
            'patent_id': patent.id,
            'patent_number': patent.patent_number,
            'timestamp': datetime.utcnow().isoformat(),
            'claim_analysis': self._analyze_claims(patent),
            'prior_art_analysis': self._analyze_prior_art(patent),
            'technical_analysis': {
                'technology_class': patent.classification or '',
                'key_terms': extract_key_terms(f"{patent.title or ''} {patent.abstract or ''}"),
            },
            'citation_analysis': {
                'forward_citations': patent.forward_citations or 0,
                'backward_citations': patent.backward_citations or 0,
                'citation_score': breakdown.citation_impact,
            },
            'score_breakdown': breakdown.to_dict(),
            'strength_score': breakdown.total,
        }

        self._store_analysis(patent.id, analysis)
        self._cache[patent.id] = analysis
        logger.info(f"Analyzed {patent.patent_number}: strength {breakdown.total}")

        self.hooks.emit(HookEvent.ANALYSIS_COMPLETE, analysis=analysis)
        return analysis

    def _analyze_claims(self, patent: Patent) -> Dict[str, Any]:
        claims = extract_claims(patent.claims)
        independent = [c for c in claims if is_independent_claim(c)]
        total_words = sum(count_words(c) for c in claims)
        return {
            'total_claims': len(claims),
            'independent_claims': len(independent),
            'dependent_claims': len(claims) - len(independent),
            'claim_length_avg': round(total_words / len(claims), 2) if claims else 0,
            'complexity_score': (
                round(sum(claim_complexity(c) for c in claims) / len(claims), 2) if claims else 0
            ),
        }

    def _analyze_prior_art(self, patent: Patent) -> Dict[str, Any]:
        cited = [c for c in (patent.cited_patents or []) if isinstance(c, dict)]
        return {
            'cited_references': cited,
            'examiner_citations': [c for c in cited if c.get('source') == 'examiner'],
            'applicant_citations': [c for c in cited if c.get('source') == 'applicant'],
        }

    def _store_analysis(self, patent_id: int, analysis: Dict[str, Any]) -> None:
        with self.db.session_scope() as session:
            row = session.query(ExpertAnalysis).filter(
                ExpertAnalysis.patent_id == patent_id,
                ExpertAnalysis.analysis_type == STRENGTH_ANALYSIS_TYPE,
            ).first()
            if row is None:
                row = ExpertAnalysis(patent_id=patent_id, analysis_type=STRENGTH_ANALYSIS_TYPE)
                session.add(row)
            row.analysis_data = analysis
            row.strength_score = analysis['strength_score']
            row.status = AnalysisStatus.COMPLETED.value

            patent = session.get(Patent, patent_id)
            patent.strength_score = analysis['strength_score']

    def get_analysis(self, patent_id: int) -> Dict[str, Any]:
        """Cached or stored analysis; runs a fresh one when none exists"""
        if patent_id in self._cache:
            return self._cache[patent_id]

        session = self.db.get_session()
        try:
            row = session.query(ExpertAnalysis).filter(
                ExpertAnalysis.patent_id == patent_id,
                ExpertAnalysis.analysis_type == STRENGTH_ANALYSIS_TYPE,
                ExpertAnalysis.status == AnalysisStatus.COMPLETED.value,
            ).first()
        finally:
            session.close()

        if row is not None and row.analysis_data:
            self._cache[patent_id] = row.analysis_data
            return row.analysis_data
        return self.analyze_patent(patent_id)

    def get_portfolio_analysis(self, portfolio_id: int) -> Dict[str, Any]:
        if not self.db.get_portfolio(portfolio_id):
            raise NotFoundError("portfolio", portfolio_id)

        patents = self.db.get_portfolio_patents(portfolio_id)
        summary = {
            'portfolio_id': portfolio_id,
            'total_patents': len(patents),
            'analyzed_patents': 0,
            'avg_strength_score': 0,
            'patent_analyses': [],
        }

        total_score = 0.0
        for patent in patents:
            analysis = self.get_analysis(patent.id)
            summary['analyzed_patents'] += 1
            total_score += analysis.get('strength_score', 0)
            summary['patent_analyses'].append({
                'patent_id': patent.id,
                'patent_number': patent.patent_number,
                'strength_score': analysis.get('strength_score', 0),
            })

        if summary['analyzed_patents']:
            summary['avg_strength_score'] = round(total_score / summary['analyzed_patents'], 2)
        return summary

    def compare_patents(self, patent_ids: List[int]) -> Dict[str, Any]:
        comparison = {'patents': [], 'metrics': {}}

        for patent in self.db.get_patents(patent_ids):
            analysis = self.get_analysis(patent.id)
            comparison['patents'].append({
                'id': patent.id,
                'patent_number': patent.patent_number,
                'title': patent.title,
                'strength_score': analysis.get('strength_score', 0),
                'claim_count': analysis.get('claim_analysis', {}).get('total_claims', 0),
                'citation_score': analysis.get('citation_analysis', {}).get('citation_score', 0),
            })

        scores = [p['strength_score'] for p in comparison['patents']]
        if scores:
            comparison['metrics'] = {
                'highest_score': max(scores),
                'lowest_score': min(scores),
                'average_score': round(sum(scores) / len(scores), 2),
            }
        return comparison
