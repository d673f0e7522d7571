"""
SynPat Reporting
Catalog reports (portfolio overview, analysis summary, contributor activity,
trends), archived on generation and exportable as JSON or CSV.
"""

import csv
import json
import logging
import uuid
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func

from .config import build_config
from .database import (
    AnalysisStatus, ClaimChart, DatabaseManager, ExpertAnalysis, Patent,
    Portfolio, PortfolioStatus, PriorArtReport, ReportArchive,
)
from .errors import InvalidInputError, UnsupportedFormatError
from .pdf_generator import public_url

logger = logging.getLogger(__name__)

REPORT_FORMATS = ('json', 'csv')

# Inclusive lower bound, exclusive upper bound (high includes 100)
SCORE_RANGES = {
    'high': (80, 100.0001),
    'medium': (50, 80),
    'low': (0, 50),
}


def _month_start(day: date, months_back: int) -> date:
    index = day.year * 12 + (day.month - 1) - months_back
    return date(index // 12, index % 12 + 1, 1)


def _plain(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float):
        return round(value, 2)
    return value


class Reporting:
    """Compiles named reports from the catalog"""

    def __init__(self, db: DatabaseManager, config: Optional[Dict[str, Any]] = None):
        self.db = db
        self.config = config or build_config()
        self.report_dir = Path(self.config['paths']['report_folder'])
        self.report_url = self.config['storage'].get('report_url', '')
        self.generators: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            'portfolio_overview': self.compile_portfolio_overview,
            'analysis_summary': self.compile_analysis_summary,
            'user_activity': self.compile_user_activity,
            'trend_analysis': self.compile_trend_analysis,
        }

    @property
    def report_types(self) -> List[str]:
        return list(self.generators)

    def generate_report(self, report_type: str, criteria: Optional[Dict[str, Any]] = None,
                        generated_by: Optional[int] = None) -> Dict[str, Any]:
        """Compile a report and archive a snapshot of it"""
        if report_type not in self.generators:
            raise InvalidInputError(f"Unknown report type: {report_type}")

        report = self.generators[report_type](criteria or {})

        with self.db.session_scope() as session:
            session.add(ReportArchive(report_type=report_type, data_snapshot=report,
                                      generated_by=generated_by))
        logger.info(f"Generated {report_type} report")
        return report

    # ------------------------------------------------------------------
    # Compilers
    # ------------------------------------------------------------------
    def compile_portfolio_overview(self, criteria: Dict[str, Any]) -> Dict[str, Any]:
        end = criteria.get('end_date') or date.today()
        start = criteria.get('start_date') or (date.fromisoformat(str(end)) - timedelta(days=30))
        start_at = datetime.combine(date.fromisoformat(str(start)), datetime.min.time())
        end_at = datetime.combine(date.fromisoformat(str(end)), datetime.max.time())

        session = self.db.get_session()
        try:
            avg_size = session.query(func.avg(Portfolio.n_patents)).scalar()
            summary = {
                'total_portfolios': session.query(Portfolio).count(),
                'active_portfolios': session.query(Portfolio).filter(
                    Portfolio.status == PortfolioStatus.ACTIVE.value).count(),
                'total_patents': session.query(Patent).count(),
                'avg_portfolio_size': round(float(avg_size), 2) if avg_size is not None else 0,
            }
            top = (
                session.query(Portfolio)
                .order_by(Portfolio.upfront_fee.desc(), Portfolio.id)
                .limit(5).all()
            )
            recent = (
                session.query(Portfolio)
                .filter(Portfolio.created_at.between(start_at, end_at))
                .order_by(Portfolio.created_at.desc())
                .limit(10).all()
            )
        finally:
            session.close()

        return {
            'summary': summary,
            'top_performers': [
                {
                    'id': p.id,
                    'title': p.title,
                    'n_patents': p.n_patents or 0,
                    'essential_count': p.essential_count or 0,
                    'upfront_fee': float(p.upfront_fee or 0),
                }
                for p in top
            ],
            'recent_additions': [
                {'id': p.id, 'title': p.title, 'created_at': _plain(p.created_at)} for p in recent
            ],
        }

    def compile_analysis_summary(self, criteria: Dict[str, Any]) -> Dict[str, Any]:
        session = self.db.get_session()
        try:
            completed = session.query(ExpertAnalysis).filter(
                ExpertAnalysis.status == AnalysisStatus.COMPLETED.value).count()
            pending = session.query(ExpertAnalysis).filter(
                ExpertAnalysis.status == AnalysisStatus.PENDING.value).count()
            average = session.query(func.avg(ExpertAnalysis.strength_score)).scalar()

            distribution = {}
            for label, (low, high) in SCORE_RANGES.items():
                distribution[label] = session.query(ExpertAnalysis).filter(
                    ExpertAnalysis.strength_score >= low,
                    ExpertAnalysis.strength_score < high,
                ).count()
        finally:
            session.close()

        total = completed + pending
        return {
            'totals': {
                'completed': completed,
                'pending': pending,
                'average_score': round(float(average), 2) if average is not None else 0,
            },
            'score_distribution': distribution,
            'completion_rate': round(completed / total * 100, 2) if total else 0,
        }

    def compile_user_activity(self, criteria: Dict[str, Any]) -> Dict[str, Any]:
        session = self.db.get_session()
        try:
            chart_counts = dict(
                session.query(ClaimChart.created_by, func.count(ClaimChart.id))
                .filter(ClaimChart.created_by.isnot(None))
                .group_by(ClaimChart.created_by).all()
            )
            report_counts = dict(
                session.query(PriorArtReport.created_by, func.count(PriorArtReport.id))
                .filter(PriorArtReport.created_by.isnot(None))
                .group_by(PriorArtReport.created_by).all()
            )
            total_charts = session.query(ClaimChart).count()
            total_reports = session.query(PriorArtReport).count()
        finally:
            session.close()

        contributors = sorted(set(chart_counts) | set(report_counts))
        return {
            'active_users': [
                {
                    'user_id': user_id,
                    'charts_count': chart_counts.get(user_id, 0),
                    'reports_count': report_counts.get(user_id, 0),
                }
                for user_id in contributors
            ],
            'contribution_stats': {
                'total_charts': total_charts,
                'total_reports': total_reports,
                'unique_contributors': len(contributors),
            },
        }

    def compile_trend_analysis(self, criteria: Dict[str, Any]) -> Dict[str, Any]:
        """Portfolio and patent additions per month, oldest month first"""
        months_back = max(0, int(criteria.get('months', 6)))
        today = criteria.get('today') or date.today()

        monthly = []
        session = self.db.get_session()
        try:
            for i in range(months_back, -1, -1):
                start = _month_start(today, i)
                end = _month_start(today, i - 1)
                start_at = datetime.combine(start, datetime.min.time())
                end_at = datetime.combine(end, datetime.min.time())
                monthly.append({
                    'month': start.strftime('%b %Y'),
                    'additions': session.query(Portfolio).filter(
                        Portfolio.created_at >= start_at, Portfolio.created_at < end_at).count(),
                    'patents_added': session.query(Patent).filter(
                        Patent.created_at >= start_at, Patent.created_at < end_at).count(),
                })

            categories = (
                session.query(Patent.classification, func.count(Patent.id))
                .filter(Patent.classification.isnot(None), Patent.classification != '')
                .group_by(Patent.classification)
                .order_by(func.count(Patent.id).desc(), Patent.classification)
                .limit(10).all()
            )
        finally:
            session.close()

        return {
            'monthly_growth': monthly,
            'category_trends': [{'classification': c, 'patents': n} for c, n in categories],
        }

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    def export_report_data(self, report_data: Dict[str, Any], fmt: str = 'json') -> Dict[str, Any]:
        fmt = (fmt or '').lower()
        if fmt not in REPORT_FORMATS:
            raise UnsupportedFormatError(f"Export format not supported: {fmt}")

        self.report_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime('%Y%m%d%H%M%S')
        file_path = self.report_dir / f"report-{stamp}-{uuid.uuid4().hex[:6]}.{fmt}"

        if fmt == 'json':
            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(report_data, f, indent=2, default=_plain)
        else:
            self._write_csv(file_path, report_data)

        logger.info(f"Exported report to {file_path}")
        return {
            'file_path': str(file_path),
            'file_url': public_url(self.report_url, self.report_dir, file_path),
        }

    @staticmethod
    def _write_csv(file_path: Path, report_data: Dict[str, Any]) -> None:
        """One block per section: upper-cased title row, rows, blank separator"""
        with open(file_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            for section, content in report_data.items():
                writer.writerow([section.upper()])
                if isinstance(content, dict):
                    for key, value in content.items():
                        writer.writerow([key, _plain(value)])
                elif isinstance(content, list):
                    if content and isinstance(content[0], dict):
                        writer.writerow(list(content[0].keys()))
                    for row in content:
                        if isinstance(row, dict):
                            writer.writerow([_plain(v) for v in row.values()])
                        else:
                            writer.writerow([_plain(row)])
                else:
                    writer.writerow([_plain(content)])
                writer.writerow([])
