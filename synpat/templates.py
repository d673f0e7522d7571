"""
SynPat Document Templates
Builds the HTML documents (portfolio, patent, claim chart) that the
PDF generator converts.
"""

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from html import escape
from typing import Any, Callable, Dict, List, Optional

from .hooks import HookFilter, HookRegistry

logger = logging.getLogger(__name__)


PDF_STYLES = """
    <style>
        body {
            font-family: 'Helvetica', 'Arial', sans-serif;
            font-size: 12pt;
            line-height: 1.6;
            color: #333;
            margin: 0;
            padding: 20px;
        }
        h1 {
            font-size: 24pt;
            color: #2c3e50;
            margin: 0 0 20px 0;
            padding-bottom: 10px;
            border-bottom: 2px solid #3498db;
        }
        h2 { font-size: 18pt; color: #2c3e50; margin: 20px 0 10px 0; }
        h3 { font-size: 14pt; color: #34495e; margin: 15px 0 8px 0; }
        .header { text-align: center; margin-bottom: 30px; }
        .logo { max-width: 200px; margin-bottom: 10px; }
        .section { margin-bottom: 25px; page-break-inside: avoid; }
        .metadata {
            background: #f8f9fa;
            padding: 15px;
            border-left: 4px solid #3498db;
            margin-bottom: 20px;
        }
        .metadata table td:first-child { font-weight: bold; width: 180px; }
        table { width: 100%; border-collapse: collapse; margin: 15px 0; }
        table th {
            background: #3498db;
            color: white;
            padding: 10px;
            text-align: left;
        }
        table td { padding: 8px; border-bottom: 1px solid #ddd; }
        table tr:nth-child(even) { background: #f8f9fa; }
        .footer {
            text-align: center;
            font-size: 10pt;
            color: #7f8c8d;
            padding: 10px;
            border-top: 1px solid #ddd;
        }
        .page-break { page-break-after: always; }
        .claim-text { background: #fff; padding: 15px; border: 1px solid #ddd; margin: 10px 0; }
        .note {
            background: #e3f2fd;
            padding: 10px;
            border-left: 4px solid #2196f3;
            margin: 10px 0;
            font-style: italic;
        }
    </style>
"""


def _fmt_date(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.strftime('%B %d, %Y').replace(' 0', ' ')
    return str(value) if value else ''


def _fmt_money(value: Any) -> str:
    try:
        return f"${Decimal(str(value)):,.2f}"
    except (InvalidOperation, ValueError, TypeError):
        return ''


def _trim_words(text: Optional[str], limit: int) -> str:
    words = (text or '').split()
    if len(words) <= limit:
        return ' '.join(words)
    return ' '.join(words[:limit]) + '&hellip;'


def _paragraphs(text: Optional[str]) -> str:
    """Escaped text with blank-line separated paragraphs"""
    blocks = [b.strip() for b in (text or '').replace('\r\n', '\n').split('\n\n')]
    return ''.join(f"<p>{escape(b).replace(chr(10), '<br>')}</p>" for b in blocks if b)


def _metadata_table(rows: List[tuple]) -> str:
    cells = ''.join(
        f"<tr><td>{escape(label)}</td><td>{value}</td></tr>"
        for label, value in rows if value not in (None, '')
    )
    return f"<table>{cells}</table>"


class DocumentTemplates:
    """Named HTML templates: header + metadata table + body sections + footer"""

    def __init__(self, hooks: Optional[HookRegistry] = None, footer_text: Optional[str] = None):
        self.hooks = hooks or HookRegistry()
        self.footer_text = footer_text or "Confidential - Generated by SynPat"
        self._templates: Dict[str, Callable[..., str]] = {
            'portfolio': self.render_portfolio,
            'patent': self.render_patent,
            'claim_chart': self.render_claim_chart,
        }

    @property
    def names(self) -> List[str]:
        return list(self._templates)

    def has_template(self, name: str) -> bool:
        return name in self._templates

    def render(self, template_name: str, **data) -> str:
        """Render a named template and pass the result through PDF_TEMPLATE filters"""
        html = self._templates[template_name](**data)
        return self.hooks.apply_filters(HookFilter.PDF_TEMPLATE, html, template_name=template_name)

    # ------------------------------------------------------------------
    # Shared blocks
    # ------------------------------------------------------------------
    def styles(self) -> str:
        return self.hooks.apply_filters(HookFilter.PDF_STYLES, PDF_STYLES)

    def header(self, title: str) -> str:
        logo_url = self.hooks.apply_filters(HookFilter.PDF_LOGO_URL, '')
        logo = f'<img src="{escape(logo_url)}" alt="Logo" class="logo" />' if logo_url else ''
        generated = datetime.now().strftime('%B %d, %Y %H:%M')
        return f"""
    <div class="header">
        {logo}
        <h1>{escape(title)}</h1>
        <div class="generated-date">Generated: {generated}</div>
    </div>
"""

    def footer(self) -> str:
        text = self.hooks.apply_filters(HookFilter.PDF_FOOTER_TEXT, self.footer_text)
        return f'\n    <div class="footer">{escape(text)}</div>\n'

    def _document(self, title: str, body: str) -> str:
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>{escape(title)}</title>
{self.styles()}
</head>
<body>
{self.header(title)}
{body}
{self.footer()}
</body>
</html>
"""

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------
    def render_portfolio(self, portfolio, patents=None, **_) -> str:
        patents = patents or []
        html = f"""
    <div class="section metadata">
        <h2>Portfolio Overview</h2>
        {_metadata_table([
            ('Portfolio ID', escape(str(portfolio.id))),
            ('Total Patents', escape(str(portfolio.n_patents or 0))),
            ('Essential Patents', escape(str(portfolio.essential_count or 0))),
            ('Current Licensees', escape(str(portfolio.licensee_count or 0))),
            ('Upfront Fee', _fmt_money(portfolio.upfront_fee) if portfolio.upfront_fee else ''),
            ('Status', escape((portfolio.status or 'active').capitalize())),
        ])}
    </div>
"""
        if portfolio.description:
            html += f"""
    <div class="section">
        <h2>Description</h2>
        <div class="content">{_paragraphs(portfolio.description)}</div>
    </div>
"""
        if patents:
            rows = ''.join(
                f"<tr><td>{escape(p.patent_number)}</td>"
                f"<td>{_trim_words(escape(p.title or ''), 10)}</td>"
                f"<td>{escape((p.status or 'active').capitalize())}</td>"
                f"<td>{escape(_fmt_date(p.filing_date))}</td></tr>"
                for p in patents
            )
            html += f"""
    <div class="section">
        <h2>Patent List</h2>
        <table>
            <thead><tr><th>Patent Number</th><th>Title</th><th>Status</th><th>Filing Date</th></tr></thead>
            <tbody>{rows}</tbody>
        </table>
    </div>
    <div class="page-break"></div>
    <div class="section">
        <h2>Detailed Patent Information</h2>
"""
            for index, patent in enumerate(patents):
                if index > 0:
                    html += '        <div class="page-break"></div>\n'
                abstract = ''
                if patent.abstract:
                    abstract = f"<p>{_trim_words(escape(patent.abstract), 100)}</p>"
                html += f"""
        <div class="patent-detail">
            <h3>{escape(patent.patent_number)} - {escape(patent.title or '')}</h3>
            <div class="metadata">
                {abstract}
                {_metadata_table([
                    ('Inventors', escape(patent.inventor or '')),
                    ('Assignee', escape(patent.assignee or '')),
                    ('Classification', escape(patent.classification or '')),
                ])}
            </div>
        </div>
"""
            html += "    </div>\n"

        return self._document(portfolio.title, html)

    def render_patent(self, patent, claim_charts=None, **_) -> str:
        claim_charts = claim_charts or []
        title = f"{patent.patent_number} - Patent Details"
        html = f"""
    <div class="section metadata">
        <h2>Patent Information</h2>
        {_metadata_table([
            ('Patent Number', escape(patent.patent_number)),
            ('Title', escape(patent.title or '')),
            ('Filing Date', escape(_fmt_date(patent.filing_date))),
            ('Grant Date', escape(_fmt_date(patent.grant_date))),
            ('Expiration Date', escape(_fmt_date(patent.expiration_date))),
            ('Status', escape((patent.status or '').capitalize())),
            ('Forward Citations', escape(str(patent.forward_citations or 0))),
            ('Backward Citations', escape(str(patent.backward_citations or 0))),
            ('Strength Score', '' if patent.strength_score is None else f"{patent.strength_score:.2f}"),
        ])}
    </div>
"""
        for heading, value in (('Inventors', patent.inventor), ('Assignee', patent.assignee)):
            if value:
                html += f'\n    <div class="section"><h2>{heading}</h2><p>{escape(value)}</p></div>\n'

        if patent.abstract:
            html += f"""
    <div class="section">
        <h2>Abstract</h2>
        <div class="content">{_paragraphs(patent.abstract)}</div>
    </div>
"""
        if patent.classification:
            html += f"""
    <div class="section">
        <h2>Classifications</h2>
        {_metadata_table([('Classification', escape(patent.classification))])}
    </div>
"""
        if patent.claims:
            html += f"""
    <div class="page-break"></div>
    <div class="section">
        <h2>Claims</h2>
        <div class="claim-text">{_paragraphs(patent.claims)}</div>
    </div>
"""
        html += '\n    <div class="section">\n        <h2>Claim Charts</h2>\n'
        if claim_charts:
            rows = ''.join(
                f"<tr><td>{chart.id}</td><td>{escape(chart.title or '')}</td>"
                f"<td>{escape(chart.claim_number or 'N/A')}</td>"
                f"<td>{escape(_fmt_date(chart.created_at))}</td></tr>"
                for chart in claim_charts
            )
            html += f"""        <table>
            <thead><tr><th>Chart ID</th><th>Title</th><th>Claim Number</th><th>Created</th></tr></thead>
            <tbody>{rows}</tbody>
        </table>
"""
        else:
            html += '        <div class="note">No claim charts have been prepared for this patent.</div>\n'
        html += '    </div>\n'

        return self._document(title, html)

    def render_claim_chart(self, claim_chart, patent=None, **_) -> str:
        patent_label = patent.patent_number if patent is not None else str(claim_chart.patent_id)
        html = f"""
    <div class="section metadata">
        <h2>Claim Chart Information</h2>
        {_metadata_table([
            ('Chart ID', escape(str(claim_chart.id))),
            ('Patent', escape(patent_label)),
            ('Claim Number', escape(claim_chart.claim_number or '')),
            ('Status', escape((claim_chart.status or '').capitalize())),
            ('Created', escape(_fmt_date(claim_chart.created_at))),
        ])}
    </div>
"""
        if claim_chart.claim_text:
            html += f"""
    <div class="section">
        <h2>Claim Text</h2>
        <div class="claim-text">{_paragraphs(claim_chart.claim_text)}</div>
    </div>
"""
        if claim_chart.product_description:
            html += f"""
    <div class="section">
        <h2>Product Description</h2>
        <div class="content">{_paragraphs(claim_chart.product_description)}</div>
    </div>
"""
        mapping = claim_chart.mapping or []
        html += '\n    <div class="section">\n        <h2>Claim Chart Mapping</h2>\n'
        if mapping:
            rows = ''.join(
                f"<tr><td>{escape(str(row.get('element', '')))}</td>"
                f"<td>{escape(str(row.get('feature', '')))}</td>"
                f"<td>{escape(str(row.get('analysis', '')))}</td></tr>"
                for row in mapping if isinstance(row, dict)
            )
            html += f"""        <table>
            <thead><tr><th>Claim Element</th><th>Product Feature</th><th>Analysis</th></tr></thead>
            <tbody>{rows}</tbody>
        </table>
"""
        else:
            html += '        <div class="note">No mapping data available.</div>\n'
        html += '    </div>\n'

        return self._document(claim_chart.title or 'Claim Chart Analysis', html)
