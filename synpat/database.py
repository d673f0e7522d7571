"""
SynPat Database Models
SQLAlchemy ORM models for the patent portfolio licensing catalog,
plus the repository the document and analysis components read through.
"""

import enum
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean, Text, Date, DateTime,
    ForeignKey, JSON, Float, Numeric, UniqueConstraint, func,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from .errors import NotFoundError
from .hooks import HookEvent, HookRegistry

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


class PortfolioStatus(enum.Enum):
    ACTIVE = "active"
    PENDING = "pending"
    ARCHIVED = "archived"


class ChartStatus(enum.Enum):
    DRAFT = "draft"
    REVIEW = "review"
    PUBLISHED = "published"


class AnalysisStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class JobStatus(enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SerializeMixin:
    """Plain-dict view of a row for exports and JSON snapshots"""

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            elif isinstance(value, Decimal):
                value = float(value)
            data[column.name] = value
        return data


class Patent(SerializeMixin, Base):
    """Individual patent record"""
    __tablename__ = 'patents'

    id = Column(Integer, primary_key=True, autoincrement=True)
    patent_number = Column(String(50), nullable=False, unique=True, index=True)
    title = Column(String(500), nullable=False)
    abstract = Column(Text, nullable=True)
    # Free text, claims loosely delimited by "1.", "2." prefixes
    claims = Column(Text, nullable=True)
    assignee = Column(String(255), nullable=True, index=True)
    inventor = Column(String(255), nullable=True)
    classification = Column(String(255), nullable=True)
    filing_date = Column(Date, nullable=True)
    grant_date = Column(Date, nullable=True)
    expiration_date = Column(Date, nullable=True)
    forward_citations = Column(Integer, default=0)
    backward_citations = Column(Integer, default=0)
    # List of {"patent_number": ..., "source": "examiner" | "applicant"}
    cited_patents = Column(JSON, nullable=True)
    status = Column(String(50), default="active")
    # Derived by analysis
    strength_score = Column(Float, nullable=True)

    portfolio_links = relationship("PortfolioPatent", back_populates="patent", cascade="all, delete-orphan")
    claim_charts = relationship("ClaimChart", back_populates="patent", cascade="all, delete-orphan")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Portfolio(SerializeMixin, Base):
    """Licensing portfolio; patent counters are maintained on every join write"""
    __tablename__ = 'portfolios'

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    n_patents = Column(Integer, default=0)
    essential_count = Column(Integer, default=0)
    licensee_count = Column(Integer, default=0)
    upfront_fee = Column(Numeric(15, 2), default=0)
    status = Column(String(50), default=PortfolioStatus.ACTIVE.value, index=True)

    patent_links = relationship("PortfolioPatent", back_populates="portfolio",
                                cascade="all, delete-orphan",
                                order_by="PortfolioPatent.display_order")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PortfolioPatent(Base):
    """Ordered Portfolio <-> Patent join"""
    __tablename__ = 'portfolio_patents'
    __table_args__ = (UniqueConstraint('portfolio_id', 'patent_id', name='uq_portfolio_patent'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    portfolio_id = Column(Integer, ForeignKey('portfolios.id'), nullable=False, index=True)
    patent_id = Column(Integer, ForeignKey('patents.id'), nullable=False, index=True)
    display_order = Column(Integer, default=0)
    is_essential = Column(Boolean, default=False)

    portfolio = relationship("Portfolio", back_populates="patent_links")
    patent = relationship("Patent", back_populates="portfolio_links")

    created_at = Column(DateTime, default=datetime.utcnow)


class ClaimChart(SerializeMixin, Base):
    """Maps claim elements of one patent to product features"""
    __tablename__ = 'claim_charts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    patent_id = Column(Integer, ForeignKey('patents.id'), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    claim_number = Column(String(20), nullable=True)
    claim_text = Column(Text, nullable=True)
    product_description = Column(Text, nullable=True)
    # List of {"element": ..., "feature": ..., "analysis": ...}
    mapping = Column(JSON, nullable=True)
    status = Column(String(50), default=ChartStatus.DRAFT.value, index=True)
    created_by = Column(Integer, nullable=True)

    patent = relationship("Patent", back_populates="claim_charts")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PriorArtReport(SerializeMixin, Base):
    """Catalogue of references relevant to one target patent"""
    __tablename__ = 'prior_art_reports'

    id = Column(Integer, primary_key=True, autoincrement=True)
    target_patent_id = Column(Integer, ForeignKey('patents.id'), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    # Ordered list of {"type", "patent_number", "title", "snippet", "relevance"}
    references = Column(JSON, nullable=True)
    analysis = Column(Text, nullable=True)
    relevance_score = Column(Float, default=0.0)
    status = Column(String(50), default=ChartStatus.DRAFT.value)
    created_by = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ExpertAnalysis(SerializeMixin, Base):
    """Stored analysis for a patent or portfolio"""
    __tablename__ = 'expert_analysis'

    id = Column(Integer, primary_key=True, autoincrement=True)
    patent_id = Column(Integer, ForeignKey('patents.id'), nullable=True, index=True)
    portfolio_id = Column(Integer, ForeignKey('portfolios.id'), nullable=True, index=True)
    analysis_type = Column(String(100), nullable=True, index=True)
    content = Column(Text, nullable=True)
    analysis_data = Column(JSON, nullable=True)
    strength_score = Column(Float, default=0.0)
    status = Column(String(20), default=AnalysisStatus.PENDING.value)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class BatchJob(SerializeMixin, Base):
    """Background batch job; fire-and-forget, no retry"""
    __tablename__ = 'batch_jobs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), unique=True, default=generate_uuid)
    job_type = Column(String(50), nullable=False)
    params = Column(JSON, nullable=True)
    status = Column(String(20), default=JobStatus.PENDING.value, index=True)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    run_after = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)


class ImportLog(SerializeMixin, Base):
    """One row per file/API import run"""
    __tablename__ = 'import_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(String(255), nullable=True)
    total_records = Column(Integer, default=0)
    imported = Column(Integer, default=0)
    skipped = Column(Integer, default=0)
    errors = Column(JSON, nullable=True)
    imported_at = Column(DateTime, default=datetime.utcnow)


class ReportArchive(SerializeMixin, Base):
    """Snapshot of each generated catalog report"""
    __tablename__ = 'report_archive'

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_type = Column(String(50), nullable=False)
    data_snapshot = Column(JSON, nullable=True)
    generated_by = Column(Integer, nullable=True)
    generated_at = Column(DateTime, default=datetime.utcnow)


PORTFOLIO_FIELDS = ('title', 'description', 'licensee_count', 'upfront_fee', 'status')


class DatabaseManager:
    """Manages database connections, sessions and the catalog repository"""

    def __init__(self, db_path: str, hooks: Optional[HookRegistry] = None):
        url = db_path if '://' in db_path else f'sqlite:///{db_path}'
        self.engine = create_engine(url, echo=False)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.hooks = hooks or HookRegistry()

    def get_session(self):
        return self.Session()

    @contextmanager
    def session_scope(self) -> Iterator:
        """Transactional scope: commit on success, roll back on error"""
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self):
        Base.metadata.create_all(self.engine)

    def drop_tables(self):
        Base.metadata.drop_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_patent(self, patent_id: int) -> Optional[Patent]:
        session = self.Session()
        try:
            return session.get(Patent, patent_id)
        finally:
            session.close()

    def get_patent_by_number(self, patent_number: str) -> Optional[Patent]:
        session = self.Session()
        try:
            return session.query(Patent).filter(Patent.patent_number == patent_number).first()
        finally:
            session.close()

    def get_patents(self, patent_ids: List[int]) -> List[Patent]:
        """Patents for ``patent_ids`` in the given order; unknown ids are dropped"""
        session = self.Session()
        try:
            rows = session.query(Patent).filter(Patent.id.in_(patent_ids)).all()
            by_id = {p.id: p for p in rows}
            return [by_id[pid] for pid in patent_ids if pid in by_id]
        finally:
            session.close()

    def get_portfolio(self, portfolio_id: int) -> Optional[Portfolio]:
        session = self.Session()
        try:
            return session.get(Portfolio, portfolio_id)
        finally:
            session.close()

    def get_portfolios(self, status: Optional[str] = PortfolioStatus.ACTIVE.value,
                       limit: int = 20, offset: int = 0) -> List[Portfolio]:
        session = self.Session()
        try:
            query = session.query(Portfolio)
            if status:
                query = query.filter(Portfolio.status == status)
            return query.order_by(Portfolio.id.desc()).limit(limit).offset(offset).all()
        finally:
            session.close()

    def get_portfolio_patents(self, portfolio_id: int) -> List[Patent]:
        """Patents of a portfolio in join-table order"""
        session = self.Session()
        try:
            return (
                session.query(Patent)
                .join(PortfolioPatent, PortfolioPatent.patent_id == Patent.id)
                .filter(PortfolioPatent.portfolio_id == portfolio_id)
                .order_by(PortfolioPatent.display_order, PortfolioPatent.id)
                .all()
            )
        finally:
            session.close()

    def get_claim_chart(self, chart_id: int) -> Optional[ClaimChart]:
        session = self.Session()
        try:
            return session.get(ClaimChart, chart_id)
        finally:
            session.close()

    def get_patent_claim_charts(self, patent_id: int) -> List[ClaimChart]:
        session = self.Session()
        try:
            return (
                session.query(ClaimChart)
                .filter(ClaimChart.patent_id == patent_id)
                .order_by(ClaimChart.created_at.desc(), ClaimChart.id.desc())
                .all()
            )
        finally:
            session.close()

    def get_prior_art_report(self, report_id: int) -> Optional[PriorArtReport]:
        session = self.Session()
        try:
            return session.get(PriorArtReport, report_id)
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create_portfolio(self, data: Dict[str, Any]) -> int:
        with self.session_scope() as session:
            portfolio = Portfolio(**{k: v for k, v in data.items() if k in PORTFOLIO_FIELDS})
            session.add(portfolio)
            session.flush()
            portfolio_id = portfolio.id
        self.hooks.emit(HookEvent.PORTFOLIO_CREATED, portfolio_id=portfolio_id)
        return portfolio_id

    def update_portfolio(self, portfolio_id: int, data: Dict[str, Any]) -> Portfolio:
        with self.session_scope() as session:
            portfolio = session.get(Portfolio, portfolio_id)
            if not portfolio:
                raise NotFoundError("portfolio", portfolio_id)
            for key, value in data.items():
                if key in PORTFOLIO_FIELDS:
                    setattr(portfolio, key, value)
            return portfolio

    def add_patent_to_portfolio(self, portfolio_id: int, patent_id: int,
                                display_order: Optional[int] = None,
                                is_essential: bool = False) -> None:
        """Link a patent to a portfolio (idempotent) and refresh the counters"""
        with self.session_scope() as session:
            portfolio = session.get(Portfolio, portfolio_id)
            if not portfolio:
                raise NotFoundError("portfolio", portfolio_id)
            if not session.get(Patent, patent_id):
                raise NotFoundError("patent", patent_id)

            link = session.query(PortfolioPatent).filter_by(
                portfolio_id=portfolio_id, patent_id=patent_id
            ).first()
            if link is None:
                if display_order is None:
                    current_max = session.query(func.max(PortfolioPatent.display_order)).filter(
                        PortfolioPatent.portfolio_id == portfolio_id
                    ).scalar()
                    display_order = 0 if current_max is None else current_max + 1
                link = PortfolioPatent(portfolio_id=portfolio_id, patent_id=patent_id,
                                       display_order=display_order)
                session.add(link)
            elif display_order is not None:
                link.display_order = display_order
            link.is_essential = is_essential
            session.flush()
            self._refresh_counts(session, portfolio)

    def remove_patent_from_portfolio(self, portfolio_id: int, patent_id: int) -> bool:
        with self.session_scope() as session:
            portfolio = session.get(Portfolio, portfolio_id)
            if not portfolio:
                raise NotFoundError("portfolio", portfolio_id)
            deleted = session.query(PortfolioPatent).filter_by(
                portfolio_id=portfolio_id, patent_id=patent_id
            ).delete()
            session.flush()
            self._refresh_counts(session, portfolio)
            return deleted > 0

    def reconcile_portfolio_counts(self) -> int:
        """Repair counter drift from writes that bypassed the repository.

        Returns the number of portfolios whose counters changed.
        """
        changed = 0
        with self.session_scope() as session:
            for portfolio in session.query(Portfolio).all():
                before = (portfolio.n_patents, portfolio.essential_count)
                self._refresh_counts(session, portfolio)
                if before != (portfolio.n_patents, portfolio.essential_count):
                    changed += 1
        return changed

    @staticmethod
    def _refresh_counts(session, portfolio: Portfolio) -> None:
        base = session.query(PortfolioPatent).filter(PortfolioPatent.portfolio_id == portfolio.id)
        portfolio.n_patents = base.count()
        portfolio.essential_count = base.filter(PortfolioPatent.is_essential.is_(True)).count()
