"""
SynPat - Patent Portfolio Licensing Catalog
Document rendering, strength scoring and expert tooling for patent portfolios
"""

from .config import build_config, load_config
from .database import DatabaseManager, Patent, Portfolio, ClaimChart, PriorArtReport, ExpertAnalysis
from .errors import SynPatError
from .hooks import HookEvent, HookFilter, HookRegistry
from .patent_analyzer import PatentAnalyzer, score_patent
from .pdf_generator import DocumentRenderer, GeneratedDocument
from .pdf_merger import DocumentMerger
from .data_import import DataImporter, validate_record
from .claim_chart import ClaimChartService
from .prior_art import PriorArtService
from .batch_processor import BatchProcessor
from .reporting import Reporting

__version__ = "1.0.0"
__all__ = [
    "build_config",
    "load_config",
    "DatabaseManager",
    "Patent",
    "Portfolio",
    "ClaimChart",
    "PriorArtReport",
    "ExpertAnalysis",
    "SynPatError",
    "HookEvent",
    "HookFilter",
    "HookRegistry",
    "PatentAnalyzer",
    "score_patent",
    "DocumentRenderer",
    "GeneratedDocument",
    "DocumentMerger",
    "DataImporter",
    "validate_record",
    "ClaimChartService",
    "PriorArtService",
    "BatchProcessor",
    "Reporting",
]
