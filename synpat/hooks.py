"""
SynPat Hook Registry
Named extension points that addons subscribe to at startup.

Events are fire-and-forget notifications (analytics logging, integrations);
filters transform a value on its way through a component (templates, styles,
search results).
"""

import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class HookEvent(Enum):
    DOCUMENT_GENERATED = "document_generated"
    DOCUMENTS_MERGED = "documents_merged"
    ANALYSIS_COMPLETE = "analysis_complete"
    PORTFOLIO_CREATED = "portfolio_created"
    PATENT_IMPORTED = "patent_imported"
    CLAIM_CHART_CREATED = "claim_chart_created"
    CLAIM_CHART_UPDATED = "claim_chart_updated"
    CLAIM_CHART_DELETED = "claim_chart_deleted"
    PRIOR_ART_CREATED = "prior_art_created"
    PRIOR_ART_UPDATED = "prior_art_updated"
    PRIOR_ART_DELETED = "prior_art_deleted"
    BATCH_JOB_COMPLETED = "batch_job_completed"


class HookFilter(Enum):
    PDF_TEMPLATE = "pdf_template"
    PDF_STYLES = "pdf_styles"
    PDF_FOOTER_TEXT = "pdf_footer_text"
    PDF_LOGO_URL = "pdf_logo_url"
    SEARCH_RESULTS = "search_results"


class HookRegistry:
    """Registry of event subscribers, value filters and addon modules"""

    def __init__(self):
        self._subscribers: Dict[HookEvent, List[Callable[..., Any]]] = defaultdict(list)
        self._filters: Dict[HookFilter, List[Callable[..., Any]]] = defaultdict(list)
        self._modules: Dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def subscribe(self, event: HookEvent, handler: Callable[..., Any]) -> None:
        self._subscribers[event].append(handler)

    def unsubscribe(self, event: HookEvent, handler: Callable[..., Any]) -> None:
        if handler in self._subscribers[event]:
            self._subscribers[event].remove(handler)

    def emit(self, event: HookEvent, **payload) -> None:
        """Notify every subscriber. A failing handler never reaches the caller."""
        for handler in list(self._subscribers[event]):
            try:
                handler(**payload)
            except Exception as e:
                logger.warning(f"Hook handler {getattr(handler, '__name__', handler)!r} "
                               f"failed for {event.value}: {e}")

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------
    def add_filter(self, name: HookFilter, handler: Callable[..., Any]) -> None:
        self._filters[name].append(handler)

    def apply_filters(self, name: HookFilter, value: Any, **context) -> Any:
        """Run ``value`` through every filter in registration order"""
        for handler in self._filters[name]:
            value = handler(value, **context)
        return value

    # ------------------------------------------------------------------
    # Addon modules
    # ------------------------------------------------------------------
    def register_module(self, name: str, module: Any) -> None:
        logger.info(f"Registered addon module: {name}")
        self._modules[name] = module

    def is_module_active(self, name: str) -> bool:
        return name in self._modules

    def registered_modules(self) -> Dict[str, Any]:
        return dict(self._modules)
