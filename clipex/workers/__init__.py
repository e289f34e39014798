"""Worker modules for the render pipeline."""

from .export import ExportWorker, ExportError, ExportTimeoutError
from .fetch import RemoteFetcher, FetchError, FetchTimeoutError
from .composition import CompositionPlan, ResolvedSources, plan_composition

__all__ = [
    "ExportWorker",
    "ExportError",
    "ExportTimeoutError",
    "RemoteFetcher",
    "FetchError",
    "FetchTimeoutError",
    "CompositionPlan",
    "ResolvedSources",
    "plan_composition",
]
