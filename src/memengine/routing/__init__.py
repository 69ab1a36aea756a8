"""Category routing for memengine."""

from memengine.routing.analysis import HeuristicAnalyzer, SemanticAnalysis
from memengine.routing.router import (
    CategoryRouter,
    ClassificationStrategy,
    DomainStrategy,
    HeuristicStrategy,
)
from memengine.routing.taxonomy import CATEGORIES, CATEGORY_NAMES, FALLBACK_CATEGORY

__all__ = [
    "CATEGORIES",
    "CATEGORY_NAMES",
    "FALLBACK_CATEGORY",
    "CategoryRouter",
    "ClassificationStrategy",
    "DomainStrategy",
    "HeuristicAnalyzer",
    "HeuristicStrategy",
    "SemanticAnalysis",
]
