"""Entity resolution: upstream strategies, fallback data and caching."""

from .chain import Outcome, OutcomeStatus, ResolverChain, ResolverStrategy
from .fallback import FallbackGenerator
from .cache import ResolutionCache
from .images import ImageUrlBuilder
from .resolver import EntityResolver, build_entity_resolver

__all__ = [
    "Outcome",
    "OutcomeStatus",
    "ResolverChain",
    "ResolverStrategy",
    "FallbackGenerator",
    "ResolutionCache",
    "ImageUrlBuilder",
    "EntityResolver",
    "build_entity_resolver",
]
