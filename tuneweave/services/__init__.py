"""
Services Module

Collaborator contracts, feature provider registry, feature cache and
storage backends. The ``RecommendationService`` facade lives in
``tuneweave.services.recommendation_service``.
"""

from .collaborators import (
    CoreEndpoints,
    FeatureStore,
    LibraryCatalog,
    ModelStorage,
    TrainingLog,
    UserStore,
)
from .feature_cache import CachedFeatureStore
from .memory_stores import (
    InMemoryFeatureStore,
    InMemoryLibrary,
    InMemorySimilarityProvider,
    InMemoryTrainingLog,
    InMemoryUserStore,
    MemoryModelStorage,
    create_memory_endpoints,
    load_catalog,
)
from .model_storage import DiskModelStorage
from .provider_registry import (
    FeatureCapability,
    FeatureProvider,
    ProviderRegistry,
    RegistryFeatureStore,
)

__all__ = [
    # Collaborator contracts
    "CoreEndpoints",
    "FeatureStore",
    "LibraryCatalog",
    "ModelStorage",
    "TrainingLog",
    "UserStore",

    # Providers and caching
    "CachedFeatureStore",
    "FeatureCapability",
    "FeatureProvider",
    "ProviderRegistry",
    "RegistryFeatureStore",

    # Backends
    "DiskModelStorage",
    "InMemoryFeatureStore",
    "InMemoryLibrary",
    "InMemorySimilarityProvider",
    "InMemoryTrainingLog",
    "InMemoryUserStore",
    "MemoryModelStorage",
    "create_memory_endpoints",
    "load_catalog",
]
