"""k1s0 flagstore library."""

from .caching import CachingStoreWrapper
from .changeset import (
    Basis,
    Change,
    ChangeSet,
    ChangeSetBuilder,
    ChangeType,
    IntentCode,
    Selector,
    Update,
)
from .config import DataStoreMode, DataSystemConfig, PersistenceSection, parse_config
from .datasystem import DataAvailability, DataSystem
from .dependency_tracker import DependencyTracker
from .evaluation import EvalErrorKind, EvaluationDetail, EvaluationReason, ReasonKind
from .exceptions import FlagStoreError, FlagStoreErrorCodes
from .flag_tracker import FlagChange, FlagTracker, FlagValueChange
from .interfaces import (
    FeatureStore,
    Initializer,
    PersistentStoreCore,
    ReadOnlyStore,
    Result,
    SelectorStore,
    Synchronizer,
)
from .kinds import DataKind, KindAndKey, ObjectKind
from .listeners import Listeners
from .memory import InMemoryFeatureStore
from .models import FeatureFlag, Segment
from .reference import Reference
from .serialization import deserialize, make_all_store_data, serialize
from .status import (
    DataSourceErrorInfo,
    DataSourceErrorKind,
    DataSourceState,
    DataSourceStatus,
    DataSourceStatusProvider,
    DataStoreStatus,
    DataStoreStatusProvider,
    StatusProvider,
)
from .store import ActiveStore, Store
from .test_data import TestData, TestDataSource
from .wrapper import StoreAvailabilityWrapper

__all__ = [
    "ActiveStore",
    "Basis",
    "CachingStoreWrapper",
    "Change",
    "ChangeSet",
    "ChangeSetBuilder",
    "ChangeType",
    "DataAvailability",
    "DataKind",
    "DataSourceErrorInfo",
    "DataSourceErrorKind",
    "DataSourceState",
    "DataSourceStatus",
    "DataSourceStatusProvider",
    "DataStoreMode",
    "DataStoreStatus",
    "DataStoreStatusProvider",
    "DataSystem",
    "DataSystemConfig",
    "DependencyTracker",
    "EvalErrorKind",
    "EvaluationDetail",
    "EvaluationReason",
    "FeatureFlag",
    "FeatureStore",
    "FlagChange",
    "FlagStoreError",
    "FlagStoreErrorCodes",
    "FlagTracker",
    "FlagValueChange",
    "InMemoryFeatureStore",
    "Initializer",
    "IntentCode",
    "KindAndKey",
    "Listeners",
    "ObjectKind",
    "PersistenceSection",
    "PersistentStoreCore",
    "ReadOnlyStore",
    "ReasonKind",
    "Reference",
    "Result",
    "Segment",
    "Selector",
    "SelectorStore",
    "StatusProvider",
    "Store",
    "StoreAvailabilityWrapper",
    "Synchronizer",
    "TestData",
    "TestDataSource",
    "Update",
    "deserialize",
    "make_all_store_data",
    "parse_config",
    "serialize",
]
