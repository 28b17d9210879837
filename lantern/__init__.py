from lantern._config import OfflineConfig as OfflineConfig
from lantern._core._headers import Headers as Headers
from lantern._core._router import StrategyKind as StrategyKind, classify as classify
from lantern._core._storages._async_base import (
    AsyncBaseResponseStore as AsyncBaseResponseStore,
    AsyncBaseStructuredStore as AsyncBaseStructuredStore,
)
from lantern._core._storages._async_sqlite import (
    AsyncSqliteResponseStore as AsyncSqliteResponseStore,
    AsyncSqliteStructuredStore as AsyncSqliteStructuredStore,
)
from lantern._core._storages._sync_base import (
    SyncBaseResponseStore as SyncBaseResponseStore,
    SyncBaseStructuredStore as SyncBaseStructuredStore,
)
from lantern._core._storages._sync_sqlite import (
    SyncSqliteResponseStore as SyncSqliteResponseStore,
    SyncSqliteStructuredStore as SyncSqliteStructuredStore,
)
from lantern._core.models import (
    Generation as Generation,
    LifecycleState as LifecycleState,
    Request as Request,
    RequestMode as RequestMode,
    Response as Response,
    ResponseMetadata as ResponseMetadata,
    StructuredRecord as StructuredRecord,
)
from lantern._exceptions import (
    DecodeFailure as DecodeFailure,
    InstallAbort as InstallAbort,
    LanternError as LanternError,
    LifecycleError as LifecycleError,
    NetworkFailure as NetworkFailure,
    NonSuccessStatus as NonSuccessStatus,
    StoreMiss as StoreMiss,
    StoreReadFailure as StoreReadFailure,
    StoreWriteFailure as StoreWriteFailure,
)
from lantern._async_strategies import (
    AsyncBypass as AsyncBypass,
    AsyncCacheFirst as AsyncCacheFirst,
    AsyncNetworkFirstStructured as AsyncNetworkFirstStructured,
    AsyncOpportunisticCache as AsyncOpportunisticCache,
    AsyncStrategy as AsyncStrategy,
)
from lantern._sync_strategies import (
    SyncBypass as SyncBypass,
    SyncCacheFirst as SyncCacheFirst,
    SyncNetworkFirstStructured as SyncNetworkFirstStructured,
    SyncOpportunisticCache as SyncOpportunisticCache,
    SyncStrategy as SyncStrategy,
)
from lantern._async_lifecycle import AsyncLifecycleManager as AsyncLifecycleManager
from lantern._sync_lifecycle import SyncLifecycleManager as SyncLifecycleManager
from lantern._async_offline import AsyncOfflineProxy as AsyncOfflineProxy
from lantern._sync_offline import SyncOfflineProxy as SyncOfflineProxy

__version__ = "0.1.0"

__all__ = (
    # Configuration
    "OfflineConfig",
    ## Routing
    "StrategyKind",
    "classify",
    ## Models
    "Request",
    "RequestMode",
    "Response",
    "ResponseMetadata",
    "Generation",
    "StructuredRecord",
    "LifecycleState",
    ## Headers
    "Headers",
    ## Storages
    "AsyncBaseResponseStore",
    "AsyncBaseStructuredStore",
    "SyncBaseResponseStore",
    "SyncBaseStructuredStore",
    "AsyncSqliteResponseStore",
    "AsyncSqliteStructuredStore",
    "SyncSqliteResponseStore",
    "SyncSqliteStructuredStore",
    ## Strategies
    "AsyncStrategy",
    "AsyncBypass",
    "AsyncCacheFirst",
    "AsyncNetworkFirstStructured",
    "AsyncOpportunisticCache",
    "SyncStrategy",
    "SyncBypass",
    "SyncCacheFirst",
    "SyncNetworkFirstStructured",
    "SyncOpportunisticCache",
    # Lifecycle
    "AsyncLifecycleManager",
    "SyncLifecycleManager",
    # Proxy
    "AsyncOfflineProxy",
    "SyncOfflineProxy",
    # Errors
    "LanternError",
    "NetworkFailure",
    "NonSuccessStatus",
    "StoreMiss",
    "StoreReadFailure",
    "StoreWriteFailure",
    "DecodeFailure",
    "InstallAbort",
    "LifecycleError",
)
