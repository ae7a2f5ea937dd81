"""copyparty-bridge - browse, upload and reorganize files on a copyparty server.

Example usage:
    import asyncio
    from pathlib import Path

    from copyparty_bridge import CopypartyClient, TransferQueue, collect_local_paths, resolve

    async def main():
        async with CopypartyClient.from_settings() as client:
            inventory = await client.list_folder("/inbox")
            candidates = await collect_local_paths([Path("photos")])
            plans = resolve(
                candidates, [f.name for f in inventory.files], "rename", "/inbox"
            )
            queue = TransferQueue(client, concurrency=4)
            await queue.enqueue(plans, "/inbox")
            await queue.join()

    asyncio.run(main())
"""

__version__ = "0.1.0"

from copyparty_bridge.client import CopypartyClient
from copyparty_bridge.collector import (
    LocalEntry,
    LocalFile,
    collect_directory_files,
    collect_dropped,
    collect_files,
    collect_local_paths,
)
from copyparty_bridge.config import Settings, get_settings
from copyparty_bridge.conflicts import find_conflicts, resolve, unique_name
from copyparty_bridge.connection import RemoteConnection, connection_from_settings
from copyparty_bridge.exceptions import (
    AlreadyExistsError,
    BatchOperationError,
    CopypartyError,
    DestinationRejectedError,
    MutationError,
    NetworkError,
    NotConfiguredError,
    PartialSuccessError,
    PermissionDeniedError,
    RequestTimeoutError,
    UpstreamUnavailableError,
    ValidationError,
)
from copyparty_bridge.listing import ListingClient
from copyparty_bridge.models import (
    ConflictStrategy,
    Inventory,
    InventoryEntry,
    PlannedUpload,
    TransferItem,
    TransferStatus,
    UploadCandidate,
)
from copyparty_bridge.mutations import MutationClient
from copyparty_bridge.transfers import TransferQueue

__all__ = [
    # Main client
    "CopypartyClient",
    "ListingClient",
    "MutationClient",
    "TransferQueue",
    "RemoteConnection",
    "connection_from_settings",
    "Settings",
    "get_settings",
    # Upload planning
    "collect_files",
    "collect_directory_files",
    "collect_dropped",
    "collect_local_paths",
    "LocalFile",
    "LocalEntry",
    "find_conflicts",
    "resolve",
    "unique_name",
    # Models
    "ConflictStrategy",
    "Inventory",
    "InventoryEntry",
    "PlannedUpload",
    "TransferItem",
    "TransferStatus",
    "UploadCandidate",
    # Exceptions
    "CopypartyError",
    "NotConfiguredError",
    "UpstreamUnavailableError",
    "RequestTimeoutError",
    "NetworkError",
    "ValidationError",
    "MutationError",
    "PermissionDeniedError",
    "DestinationRejectedError",
    "AlreadyExistsError",
    "PartialSuccessError",
    "BatchOperationError",
]
