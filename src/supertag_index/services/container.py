"""
Services container for supertag-index.

Wires configuration, the index store and the services built on it so
callers get one consistently configured set of instances.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from supertag_index.core.config import SyncConfig, configure_logging, load_config
from supertag_index.infrastructure import IndexStore, create_index_store
from supertag_index.services.supertag_metadata import SupertagMetadataService
from supertag_index.services.sync_service import SyncService


@dataclass
class SyncServicesContainer:
    """
    Container holding the shared service instances.

    Attributes:
        config: Loaded configuration
        store: Index store with its schema ensured
        sync_service: Service applying exports to the store
        metadata_service: Read-side queries over supertag inheritance
    """

    config: SyncConfig
    store: IndexStore
    sync_service: SyncService
    metadata_service: SupertagMetadataService

    def close(self) -> None:
        self.store.close()


def create_services(
    config_path: Optional[Path] = None,
    db_path: Optional[Path] = None,
    setup_logging: bool = False,
) -> SyncServicesContainer:
    """
    Create and initialize all services.

    Args:
        config_path: Optional path to a YAML or JSON configuration file. If
                    None, uses environment variables and defaults.
        db_path: Optional database path overriding ``database.path``.
        setup_logging: Configure root logging from the logging section.

    Returns:
        SyncServicesContainer with all initialized services.

    Raises:
        MigrationError: If the store schema cannot be created or migrated.
    """
    config = load_config(config_path)
    if setup_logging:
        configure_logging(config.logging)

    store = create_index_store(db_path, config)

    return SyncServicesContainer(
        config=config,
        store=store,
        sync_service=SyncService(store, config),
        metadata_service=SupertagMetadataService(
            store.connection, max_depth=config.indexing.ancestor_max_depth
        ),
    )
