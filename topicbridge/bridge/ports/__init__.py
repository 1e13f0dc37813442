# =============================================================================
# Bridge ports (Hexagonal Architecture)
# =============================================================================

from topicbridge.bridge.ports.destination_platform_port import DestinationPlatformPort
from topicbridge.bridge.ports.document_store_port import DocumentStorePort
from topicbridge.bridge.ports.source_platform_port import SourcePlatformPort, SourceProfile

__all__ = [
    "DestinationPlatformPort",
    "DocumentStorePort",
    "SourcePlatformPort",
    "SourceProfile",
]
