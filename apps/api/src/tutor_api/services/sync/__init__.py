from tutor_api.services.sync.cache import ResponseCache, StaleWhileRevalidate
from tutor_api.services.sync.gateway import FLUSH_QUEUE_TAG, OfflineGateway, build_gateway
from tutor_api.services.sync.lease import ReplayLease
from tutor_api.services.sync.queue import OfflineRequestQueue, QueueEntry
from tutor_api.services.sync.replay import ReplayCoordinator
from tutor_api.services.sync.transport import HttpxTransport, Transport
from tutor_api.services.sync.types import (
    GatewayResult,
    OutboundRequest,
    ReplaySummary,
    UpstreamResponse,
)

__all__ = [
    "FLUSH_QUEUE_TAG",
    "GatewayResult",
    "HttpxTransport",
    "OfflineGateway",
    "OfflineRequestQueue",
    "OutboundRequest",
    "QueueEntry",
    "ReplayCoordinator",
    "ReplayLease",
    "ReplaySummary",
    "ResponseCache",
    "StaleWhileRevalidate",
    "Transport",
    "UpstreamResponse",
    "build_gateway",
]
