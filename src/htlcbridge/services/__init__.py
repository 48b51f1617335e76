"""Swap coordination services."""

from htlcbridge.services.coordinator import SwapCoordinator, SwapInitiation, SwapRequest
from htlcbridge.services.events import SwapEvent, SwapEventBus, SwapEventType
from htlcbridge.services.factory import Services, create_services
from htlcbridge.services.monitor import ExpiryMonitor

__all__ = [
    "ExpiryMonitor",
    "Services",
    "SwapCoordinator",
    "SwapEvent",
    "SwapEventBus",
    "SwapEventType",
    "SwapInitiation",
    "SwapRequest",
    "create_services",
]
