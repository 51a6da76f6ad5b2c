"""
Device module for the lights behind one controller.
"""

from .multiplexer import BROADCAST_INDEX, DeviceConfigurationError, DeviceMultiplexer, DispatchResult, Reply
from .state import LightDevice, ticks_per_update

__all__ = [
    'BROADCAST_INDEX',
    'DeviceConfigurationError',
    'DeviceMultiplexer',
    'DispatchResult',
    'LightDevice',
    'Reply',
    'ticks_per_update',
]
