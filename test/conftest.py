import sys
from pathlib import Path

import numpy as np
import pytest

# Add the repository root to Python path
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from arducor.devices.multiplexer import DeviceMultiplexer
from arducor.devices.state import LightDevice
from arducor.routines.engine import RoutineEngine


@pytest.fixture
def rng():
    """Seeded generator so random routines are repeatable"""
    return np.random.default_rng(1234)


@pytest.fixture
def make_multiplexer(rng):
    """Factory for a multiplexer of identical devices indexed from 1"""
    def factory(device_count=1, led_count=4, driver=None, **device_kwargs):
        devices = [
            LightDevice(index=i + 1, engine=RoutineEngine(led_count, rng=rng), **device_kwargs)
            for i in range(device_count)
        ]
        return DeviceMultiplexer(devices, driver=driver)
    return factory
