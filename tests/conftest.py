import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# km per degree of latitude on the haversine sphere (R = 6371 km)
KM_PER_DEG = 6371.0 * 3.141592653589793 / 180.0


def north_of(lat, km):
    """Latitude `km` kilometres north of `lat` along a meridian."""
    return lat + km / KM_PER_DEG


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    """Keep identity files out of the project config directory."""
    monkeypatch.setenv("CONVOY_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.delenv("CONVOY_USER_ID", raising=False)
    monkeypatch.delenv("CONVOY_DB_URL", raising=False)


@pytest.fixture
def clock():
    return FakeClock()
