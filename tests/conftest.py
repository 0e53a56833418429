import math
import sys
from pathlib import Path
import pytest

# Ensure project root is on sys.path so tests can import the `routequest` package
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from sqlmodel import SQLModel, Session, create_engine  # noqa: E402

from routequest import crud, geofence, models  # noqa: E402
from routequest.cache import get_cache  # noqa: E402
from routequest.config import Config  # noqa: E402

BERN = (46.9481, 7.4474)


def north_of(lat, lng, meters):
    """Point exactly ``meters`` due north (haversine distance along a meridian)."""
    return lat + math.degrees(meters / geofence.EARTH_RADIUS_M), lng


@pytest.fixture(autouse=True)
def reset_shared_state(monkeypatch):
    # Clear in-memory caches and rate limiter between tests to avoid cross-test flakiness
    get_cache().clear()
    monkeypatch.setattr(Config, "COMPLETION_RETRY_BASE_DELAY", 0.0)
    try:
        import routequest.main as app_main
        app_main.app.state.rate_limiter.clear()
    except Exception:
        pass
    yield
    get_cache().clear()


@pytest.fixture
def engine(tmp_path):
    db = tmp_path / 'test.db'
    eng = create_engine(f'sqlite:///{db}', connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(eng)
    crud.engine = eng
    return eng


@pytest.fixture
def make_player(engine):
    def _make(username):
        with Session(engine) as s:
            p = models.Player(username=username)
            s.add(p)
            s.commit()
            s.refresh(p)
            return p.id
    return _make


@pytest.fixture
def make_route(engine):
    """Create a route with checkpoints laid out 1 km apart north of Bern.

    ``points`` is one reward per checkpoint; ids are ``<route>-cp<n>``.
    """
    def _make(route_id='r1', points=(50, 50), radius=30):
        with Session(engine) as s:
            s.add(models.Route(id=route_id, name=f"Route {route_id}"))
            for i, pts in enumerate(points, start=1):
                lat, lng = north_of(*BERN, 1000 * i)
                s.add(models.Checkpoint(
                    id=f"{route_id}-cp{i}",
                    route_id=route_id,
                    name=f"Checkpoint {i}",
                    latitude=lat,
                    longitude=lng,
                    radius_m=radius,
                    reward_points=pts,
                    reward_seal=f"seal{i}.png",
                    order_index=i,
                ))
            s.commit()
        return [f"{route_id}-cp{i}" for i in range(1, len(points) + 1)]
    return _make


@pytest.fixture
def checkpoint_position(engine):
    def _pos(checkpoint_id):
        with Session(engine) as s:
            cp = s.get(models.Checkpoint, checkpoint_id)
            return cp.latitude, cp.longitude
    return _pos
