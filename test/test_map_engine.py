import math

import numpy as np
import pytest

from elevation_mapping_coordinator.map_engine import MapEngine, SimpleElevationEngine, load_engine


IDENTITY = np.eye(3)
ORIGIN = np.zeros(3)


@pytest.fixture
def simple_engine():
    eng = SimpleElevationEngine()
    eng.initialize({"resolution": 0.1, "map_length": 4.0, "sensor_noise_factor": 0.05})
    return eng


def _plane(z: float, n: int = 400, half: float = 1.0) -> np.ndarray:
    rng = np.random.default_rng(3)
    xy = rng.uniform(-half, half, size=(n, 2))
    return np.column_stack([xy, np.full(n, z)])


class TestInput:
    def test_initial_map_is_empty(self, simple_engine):
        gm = simple_engine.get_grid_map()
        assert gm.size == (40, 40)
        assert gm.layers == ["elevation", "variance", "is_valid"]
        assert np.all(np.isnan(gm["elevation"]))
        assert not np.any(gm["is_valid"])

    def test_plane_is_recovered(self, simple_engine):
        simple_engine.input(_plane(0.3), IDENTITY, ORIGIN, 0.0, 0.0)
        gm = simple_engine.get_grid_map()
        valid = gm["is_valid"] > 0.5
        assert valid.sum() > 50
        np.testing.assert_allclose(gm["elevation"][valid], 0.3, atol=1e-5)

    def test_transform_is_applied(self, simple_engine):
        pts = np.array([[0.05, 0.05, 0.0]])
        simple_engine.input(pts, IDENTITY, np.array([1.0, -1.0, 0.7]), 0.0, 0.0)
        gm = simple_engine.get_grid_map()
        i, j = gm.index_of((1.05, -0.95))
        assert gm["elevation"][i, j] == pytest.approx(0.7)

    def test_repeated_measurements_shrink_variance(self, simple_engine):
        pts = np.array([[0.55, 0.55, 1.0]])
        simple_engine.input(pts, IDENTITY, ORIGIN, 0.0, 0.0)
        i, j = simple_engine.get_grid_map().index_of((0.55, 0.55))
        v1 = simple_engine.get_grid_map()["variance"][i, j]
        simple_engine.input(pts, IDENTITY, ORIGIN, 0.0, 0.0)
        v2 = simple_engine.get_grid_map()["variance"][i, j]
        assert v2 == pytest.approx(v1 / 2.0, rel=1e-5)

    def test_uncertainty_weights_fusion(self, simple_engine):
        """A confident measurement dominates an uncertain one in the same cell."""
        pts_low = np.array([[0.55, 0.55, 0.0]])
        pts_high = np.array([[0.55, 0.55, 1.0]])
        simple_engine.input(pts_low, IDENTITY, ORIGIN, 0.0, 0.0)
        simple_engine.input(pts_high, IDENTITY, ORIGIN, 5.0, 0.0)
        gm = simple_engine.get_grid_map()
        i, j = gm.index_of((0.55, 0.55))
        assert gm["elevation"][i, j] < 0.1

    def test_empty_and_nan_points_are_no_ops(self, simple_engine):
        simple_engine.input(np.empty((0, 3)), IDENTITY, ORIGIN, 0.0, 0.0)
        simple_engine.input(np.full((5, 3), np.nan), IDENTITY, ORIGIN, 0.0, 0.0)
        assert not np.any(simple_engine.get_grid_map()["is_valid"])

    def test_height_gate(self):
        eng = SimpleElevationEngine()
        eng.initialize({"resolution": 0.1, "map_length": 4.0, "max_height": 0.5})
        eng.input(np.array([[0.55, 0.55, 2.0], [-0.55, -0.55, 0.2]]), IDENTITY, ORIGIN, 0.0, 0.0)
        gm = eng.get_grid_map()
        assert gm["is_valid"].sum() == 1

    def test_points_outside_map_ignored(self, simple_engine):
        simple_engine.input(np.array([[50.0, 0.0, 1.0]]), IDENTITY, ORIGIN, 0.0, 0.0)
        assert not np.any(simple_engine.get_grid_map()["is_valid"])


class TestMoveAndClear:
    def test_move_keeps_world_anchored_cells(self, simple_engine):
        simple_engine.input(np.array([[0.05, 0.05, 0.4]]), IDENTITY, ORIGIN, 0.0, 0.0)
        simple_engine.move_to((0.5, 0.0))
        gm = simple_engine.get_grid_map()
        np.testing.assert_allclose(gm.position, [0.5, 0.0])
        i, j = gm.index_of((0.05, 0.05))
        assert gm["elevation"][i, j] == pytest.approx(0.4)
        assert gm["is_valid"].sum() == 1

    def test_move_drops_cells_leaving_the_map(self, simple_engine):
        simple_engine.input(np.array([[1.95, 0.05, 0.4]]), IDENTITY, ORIGIN, 0.0, 0.0)
        simple_engine.move_to((-1.0, 0.0))
        assert not np.any(simple_engine.get_grid_map()["is_valid"])

    def test_large_move_resets(self, simple_engine):
        simple_engine.input(_plane(0.1), IDENTITY, ORIGIN, 0.0, 0.0)
        simple_engine.move_to((100.0, 100.0))
        gm = simple_engine.get_grid_map()
        assert not np.any(gm["is_valid"])
        np.testing.assert_allclose(gm.position, [100.0, 100.0])

    def test_sub_cell_move_is_ignored(self, simple_engine):
        simple_engine.move_to((0.04, -0.04))
        np.testing.assert_allclose(simple_engine.get_grid_map().position, [0.0, 0.0])

    def test_clear_is_idempotent(self, simple_engine):
        simple_engine.input(_plane(0.1), IDENTITY, ORIGIN, 0.0, 0.0)
        simple_engine.clear()
        simple_engine.clear()
        gm = simple_engine.get_grid_map()
        assert not np.any(gm["is_valid"])
        assert np.all(np.isnan(gm["elevation"]))


class TestLoadEngine:
    def test_loads_default_engine(self):
        eng = load_engine("elevation_mapping_coordinator.map_engine:SimpleElevationEngine")
        assert isinstance(eng, SimpleElevationEngine)
        assert isinstance(eng, MapEngine)

    @pytest.mark.parametrize("spec", ["", "no_colon", "module:", ":Class"])
    def test_rejects_malformed_spec(self, spec):
        with pytest.raises(ValueError):
            load_engine(spec)

    def test_default_config_values(self):
        eng = SimpleElevationEngine()
        eng.initialize({})
        assert eng.cell_n == 200
        assert eng.config["min_height"] == -math.inf
