import numpy as np
import pytest

from elevation_mapping_coordinator.pose_filter import PoseFilter


class TestSmoothing:
    @pytest.mark.parametrize("alpha", [0.1, 0.2, 0.5, 1.0])
    def test_constant_input_matches_closed_form(self, alpha):
        """After N equal samples c the smoothed position is c * (1 - (1 - a)^N)."""
        pf = PoseFilter(position_alpha=alpha, orientation_alpha=alpha)
        c = np.array([1.5, -2.0, 0.25])
        q = np.array([0.0, 0.0, 0.6, 0.8])
        q0 = np.array([0.0, 0.0, 0.0, 1.0])

        for n in range(1, 31):
            pf.update(c, q)
            decay = (1.0 - alpha) ** n
            np.testing.assert_allclose(pf.smoothed_position, c * (1.0 - decay), atol=1e-12)
            np.testing.assert_allclose(pf.smoothed_orientation, q + (q0 - q) * decay, atol=1e-12)

    def test_position_and_orientation_use_their_own_alpha(self):
        pf = PoseFilter(position_alpha=0.5, orientation_alpha=0.25)
        pf.update([2.0, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0])
        np.testing.assert_allclose(pf.smoothed_position, [1.0, 0.0, 0.0])
        np.testing.assert_allclose(pf.smoothed_orientation, [0.25, 0.0, 0.0, 0.75])

    def test_orientation_is_not_renormalized(self):
        pf = PoseFilter(position_alpha=0.5, orientation_alpha=0.5)
        pf.update([0.0, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0])
        assert np.linalg.norm(pf.smoothed_orientation) == pytest.approx(np.sqrt(0.5))


class TestErrors:
    def test_first_sample_error_is_post_update_residual(self):
        """Filter first, then compare: the first error is (1 - a) * |p|, not |p|."""
        alpha = 0.2
        pf = PoseFilter(position_alpha=alpha, orientation_alpha=alpha)
        p = np.array([3.0, 4.0, 0.0])
        position_error, orientation_error = pf.update(p, [0.0, 0.0, 0.0, 1.0])
        assert position_error == pytest.approx((1.0 - alpha) * 5.0)
        assert orientation_error == pytest.approx(0.0)

    def test_first_sample_at_origin_has_zero_error(self):
        pf = PoseFilter()
        assert pf.update([0.0, 0.0, 0.0], [0.0, 0.0, 0.0, 1.0]) == (0.0, 0.0)

    def test_alpha_one_tracks_exactly(self):
        pf = PoseFilter(position_alpha=1.0, orientation_alpha=1.0)
        for p in ([1.0, 2.0, 3.0], [-4.0, 0.5, 9.0]):
            assert pf.update(p, [0.1, 0.2, 0.3, 0.9]) == (0.0, 0.0)

    def test_errors_are_non_negative_and_exposed(self):
        rng = np.random.default_rng(7)
        pf = PoseFilter(0.3, 0.1)
        for _ in range(50):
            errors = pf.update(rng.normal(size=3), rng.normal(size=4))
            assert errors[0] >= 0.0 and errors[1] >= 0.0
            assert pf.errors == errors

    def test_error_decays_for_stationary_pose(self):
        pf = PoseFilter(0.2, 0.2)
        errors = [pf.update([1.0, 1.0, 1.0], [0.0, 0.0, 0.0, 1.0])[0] for _ in range(20)]
        assert all(b < a for a, b in zip(errors, errors[1:]))
