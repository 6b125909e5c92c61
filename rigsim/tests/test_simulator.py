"""
Tests for the camera simulator.

These tests verify:
    - Landmark map initialization against the start pose
    - Track id persistence between consecutive queries
    - Id monotonicity and eviction
    - The bound on the active landmark count
    - Preconditions (initialization, time ordering, trajectory range)
"""

import json
import logging

import pytest
import numpy as np
from numpy.testing import assert_allclose

from rigsim.config import SimulatorOptions
from rigsim.simulator import (
    CameraSimulator,
    run_simulation,
    simulation_times,
    write_outputs,
)
from rigsim.camera_rig import CameraRig
from rigsim.trajectory import TrajectoryInterpolator
from rigsim.transforms import Transformation


def visibility(simulator, positions, time):
    """Per camera (u, v, visible) computed from first principles."""
    T_W_B = simulator.trajectory.pose_at(time)
    options = simulator.options
    result = []
    for cam_idx in range(simulator.rig.size()):
        camera = simulator.rig.at(cam_idx)
        T_W_C = T_W_B * simulator.rig.T_C_B(cam_idx).inverse()
        points_camera = T_W_C.inverse().transform(positions)
        u, v, valid = camera.project_points_batch(points_camera)
        visible = (
            valid
            & (points_camera[:, 2] >= options.min_depth - 1e-9)
            & (points_camera[:, 2] <= options.max_depth + 1e-9)
            & camera.keypoints_visible(u, v, options.keypoint_margin)
        )
        result.append((u, v, visible))
    return result


class TestInitialization:
    """Tests for initialize_map()."""

    @pytest.fixture
    def simulator(self, make_stereo_rig, sideways_trajectory):
        options = SimulatorOptions(min_depth=2.0, max_depth=8.0, max_num_landmarks=200, seed=1)
        return CameraSimulator(sideways_trajectory, make_stereo_rig(), options)

    def test_not_initialized_before(self, simulator):
        assert not simulator.is_initialized
        assert len(simulator.landmarks) == 0

    def test_fills_to_max(self, simulator):
        simulator.initialize_map()

        assert simulator.is_initialized
        assert len(simulator.landmarks) == 200
        assert list(simulator.landmarks.ids) == list(range(200))

    def test_landmarks_visible_from_start_pose(self, simulator):
        """Every landmark is in depth range and in the image of some camera."""
        simulator.initialize_map()
        positions = simulator.landmarks.positions

        seen = np.zeros(len(positions), dtype=bool)
        for u, v, visible in visibility(simulator, positions, simulator.trajectory.start()):
            seen |= visible
            assert np.all((u[visible] >= 0) & (u[visible] < 640))
            assert np.all((v[visible] >= 0) & (v[visible] < 480))

        assert np.all(seen)

    def test_sampling_budget(self, make_stereo_rig, sideways_trajectory, caplog):
        """An exhausted attempt budget leaves the map short and warns."""
        options = SimulatorOptions(max_num_landmarks=50, max_sampling_attempts=10)
        simulator = CameraSimulator(sideways_trajectory, make_stereo_rig(), options)

        with caplog.at_level(logging.WARNING, logger="rigsim.simulator"):
            simulator.initialize_map()

        assert len(simulator.landmarks) <= 10
        assert "Sampled only" in caplog.text

    def test_invalid_options(self, make_stereo_rig, sideways_trajectory):
        with pytest.raises(ValueError):
            CameraSimulator(
                sideways_trajectory, make_stereo_rig(),
                SimulatorOptions(min_depth=5.0, max_depth=5.0),
            )
        with pytest.raises(ValueError):
            CameraSimulator(
                sideways_trajectory, make_stereo_rig(),
                SimulatorOptions(max_num_landmarks=0),
            )

    @pytest.mark.parametrize("margin", [240.0, 300.0])
    def test_margin_leaves_no_image(self, make_stereo_rig, sideways_trajectory, margin):
        """A 480 px tall image has nothing left inside a 240 px border."""
        with pytest.raises(ValueError):
            CameraSimulator(
                sideways_trajectory, make_stereo_rig(),
                SimulatorOptions(keypoint_margin=margin),
            )

    def test_candidates_failing_observation_are_dropped(
        self, make_stereo_rig, sideways_trajectory, monkeypatch
    ):
        """Only sampled points that pass the observation test enter the map."""
        simulator = CameraSimulator(sideways_trajectory, make_stereo_rig())
        # Second point lies beyond max_depth for both cameras
        candidates = np.array([[0.0, 0.0, 5.0], [0.0, 0.0, 50.0]])
        monkeypatch.setattr(
            simulator, "_sample_landmarks", lambda T_W_B, num: candidates.copy()
        )

        simulator.initialize_map()
        assert len(simulator.landmarks) == 1

        step = simulator.step(1.0)
        reported = set()
        for m in step.measurements:
            reported.update(m.track_ids.tolist())

        assert step.num_added == 1
        assert len(simulator.landmarks) == 2
        assert reported == set(simulator.landmarks.ids.tolist())

    def test_empty_rig(self, sideways_trajectory):
        with pytest.raises(ValueError):
            CameraSimulator(sideways_trajectory, CameraRig([], [], "empty"))


class TestMeasurements:
    """Tests for get_measurements()."""

    @pytest.fixture
    def simulator(self, make_stereo_rig, sideways_trajectory):
        options = SimulatorOptions(min_depth=1.0, max_depth=10.0, max_num_landmarks=50, seed=5)
        sim = CameraSimulator(sideways_trajectory, make_stereo_rig(), options)
        sim.initialize_map()
        return sim

    def test_requires_initialization(self, make_stereo_rig, sideways_trajectory):
        simulator = CameraSimulator(sideways_trajectory, make_stereo_rig())

        with pytest.raises(RuntimeError):
            simulator.get_measurements(0.0)

    def test_one_entry_per_camera(self, simulator):
        measurements = simulator.get_measurements(0.5)

        assert len(measurements) == 2
        for cam_idx, m in enumerate(measurements):
            assert m.camera_index == cam_idx
            assert m.keypoints.shape == (len(m.track_ids), 2)
            assert len(m) > 0

    def test_measurements_match_landmarks(self, simulator):
        """Each keypoint is the projection of the landmark with its track id."""
        time = 0.75
        measurements = simulator.get_measurements(time)

        for m in measurements:
            camera = simulator.rig.at(m.camera_index)
            T_C_W = simulator.rig.T_C_B(m.camera_index) * simulator.trajectory.pose_at(time).inverse()
            for track_id, keypoint in zip(m.track_ids, m.keypoints):
                landmark = simulator.landmarks.get(int(track_id))
                assert landmark is not None
                u, v, valid = camera.project_point(T_C_W.transform(landmark.position))
                assert valid
                assert_allclose([u, v], keypoint, atol=1e-9)

    def test_every_visible_landmark_reported(self, simulator):
        """All active landmarks visible in a camera appear in its measurements."""
        time = 1.0
        measurements = simulator.get_measurements(time)
        ids = simulator.landmarks.ids
        per_camera = visibility(simulator, simulator.landmarks.positions, time)

        for m, (_, _, visible) in zip(measurements, per_camera):
            assert set(int(i) for i in m.track_ids) == set(int(i) for i in ids[visible])

    def test_track_ids_persist(self, simulator):
        """A landmark seen at t1 and t2 keeps its track id and position."""
        m1 = simulator.get_measurements(1.0)
        positions_t1 = {lm.id: lm.position for lm in simulator.landmarks}
        m2 = simulator.get_measurements(1.05)

        for cam_idx in range(2):
            ids_t1 = set(int(i) for i in m1[cam_idx].track_ids)
            ids_t2 = set(int(i) for i in m2[cam_idx].track_ids)
            common = ids_t1 & ids_t2
            assert len(common) > 0

            for track_id in common:
                assert_allclose(simulator.landmarks.get(track_id).position, positions_t1[track_id])

    def test_no_duplicate_ids_per_camera(self, simulator):
        for m in simulator.get_measurements(2.0):
            assert len(set(m.track_ids.tolist())) == len(m.track_ids)

    def test_same_time_twice(self, simulator):
        """Non-decreasing includes repeating a time; nothing moves."""
        m1 = simulator.get_measurements(1.0)
        m2 = simulator.get_measurements(1.0)

        for a, b in zip(m1, m2):
            assert set(a.track_ids.tolist()) == set(b.track_ids.tolist())

    def test_time_backward(self, simulator):
        simulator.get_measurements(1.0)

        with pytest.raises(ValueError):
            simulator.get_measurements(0.5)
        assert simulator.last_time == 1.0

    def test_time_outside_trajectory(self, simulator):
        with pytest.raises(ValueError):
            simulator.get_measurements(simulator.trajectory.end() + 1.0)

    def test_mask_respected(self, make_stereo_rig, sideways_trajectory):
        rig = make_stereo_rig()
        mask = np.zeros((480, 640), dtype=np.uint8)
        mask[:, 320:] = 1
        rig.at(0).set_mask(mask)

        simulator = CameraSimulator(sideways_trajectory, rig, SimulatorOptions(max_num_landmarks=100))
        simulator.initialize_map()

        for time in (0.0, 0.5, 1.0):
            m = simulator.get_measurements(time)[0]
            assert np.all(m.keypoints[:, 0] >= 320.0)

    def test_margin_respected(self, make_stereo_rig, sideways_trajectory):
        options = SimulatorOptions(max_num_landmarks=100, keypoint_margin=20.0)
        simulator = CameraSimulator(sideways_trajectory, make_stereo_rig(), options)
        simulator.initialize_map()

        for m in simulator.get_measurements(2.0):
            assert np.all((m.keypoints[:, 0] >= 20.0) & (m.keypoints[:, 0] < 620.0))
            assert np.all((m.keypoints[:, 1] >= 20.0) & (m.keypoints[:, 1] < 460.0))

    def test_deterministic_for_seed(self, make_stereo_rig, sideways_trajectory):
        def run():
            options = SimulatorOptions(max_num_landmarks=80, seed=42)
            simulator = CameraSimulator(sideways_trajectory, make_stereo_rig(), options)
            simulator.initialize_map()
            return [simulator.get_measurements(t) for t in (0.0, 1.0, 2.0)]

        for step_a, step_b in zip(run(), run()):
            for a, b in zip(step_a, step_b):
                assert_allclose(a.keypoints, b.keypoints)
                assert np.array_equal(a.track_ids, b.track_ids)


class TestLandmarkPool:
    """Tests for eviction, replenishment and id bookkeeping over a session."""

    @pytest.fixture
    def simulator(self, make_stereo_rig, turning_trajectory):
        options = SimulatorOptions(min_depth=1.0, max_depth=6.0, max_num_landmarks=50, seed=3)
        sim = CameraSimulator(turning_trajectory, make_stereo_rig(), options)
        sim.initialize_map()
        return sim

    def test_bounded_over_session(self, simulator):
        """The pool never exceeds max_num_landmarks over 100 steps."""
        assert len(simulator.landmarks) <= 50

        for time in np.arange(100) * 0.05:
            simulator.get_measurements(float(time))
            assert len(simulator.landmarks) <= 50

    def test_ids_monotonic_and_never_reused(self, simulator):
        active = set(simulator.landmarks.ids.tolist())
        assigned = set(active)
        retired = set()
        total_evicted = 0

        for time in np.arange(100) * 0.05:
            step = simulator.step(float(time))
            current = set(simulator.landmarks.ids.tolist())

            new_ids = current - active
            if new_ids:
                assert min(new_ids) > max(assigned)
            evicted = active - current
            retired |= evicted
            total_evicted += step.num_evicted

            assert not (current & retired)
            assigned |= new_ids
            active = current

        # Turning and moving forward must churn the map
        assert total_evicted > 0
        assert len(assigned) > 50

    def test_new_landmarks_reported_immediately(self, simulator):
        """Landmarks added to refill the pool are observed in the same call."""
        added_seen = False
        for time in np.arange(1, 60) * 0.1:
            before = set(simulator.landmarks.ids.tolist())
            step = simulator.step(float(time))
            reported = set()
            for m in step.measurements:
                reported.update(m.track_ids.tolist())

            new_ids = set(simulator.landmarks.ids.tolist()) - before
            assert new_ids <= reported
            # Every active landmark is visible in some camera right now
            assert reported == set(simulator.landmarks.ids.tolist())
            added_seen = added_seen or bool(new_ids)

        assert added_seen

    def test_pool_refilled(self, simulator):
        simulator.get_measurements(3.0)
        assert len(simulator.landmarks) == 50


class TestRunSimulation:
    """Tests for the batch driver and its outputs."""

    def test_simulation_times(self, sideways_trajectory):
        times = simulation_times(sideways_trajectory, 20.0, 0.0, 1.0)

        assert len(times) == 21
        assert times[0] == pytest.approx(0.0)
        assert times[-1] == pytest.approx(1.0)

    def test_simulation_times_stay_in_range(self, make_stereo_rig):
        """0.1 + 2 * 0.1 rounds above 0.3; the last sample is clamped."""
        trajectory = TrajectoryInterpolator.from_poses(
            [0.1, 0.2, 0.3],
            [Transformation(translation=[0.1 * i, 0.0, 0.0]) for i in range(3)],
        )
        times = simulation_times(trajectory, 10.0)

        assert len(times) == 3
        assert times[-1] <= trajectory.end()
        assert times[-1] == pytest.approx(0.3)

        simulator = CameraSimulator(
            trajectory, make_stereo_rig(), SimulatorOptions(max_num_landmarks=20)
        )
        report = run_simulation(simulator, times)
        assert report.num_steps == 3

    def test_simulation_times_invalid(self, sideways_trajectory):
        with pytest.raises(ValueError):
            simulation_times(sideways_trajectory, 0.0)
        with pytest.raises(ValueError):
            simulation_times(sideways_trajectory, 10.0, 0.0, 20.0)

    def test_run_and_write(self, make_stereo_rig, sideways_trajectory, tmp_path):
        simulator = CameraSimulator(
            sideways_trajectory, make_stereo_rig(label="front"),
            SimulatorOptions(max_num_landmarks=60, seed=9),
        )
        report = run_simulation(simulator, simulation_times(sideways_trajectory, 10.0, 0.0, 2.0))

        assert report.num_steps == 21
        assert report.rig_label == "front"
        assert report.max_num_landmarks <= 60
        assert report.num_tracks >= 60
        assert report.mean_track_length >= 1.0
        assert set(report.mean_keypoints_per_camera) == {0, 1}

        measurements_path, summary_path = write_outputs(report, str(tmp_path / "out"))

        lines = measurements_path.read_text().splitlines()
        assert lines[0] == "time,camera_index,track_id,u,v"
        expected_rows = sum(len(m) for s in report.steps for m in s.measurements)
        assert len(lines) == expected_rows + 1

        summary = json.loads(summary_path.read_text())
        assert summary['rig']['num_cameras'] == 2
        assert summary['time']['num_steps'] == 21
        assert summary['tracks']['count'] == report.num_tracks


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
