"""Tests for the calibration orchestrator and the screw motion solver."""

import json
from unittest.mock import Mock, patch

import numpy as np
import pytest

from src.utils.calibration import CalibrationResult, estimate
from src.utils.calibration_logging import (
    compute_motion_residuals,
    format_calibration_report,
    frame_config,
    save_json,
    summarize_residuals,
)
from src.utils.errors import CalibrationError, DataInconsistency
from src.utils.pair_store import AbsolutePosePair, RelativeMotion, TransformPairStore
from src.utils.solver import ScrewMotionSolver, SolverReport
from src.utils.transforms import axis_angle_to_rotation, invert_transform, make_transform


def stub_report():
    return SolverReport(
        initial_cost=1.0,
        final_cost=0.25,
        termination_type="CONVERGENCE",
        num_successful_steps=3,
        num_unsuccessful_steps=1,
    )


def motions(n):
    return [RelativeMotion(rotation=np.array([0.1 * i, 0.0, 0.0]), translation=np.array([i, 0.0, 0.0])) for i in range(n)]


def synthetic_store(hand_eye, n=8, seed=5):
    """Noise free pairs for a camera rigidly mounted on the end effector."""
    rng = np.random.default_rng(seed)
    base_to_tag = make_transform(axis_angle_to_rotation([0.3, 0.1, -0.2]), [600.0, -100.0, 20.0])
    tag_to_base = invert_transform(base_to_tag)
    store = TransformPairStore()
    for _ in range(n):
        ee = make_transform(
            axis_angle_to_rotation(rng.uniform(-0.8, 0.8, 3)),
            rng.uniform([300, -300, 200], [700, 300, 600]),
        )
        store.append(AbsolutePosePair(robot_pose=ee, camera_pose=tag_to_base @ ee @ hand_eye))
    return store


@pytest.fixture
def hand_eye():
    return make_transform(axis_angle_to_rotation([0.05, -1.2, 0.4]), [30.0, -15.0, 80.0])


class TestEstimate:
    def test_passes_index_aligned_lists_to_solver(self):
        solver = Mock()
        solver.solve.return_value = (np.eye(4), stub_report())
        robot, camera = motions(3), motions(3)

        result = estimate(robot, camera, solver)

        assert isinstance(result, CalibrationResult)
        np.testing.assert_array_equal(result.transform, np.eye(4))
        assert result.report.final_cost == 0.25
        args = solver.solve.call_args.args
        assert len(args) == 4
        assert all(len(a) == 3 for a in args)
        np.testing.assert_array_equal(args[0][2], robot[2].rotation)
        np.testing.assert_array_equal(args[3][1], camera[1].translation)

    def test_mismatched_lengths(self):
        solver = Mock()
        with pytest.raises(DataInconsistency):
            estimate(motions(3), motions(2), solver)
        solver.solve.assert_not_called()

    def test_rejects_non_rigid_solver_output(self):
        solver = Mock()
        solver.solve.return_value = (2.0 * np.eye(4), stub_report())
        with pytest.raises(CalibrationError):
            estimate(motions(2), motions(2), solver)


class TestScrewMotionSolver:
    def test_recovers_hand_eye_transform(self, hand_eye):
        store = synthetic_store(hand_eye)
        result = estimate(store.robot_motions, store.camera_motions, ScrewMotionSolver())

        np.testing.assert_allclose(result.transform[:3, :3], hand_eye[:3, :3], atol=1e-4)
        np.testing.assert_allclose(result.transform[:3, 3], hand_eye[:3, 3], atol=1e-2)
        assert result.report.final_cost <= result.report.initial_cost
        assert result.report.termination_type == "CONVERGENCE"
        assert result.report.num_iterations == (
            result.report.num_successful_steps + result.report.num_unsuccessful_steps
        )

    def test_closed_form_only(self, hand_eye):
        store = synthetic_store(hand_eye, n=6, seed=9)
        result = estimate(store.robot_motions, store.camera_motions, ScrewMotionSolver(refine=False))
        np.testing.assert_allclose(result.transform[:3, :3], hand_eye[:3, :3], atol=1e-4)
        assert result.report.num_iterations == 0
        assert result.report.change_cost == 0.0

    def test_two_motions_are_enough(self, hand_eye):
        store = synthetic_store(hand_eye, n=3, seed=2)
        result = estimate(store.robot_motions, store.camera_motions, ScrewMotionSolver())
        np.testing.assert_allclose(result.transform[:3, :3], hand_eye[:3, :3], atol=1e-3)

    @pytest.mark.parametrize("step", [0.0, 10.0])
    def test_motions_without_rotation(self, step):
        store = TransformPairStore()
        for i in range(4):
            pose = make_transform(np.eye(3), [step * i, 0.0, 0.0])
            store.append(AbsolutePosePair(robot_pose=pose, camera_pose=pose))

        with pytest.raises(CalibrationError, match="no rotation"):
            estimate(store.robot_motions, store.camera_motions, ScrewMotionSolver())

    def test_non_finite_closed_form_estimate(self, hand_eye):
        store = synthetic_store(hand_eye, n=4)
        nan_rotation = np.full((3, 3), np.nan)
        with patch("src.utils.solver.cv2.calibrateHandEye", return_value=(nan_rotation, np.zeros((3, 1)))):
            with pytest.raises(CalibrationError, match="non-finite"):
                estimate(store.robot_motions, store.camera_motions, ScrewMotionSolver())

    def test_refinement_step_counts(self, hand_eye):
        store = synthetic_store(hand_eye, n=4)
        fit = Mock(x=np.zeros(6), cost=0.1, status=2, nfev=7, njev=5)
        with patch("src.utils.solver.least_squares", return_value=fit):
            _, report = ScrewMotionSolver().solve(
                [m.rotation for m in store.robot_motions],
                [m.translation for m in store.robot_motions],
                [m.rotation for m in store.camera_motions],
                [m.translation for m in store.camera_motions],
            )

        assert report.num_successful_steps == 4
        assert report.num_unsuccessful_steps == 2
        assert report.num_iterations == 6
        assert report.termination_type == "CONVERGENCE"

    @pytest.mark.parametrize("n", [0, 1])
    def test_too_few_motions(self, n):
        with pytest.raises(CalibrationError):
            ScrewMotionSolver().solve(
                [np.zeros(3)] * n, [np.zeros(3)] * n, [np.zeros(3)] * n, [np.zeros(3)] * n
            )


class TestReporting:
    def test_residuals_vanish_for_exact_transform(self, hand_eye):
        store = synthetic_store(hand_eye, n=5)
        residuals = compute_motion_residuals(hand_eye, store.robot_motions, store.camera_motions)
        assert len(residuals) == 4
        summary = summarize_residuals(residuals)
        assert summary["num_motions"] == 4
        assert summary["rotation_error"]["max"] == pytest.approx(0.0, abs=1e-5)
        assert summary["translation_error"]["max"] == pytest.approx(0.0, abs=1e-6)

    def test_report_text(self, hand_eye):
        result = CalibrationResult(transform=hand_eye, report=stub_report())
        text = format_calibration_report(result, "ee_link", "camera_link")
        assert "Result from ee_link to camera_link" in text
        assert "Rotation q(x,y,z,w)" in text
        assert "Inverted translation" in text
        assert "CONVERGENCE" in text

    def test_frame_config(self, hand_eye):
        result = CalibrationResult(transform=hand_eye, report=stub_report())
        config = frame_config(result, "ur5e")
        frame = config["frame"]
        assert frame["parent"] == "ur5e"
        assert frame["translation"] == {"x": 30.0, "y": -15.0, "z": 80.0}
        assert frame["orientation"]["type"] == "ov_degrees"
        assert set(frame["orientation"]["value"]) == {"x", "y", "z", "th"}

    def test_save_json_creates_directories(self, hand_eye, tmp_path):
        result = CalibrationResult(transform=hand_eye, report=stub_report())
        path = tmp_path / "out" / "frame.json"
        save_json(str(path), frame_config(result, "ur5e"))
        assert json.loads(path.read_text())["frame"]["parent"] == "ur5e"
