"""Unit tests for utils.transforms."""

import numpy as np
import pytest

from viam.proto.common import Pose

from src.utils.transforms import (
    axis_angle_to_rotation,
    invert_transform,
    is_rigid_transform,
    make_transform,
    matrix_to_pose,
    ortho_project,
    ov_to_rotation,
    pose_to_matrix,
    rotation_to_axis_angle,
    rotation_to_ov,
    rotation_to_quaternion,
    rotation_to_rpy,
)


def rot_z(angle):
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0], [s, c, 0], [0, 0, 1]])


def rot_x(angle):
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[1, 0, 0], [0, c, -s], [0, s, c]])


class TestAxisAngle:
    def test_identity_is_zero_vector(self):
        rvec = rotation_to_axis_angle(np.eye(3))
        np.testing.assert_allclose(rvec, np.zeros(3), atol=1e-12)

    def test_quarter_turn_about_z(self):
        rvec = rotation_to_axis_angle(rot_z(np.pi / 2))
        np.testing.assert_allclose(rvec, [0, 0, np.pi / 2], atol=1e-9)

    @pytest.mark.parametrize("axis", [
        np.array([1.0, 0.0, 0.0]),
        np.array([0.0, 1.0, 0.0]),
        np.array([0.0, 0.0, 1.0]),
        np.array([1.0, 1.0, 0.0]) / np.sqrt(2),
    ])
    def test_half_turn_axis_parallel_and_angle_pi(self, axis):
        R = axis_angle_to_rotation(axis * np.pi)
        rvec = rotation_to_axis_angle(R)
        angle = np.linalg.norm(rvec)
        assert angle == pytest.approx(np.pi, abs=1e-6)
        # parallel up to sign
        assert abs(np.dot(rvec / angle, axis)) == pytest.approx(1.0, abs=1e-6)

    def test_angle_never_exceeds_pi(self):
        rvec = rotation_to_axis_angle(rot_x(1.5 * np.pi))
        assert np.linalg.norm(rvec) == pytest.approx(np.pi / 2, abs=1e-9)


class TestRigidTransforms:
    def test_invert_transform(self):
        T = make_transform(rot_z(0.3) @ rot_x(-1.1), [1.0, -2.0, 0.5])
        np.testing.assert_allclose(T @ invert_transform(T), np.eye(4), atol=1e-12)

    def test_is_rigid_transform(self):
        T = make_transform(rot_z(0.7), [1, 2, 3])
        assert is_rigid_transform(T)

        scaled = T.copy()
        scaled[:3, :3] *= 1.1
        assert not is_rigid_transform(scaled)

        reflected = T.copy()
        reflected[:3, 0] *= -1
        assert not is_rigid_transform(reflected)

        assert not is_rigid_transform(np.eye(3))

    def test_ortho_project_recovers_rotation(self):
        R = rot_z(0.4) @ rot_x(0.2)
        noisy = R + 1e-3 * np.array([[0.1, -0.2, 0.3], [0.0, 0.5, -0.1], [0.2, 0.1, 0.0]])
        Rn = ortho_project(noisy)
        np.testing.assert_allclose(Rn.T @ Rn, np.eye(3), atol=1e-12)
        assert np.linalg.det(Rn) == pytest.approx(1.0)
        np.testing.assert_allclose(Rn, R, atol=1e-3)


class TestQuaternionAndEuler:
    def test_quaternion_xyzw(self):
        q = rotation_to_quaternion(rot_z(np.pi / 2))
        np.testing.assert_allclose(q, [0, 0, np.sin(np.pi / 4), np.cos(np.pi / 4)], atol=1e-9)

    def test_quaternion_scalar_non_negative(self):
        q = rotation_to_quaternion(rot_z(1.9 * np.pi))
        assert q[3] >= 0

    def test_rpy(self):
        roll, pitch, yaw = rotation_to_rpy(rot_z(0.5) @ rot_x(0.25))
        assert roll == pytest.approx(0.25)
        assert pitch == pytest.approx(0.0, abs=1e-12)
        assert yaw == pytest.approx(0.5)


class TestOrientationVectors:
    def test_ov_about_z(self):
        R = ov_to_rotation(0, 0, 1, 90)
        np.testing.assert_allclose(R, rot_z(np.pi / 2), atol=1e-12)

    def test_ov_z_axis_is_third_column(self):
        R = ov_to_rotation(1, 0, 0, 0)
        np.testing.assert_allclose(R[:, 2], [1, 0, 0], atol=1e-12)

    def test_ov_requires_non_zero_vector(self):
        with pytest.raises(ValueError):
            ov_to_rotation(0, 0, 0, 10)

    @pytest.mark.parametrize("ov", [
        (0.0, 0.0, 1.0, 30.0),
        (0.0, 0.0, -1.0, -45.0),
        (0.3, -0.4, 0.866, 120.0),
        (-1.0, 0.0, 0.0, 10.0),
    ])
    def test_rotation_to_ov_inverts_ov_to_rotation(self, ov):
        R = ov_to_rotation(*ov)
        R_back = ov_to_rotation(*rotation_to_ov(R))
        np.testing.assert_allclose(R_back, R, atol=1e-9)

    def test_pose_matrix_conversion(self):
        pose = Pose(x=10, y=-20, z=30, o_x=0, o_y=1, o_z=0, theta=45)
        T = pose_to_matrix(pose)
        assert is_rigid_transform(T)
        np.testing.assert_allclose(T[:3, 3], [10, -20, 30])
        np.testing.assert_allclose(pose_to_matrix(matrix_to_pose(T)), T, atol=1e-9)
