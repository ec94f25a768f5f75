"""Rigid transform helpers.

All transforms are 4x4 homogeneous numpy arrays. Orientation vectors follow
the Viam convention (unit z-axis of the rotated frame plus a rotation about it
in degrees), which is the representation the arm and pose tracker APIs use.
"""
from typing import Tuple

import cv2
import numpy as np
from scipy.spatial.transform import Rotation

from viam.proto.common import Pose

ORTHONORMAL_TOLERANCE = 1e-6
OV_EPSILON = 1e-9


def make_transform(R: np.ndarray, t) -> np.ndarray:
    """Build a 4x4 homogeneous transform from a 3x3 rotation and a translation."""
    T = np.eye(4)
    T[0:3, 0:3] = np.asarray(R, dtype=np.float64).reshape(3, 3)
    T[0:3, 3] = np.asarray(t, dtype=np.float64).reshape(3)
    return T


def invert_transform(T: np.ndarray) -> np.ndarray:
    R = T[0:3, 0:3]
    t = T[0:3, 3]
    T_inv = np.eye(4)
    T_inv[0:3, 0:3] = R.T
    T_inv[0:3, 3] = -R.T @ t
    return T_inv


def is_rotation(R: np.ndarray, tol: float = ORTHONORMAL_TOLERANCE) -> bool:
    """True when R is orthonormal with determinant +1 within tol."""
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3) or not np.all(np.isfinite(R)):
        return False
    if np.max(np.abs(R.T @ R - np.eye(3))) > tol:
        return False
    return abs(np.linalg.det(R) - 1.0) <= tol


def is_rigid_transform(T: np.ndarray, tol: float = ORTHONORMAL_TOLERANCE) -> bool:
    T = np.asarray(T, dtype=np.float64)
    if T.shape != (4, 4) or not np.all(np.isfinite(T)):
        return False
    if not np.allclose(T[3, :], [0.0, 0.0, 0.0, 1.0], atol=tol):
        return False
    return is_rotation(T[0:3, 0:3], tol)


def ortho_project(R: np.ndarray) -> np.ndarray:
    """Project an arbitrary 3x3 matrix onto the closest rotation in SO(3)."""
    R = np.asarray(R, dtype=np.float64).reshape(3, 3)
    U, _, Vt = np.linalg.svd(R)
    Rn = U @ Vt
    if np.linalg.det(Rn) < 0:
        U[:, -1] *= -1
        Rn = U @ Vt
    return Rn


def rotation_to_axis_angle(R: np.ndarray) -> np.ndarray:
    """Rotation matrix to axis-angle vector (angle * unit axis, angle in [0, pi])."""
    rvec, _ = cv2.Rodrigues(np.asarray(R, dtype=np.float64).reshape(3, 3))
    return rvec.reshape(3)


def axis_angle_to_rotation(rvec) -> np.ndarray:
    R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
    return R


def rotation_angle(R: np.ndarray) -> float:
    """Rotation angle of R in radians."""
    c = (np.trace(R) - 1.0) / 2.0
    return float(np.arccos(np.clip(c, -1.0, 1.0)))


def rotation_to_quaternion(R: np.ndarray) -> np.ndarray:
    """Rotation matrix to quaternion (x, y, z, w) with w >= 0."""
    q = Rotation.from_matrix(ortho_project(R)).as_quat()
    if q[3] < 0:
        q = -q
    return q


def rotation_to_rpy(R: np.ndarray) -> Tuple[float, float, float]:
    """Rotation matrix to (roll, pitch, yaw) in radians, R = Rz(yaw) Ry(pitch) Rx(roll)."""
    yaw, pitch, roll = Rotation.from_matrix(ortho_project(R)).as_euler("ZYX")
    return float(roll), float(pitch), float(yaw)


def ov_to_rotation(ox: float, oy: float, oz: float, theta: float) -> np.ndarray:
    """Convert a Viam orientation vector (theta in degrees) to a rotation matrix."""
    norm = np.linalg.norm([ox, oy, oz])
    if norm < OV_EPSILON:
        raise ValueError("orientation vector has zero length")
    ox, oy, oz = ox / norm, oy / norm, oz / norm

    lat = np.arccos(np.clip(oz, -1.0, 1.0))
    lon = 0.0
    if 1.0 - abs(oz) > OV_EPSILON:
        lon = np.arctan2(oy, ox)
    return Rotation.from_euler("ZYZ", [lon, lat, np.radians(theta)]).as_matrix()


def rotation_to_ov(R: np.ndarray) -> Tuple[float, float, float, float]:
    """Convert a rotation matrix to a Viam orientation vector (ox, oy, oz, theta_degrees)."""
    R = ortho_project(R)
    ox, oy, oz = R[:, 2]
    if 1.0 - abs(oz) > OV_EPSILON:
        _, _, theta = Rotation.from_matrix(R).as_euler("ZYZ")
    else:
        # z axis along +/-Z: longitude is undefined, fold everything into theta
        lat = 0.0 if oz > 0 else np.pi
        R_theta = Rotation.from_euler("Y", lat).as_matrix().T @ R
        theta = np.arctan2(R_theta[1, 0], R_theta[0, 0])
    return float(ox), float(oy), float(oz), float(np.degrees(theta))


def pose_to_matrix(pose: Pose) -> np.ndarray:
    """Convert a Viam Pose to a 4x4 homogeneous transformation matrix."""
    R = ov_to_rotation(pose.o_x, pose.o_y, pose.o_z, pose.theta)
    return make_transform(R, [pose.x, pose.y, pose.z])


def matrix_to_pose(T: np.ndarray) -> Pose:
    """Convert a 4x4 homogeneous transformation matrix to a Viam Pose."""
    ox, oy, oz, theta = rotation_to_ov(T[0:3, 0:3])
    t = T[0:3, 3]
    return Pose(
        x=float(t[0]),
        y=float(t[1]),
        z=float(t[2]),
        o_x=ox,
        o_y=oy,
        o_z=oz,
        theta=theta
    )
