"""OpenCV FileStorage persistence for pose pairs and calibration results.

Record files hold only the absolute pairs::

    frameCount: N
    T1_0: 4x4 robot pose, T2_0: 4x4 camera pose, ... T1_{N-1}, T2_{N-1}

Relative motions are never stored; they are recomputed when a file is read.
Every write overwrites the whole file in place.
"""
from typing import Any, Dict, Sequence

import cv2
import numpy as np

from viam.logging import getLogger

try:
    from utils.calibration import CalibrationResult
    from utils.errors import CalibrationIOError
    from utils.pair_store import AbsolutePosePair, TransformPairStore
    from utils.solver import SolverReport
    from utils.transforms import rotation_to_quaternion
except ModuleNotFoundError:
    from ..utils.calibration import CalibrationResult
    from ..utils.errors import CalibrationIOError
    from ..utils.pair_store import AbsolutePosePair, TransformPairStore
    from ..utils.solver import SolverReport
    from ..utils.transforms import rotation_to_quaternion

LOGGER = getLogger(__name__)

FRAME_COUNT_KEY = "frameCount"
ROBOT_KEY_PREFIX = "T1_"
CAMERA_KEY_PREFIX = "T2_"


def _open(path: str, flags: int) -> cv2.FileStorage:
    mode = "reading" if flags == cv2.FILE_STORAGE_READ else "writing"
    try:
        fs = cv2.FileStorage(str(path), flags)
    except cv2.error as e:
        raise CalibrationIOError(str(path), f"failed to open file for {mode} ({e})") from e
    if not fs.isOpened():
        raise CalibrationIOError(str(path), f"failed to open file for {mode}")
    return fs


def _read_matrix(fs: cv2.FileStorage, key: str, shape, path: str) -> np.ndarray:
    node = fs.getNode(key)
    if node.empty():
        raise CalibrationIOError(str(path), f"missing entry {key}")
    mat = node.mat()
    if mat is None or mat.shape != shape:
        raise CalibrationIOError(str(path), f"entry {key} is not a {shape[0]}x{shape[1]} matrix")
    return np.asarray(mat, dtype=np.float64)


def write_pairs(pairs: Sequence[AbsolutePosePair], path: str) -> None:
    LOGGER.info(f'Writing pairs to "{path}"...')
    fs = _open(path, cv2.FILE_STORAGE_WRITE)
    try:
        fs.write(FRAME_COUNT_KEY, len(pairs))
        for i, pair in enumerate(pairs):
            fs.write(f"{ROBOT_KEY_PREFIX}{i}", np.asarray(pair.robot_pose, dtype=np.float64))
            fs.write(f"{CAMERA_KEY_PREFIX}{i}", np.asarray(pair.camera_pose, dtype=np.float64))
    except cv2.error as e:
        raise CalibrationIOError(str(path), f"failed to write pose pairs ({e})") from e
    finally:
        fs.release()


def read_pairs(path: str) -> TransformPairStore:
    """Load pairs and rebuild the reference and motion lists from scratch."""
    fs = _open(path, cv2.FILE_STORAGE_READ)
    try:
        count_node = fs.getNode(FRAME_COUNT_KEY)
        if count_node.empty():
            raise CalibrationIOError(str(path), f"missing entry {FRAME_COUNT_KEY}")
        frame_count = int(count_node.real())
        if frame_count < 0:
            raise CalibrationIOError(str(path), f"invalid {FRAME_COUNT_KEY} {frame_count}")

        pairs = []
        for i in range(frame_count):
            robot_pose = _read_matrix(fs, f"{ROBOT_KEY_PREFIX}{i}", (4, 4), path)
            camera_pose = _read_matrix(fs, f"{CAMERA_KEY_PREFIX}{i}", (4, 4), path)
            pairs.append(AbsolutePosePair(robot_pose=robot_pose, camera_pose=camera_pose))
    except cv2.error as e:
        raise CalibrationIOError(str(path), f"failed to read pose pairs ({e})") from e
    finally:
        fs.release()

    LOGGER.info(f'Read {len(pairs)} pose pairs from "{path}"')
    return TransformPairStore.from_pairs(pairs)


def write_result(result: CalibrationResult, path: str) -> None:
    """Write the transform as tf pose (x y z qx qy qz qw) and 4x4 matrix plus solver diagnostics."""
    LOGGER.info(f'Writing calibration to "{path}"...')
    T = np.asarray(result.transform, dtype=np.float64)
    q = rotation_to_quaternion(T[:3, :3])
    tf_pose = np.array([[T[0, 3], T[1, 3], T[2, 3], q[0], q[1], q[2], q[3]]], dtype=np.float64)
    report = result.report

    fs = _open(path, cv2.FILE_STORAGE_WRITE)
    try:
        fs.write("handToEyeTF", tf_pose)
        fs.write("handToEyeTransform", T)
        fs.write("initial_cost", float(report.initial_cost))
        fs.write("final_cost", float(report.final_cost))
        fs.write("change_cost", float(report.change_cost))
        fs.write("termination_type", str(report.termination_type))
        fs.write("num_successful_iteration", int(report.num_successful_steps))
        fs.write("num_unsuccessful_iteration", int(report.num_unsuccessful_steps))
        fs.write("num_iteration", int(report.num_iterations))
    except cv2.error as e:
        raise CalibrationIOError(str(path), f"failed to write calibration ({e})") from e
    finally:
        fs.release()


def read_result(path: str) -> Dict[str, Any]:
    fs = _open(path, cv2.FILE_STORAGE_READ)
    try:
        tf_pose = _read_matrix(fs, "handToEyeTF", (1, 7), path)
        transform = _read_matrix(fs, "handToEyeTransform", (4, 4), path)
        report = SolverReport(
            initial_cost=fs.getNode("initial_cost").real(),
            final_cost=fs.getNode("final_cost").real(),
            termination_type=fs.getNode("termination_type").string(),
            num_successful_steps=int(fs.getNode("num_successful_iteration").real()),
            num_unsuccessful_steps=int(fs.getNode("num_unsuccessful_iteration").real()),
        )
        num_iteration = int(fs.getNode("num_iteration").real())
    except cv2.error as e:
        raise CalibrationIOError(str(path), f"failed to read calibration ({e})") from e
    finally:
        fs.release()

    return {
        "tf_pose": tf_pose.reshape(7),
        "transform": transform,
        "report": report,
        "num_iteration": num_iteration,
    }
