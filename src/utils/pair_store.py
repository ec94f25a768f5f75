"""Absolute pose pairs and their reduction to motions relative to a reference pair.

The first pair held by a store is the reference: its inverse is cached once and
every later pose is expressed as ``reference_inverse @ pose`` in both the robot
and the camera stream. The reference contributes no motion, so whenever a
reference exists::

    len(robot_motions) == len(camera_motions) == len(pairs) - 1
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from viam.logging import getLogger

try:
    from utils.errors import DataInconsistency
    from utils.transforms import (
        ORTHONORMAL_TOLERANCE,
        invert_transform,
        is_rotation,
        ortho_project,
        rotation_to_axis_angle,
    )
except ModuleNotFoundError:
    from ..utils.errors import DataInconsistency
    from ..utils.transforms import (
        ORTHONORMAL_TOLERANCE,
        invert_transform,
        is_rotation,
        ortho_project,
        rotation_to_axis_angle,
    )

LOGGER = getLogger(__name__)


@dataclass(frozen=True)
class AbsolutePosePair:
    robot_pose: np.ndarray   # end effector in robot base frame, 4x4
    camera_pose: np.ndarray  # camera in fiducial frame, 4x4

    def __post_init__(self):
        for name in ("robot_pose", "camera_pose"):
            T = np.array(getattr(self, name), dtype=np.float64)
            if T.shape != (4, 4):
                raise ValueError(f"{name} must be a 4x4 matrix, got shape {T.shape}")
            object.__setattr__(self, name, T)


@dataclass
class RelativeMotion:
    rotation: np.ndarray     # axis-angle, radians
    translation: np.ndarray


def relative_motion(reference_inverse: np.ndarray, pose: np.ndarray, label: str = "pose") -> RelativeMotion:
    """Express pose relative to the reference and decompose into axis-angle + translation."""
    T = reference_inverse @ pose
    R = T[0:3, 0:3]
    if not is_rotation(R, ORTHONORMAL_TOLERANCE):
        LOGGER.warning(
            f"{label} rotation is not orthonormal (det={np.linalg.det(R):.6f}), "
            "projecting onto the closest rotation"
        )
        R = ortho_project(R)
    return RelativeMotion(rotation=rotation_to_axis_angle(R), translation=T[0:3, 3].copy())


def reduce(pairs: Sequence[AbsolutePosePair]) -> Tuple[List[RelativeMotion], List[RelativeMotion]]:
    """Reduce absolute pairs to robot and camera motions relative to pairs[0]."""
    robot_motions: List[RelativeMotion] = []
    camera_motions: List[RelativeMotion] = []
    if not pairs:
        return robot_motions, camera_motions

    robot_ref_inv = invert_transform(pairs[0].robot_pose)
    camera_ref_inv = invert_transform(pairs[0].camera_pose)
    for i, pair in enumerate(pairs[1:], start=1):
        robot_motions.append(relative_motion(robot_ref_inv, pair.robot_pose, f"robot motion {i}"))
        camera_motions.append(relative_motion(camera_ref_inv, pair.camera_pose, f"camera motion {i}"))
    return robot_motions, camera_motions


def motion_consistency(
    robot_motions: Sequence[RelativeMotion],
    camera_motions: Sequence[RelativeMotion],
) -> List[Dict[str, float]]:
    """Per-motion rotation angles and translation norms of both streams.

    For motions satisfying AX = XB the two rotation angles are equal, so a large
    ``angle_difference_deg`` points at a bad sample or a mismatched frame pair.
    """
    rows = []
    for robot, camera in zip(robot_motions, camera_motions):
        robot_angle = float(np.degrees(np.linalg.norm(robot.rotation)))
        camera_angle = float(np.degrees(np.linalg.norm(camera.rotation)))
        rows.append({
            "robot_angle_deg": robot_angle,
            "camera_angle_deg": camera_angle,
            "angle_difference_deg": abs(robot_angle - camera_angle),
            "robot_translation_norm": float(np.linalg.norm(robot.translation)),
            "camera_translation_norm": float(np.linalg.norm(camera.translation)),
        })
    return rows


class TransformPairStore:
    """Ordered absolute pose pairs plus the derived robot and camera motions.

    The three lists are only ever mutated together by append and remove_last.
    """

    def __init__(self):
        self._pairs: List[AbsolutePosePair] = []
        self._robot_motions: List[RelativeMotion] = []
        self._camera_motions: List[RelativeMotion] = []
        self._robot_ref_inv: Optional[np.ndarray] = None
        self._camera_ref_inv: Optional[np.ndarray] = None

    @classmethod
    def from_pairs(cls, pairs: Sequence[AbsolutePosePair]) -> "TransformPairStore":
        store = cls()
        for pair in pairs:
            store.append(pair)
        return store

    @property
    def pairs(self) -> Tuple[AbsolutePosePair, ...]:
        return tuple(self._pairs)

    @property
    def robot_motions(self) -> Tuple[RelativeMotion, ...]:
        return tuple(self._robot_motions)

    @property
    def camera_motions(self) -> Tuple[RelativeMotion, ...]:
        return tuple(self._camera_motions)

    @property
    def reference(self) -> Optional[AbsolutePosePair]:
        return self._pairs[0] if self._pairs else None

    @property
    def has_reference(self) -> bool:
        return self._robot_ref_inv is not None

    @property
    def num_motions(self) -> int:
        return len(self._robot_motions)

    def size(self) -> int:
        return len(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def append(self, pair: AbsolutePosePair) -> Optional[Tuple[RelativeMotion, RelativeMotion]]:
        """Add a pair; returns its (robot, camera) motions or None for the reference pair."""
        if not self._pairs:
            self._robot_ref_inv = invert_transform(pair.robot_pose)
            self._camera_ref_inv = invert_transform(pair.camera_pose)
            self._pairs.append(pair)
            LOGGER.debug("stored reference pose pair")
            return None

        index = len(self._pairs)
        robot = relative_motion(self._robot_ref_inv, pair.robot_pose, f"robot motion {index}")
        camera = relative_motion(self._camera_ref_inv, pair.camera_pose, f"camera motion {index}")
        self._pairs.append(pair)
        self._robot_motions.append(robot)
        self._camera_motions.append(camera)
        return robot, camera

    def remove_last(self) -> Optional[AbsolutePosePair]:
        """Pop the most recent pair. Returns None when there is nothing to remove."""
        if not self._pairs:
            return None
        pair = self._pairs.pop()
        if self._pairs:
            self._robot_motions.pop()
            self._camera_motions.pop()
        else:
            self._robot_ref_inv = None
            self._camera_ref_inv = None
        return pair

    def check_invariants(self):
        expected = max(len(self._pairs) - 1, 0)
        if not (len(self._robot_motions) == len(self._camera_motions) == expected):
            raise DataInconsistency(
                f"pair store out of sync: {len(self._pairs)} pairs, "
                f"{len(self._robot_motions)} robot motions, {len(self._camera_motions)} camera motions"
            )
        if self.has_reference != bool(self._pairs):
            raise DataInconsistency("reference pose cache does not match stored pairs")
