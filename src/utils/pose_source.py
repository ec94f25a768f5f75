"""Pose sources: "what is the current transform between two named frames".

``lookup(from_frame, to_frame, timeout)`` returns the pose of ``to_frame``
expressed in ``from_frame`` as a 4x4 matrix, or raises ``PoseLookupError``.
A lookup never waits longer than its timeout.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Dict, List

import numpy as np

from viam.components.arm import Arm
from viam.components.pose_tracker import PoseTracker
from viam.proto.common import Pose, PoseInFrame
from viam.robot.client import RobotClient

try:
    from utils.errors import PoseLookupError, PoseLookupTimeout
    from utils.transforms import invert_transform, pose_to_matrix
except ModuleNotFoundError:
    from ..utils.errors import PoseLookupError, PoseLookupTimeout
    from ..utils.transforms import invert_transform, pose_to_matrix


class PoseSource(ABC):
    async def lookup(self, from_frame: str, to_frame: str, timeout: float) -> np.ndarray:
        try:
            return await asyncio.wait_for(self._fetch(from_frame, to_frame), timeout=timeout)
        except asyncio.TimeoutError:
            raise PoseLookupTimeout(from_frame, to_frame, timeout)
        except PoseLookupError:
            raise
        except Exception as e:
            raise PoseLookupError(from_frame, to_frame, str(e)) from e

    @abstractmethod
    async def _fetch(self, from_frame: str, to_frame: str) -> np.ndarray:
        ...


class FrameSystemPoseSource(PoseSource):
    """Looks transforms up in the machine's frame system."""

    def __init__(self, robot: RobotClient):
        self.robot = robot

    async def _fetch(self, from_frame: str, to_frame: str) -> np.ndarray:
        # the origin of to_frame, expressed in from_frame
        origin = PoseInFrame(reference_frame=to_frame, pose=Pose(o_z=1))
        result: PoseInFrame = await self.robot.transform_pose(origin, from_frame)
        return pose_to_matrix(result.pose)


class ArmPoseSource(PoseSource):
    """End effector pose reported by the arm, relative to the arm base.

    The frame names are only used for error messages; the arm always reports
    its end position in its own base frame.
    """

    def __init__(self, arm: Arm):
        self.arm = arm

    async def _fetch(self, from_frame: str, to_frame: str) -> np.ndarray:
        arm_pose: Pose = await self.arm.get_end_position()
        return pose_to_matrix(arm_pose)


class PoseTrackerPoseSource(PoseSource):
    """Camera pose in the fiducial frame, from a pose tracker observing the fiducial.

    Trackers report the tracked body in the camera frame, so the pose is
    inverted to give the camera in the fiducial frame.
    """

    def __init__(self, tracker: PoseTracker, body_name: str = None):
        self.tracker = tracker
        self.body_names: List[str] = [body_name] if body_name else []

    async def _fetch(self, from_frame: str, to_frame: str) -> np.ndarray:
        tracked_poses: Dict[str, PoseInFrame] = await self.tracker.get_poses(body_names=self.body_names)
        if not tracked_poses:
            reason = "no tracked bodies in camera frame"
            if self.body_names:
                reason += f" (looking for: {self.body_names})"
            raise PoseLookupError(from_frame, to_frame, reason)
        if len(tracked_poses) > 1:
            raise PoseLookupError(
                from_frame,
                to_frame,
                f"more than 1 tracked body returned: {list(tracked_poses.keys())}, set body_name to pick one",
            )
        tracked_pose: Pose = list(tracked_poses.values())[0].pose
        return invert_transform(pose_to_matrix(tracked_pose))
