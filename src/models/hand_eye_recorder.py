from typing import ClassVar, Mapping, Optional, Sequence, Tuple

from typing_extensions import Self
from viam.components.arm import Arm
from viam.components.pose_tracker import PoseTracker
from viam.proto.app.robot import ComponentConfig
from viam.proto.common import ResourceName
from viam.resource.base import ResourceBase
from viam.resource.easy_resource import EasyResource
from viam.resource.types import Model, ModelFamily
from viam.services.generic import *
from viam.utils import struct_to_dict, ValueTypes

try:
    from utils.calibration_logging import frame_config
    from utils.config import (
        ARM_ATTR,
        POSE_TRACKER_ATTR,
        RecorderConfig,
        validate_attributes,
    )
    from utils.errors import CalibrationError, CalibrationIOError
    from utils.pose_source import ArmPoseSource, PoseTrackerPoseSource
    from utils.session import Command, SessionController, SessionState
except ModuleNotFoundError:
    # when running as local module with run.sh
    from ..utils.calibration_logging import frame_config
    from ..utils.config import (
        ARM_ATTR,
        POSE_TRACKER_ATTR,
        RecorderConfig,
        validate_attributes,
    )
    from ..utils.errors import CalibrationError, CalibrationIOError
    from ..utils.pose_source import ArmPoseSource, PoseTrackerPoseSource
    from ..utils.session import Command, SessionController, SessionState


class HandEyeRecorder(Generic, EasyResource):
    """Records robot / fiducial pose pairs on command and solves for the
    end effector to camera transform.

    The end effector pose comes from the arm, the camera pose from a pose
    tracker observing the fiducial. Commands arrive through do_command:
    ``capture``, ``undo``, ``finalize``, ``status`` and ``calibrate_from_file``.
    """
    # To enable debug-level logging, either run viam-server with the --debug option,
    # or configure your resource/machine to display debug logs.
    MODEL: ClassVar[Model] = Model(
        ModelFamily("viam", "opencv"), "hand-eye-recorder"
    )

    @classmethod
    def new(
        cls, config: ComponentConfig, dependencies: Mapping[ResourceName, ResourceBase]
    ) -> Self:
        return super().new(config, dependencies)

    @classmethod
    def validate_config(
        cls, config: ComponentConfig
    ) -> Tuple[Sequence[str], Sequence[str]]:
        """Validate the attributes and report the arm and pose tracker as required dependencies.

        Returns:
            Tuple[Sequence[str], Sequence[str]]: required and optional dependencies
        """
        attrs = struct_to_dict(config.attributes)
        validate_attributes(attrs)

        arm = attrs.get(ARM_ATTR)
        if arm is None:
            raise Exception(f"Missing required {ARM_ATTR} attribute.")

        pose_tracker = attrs.get(POSE_TRACKER_ATTR)
        if pose_tracker is None:
            raise Exception(f"Missing required {POSE_TRACKER_ATTR} attribute.")

        return [str(arm), str(pose_tracker)], []

    def reconfigure(
        self, config: ComponentConfig, dependencies: Mapping[ResourceName, ResourceBase]
    ):
        attrs = struct_to_dict(config.attributes)
        self.config = RecorderConfig.from_attributes(attrs)

        self.arm: Optional[Arm] = dependencies.get(Arm.get_resource_name(self.config.end_effector_frame))
        self.pose_tracker: Optional[PoseTracker] = None
        if self.config.pose_tracker:
            self.pose_tracker = dependencies.get(PoseTracker.get_resource_name(self.config.pose_tracker))
        if self.arm is None:
            self.logger.warning(f"Arm dependency '{self.config.end_effector_frame}' not found, capture disabled")
        if self.pose_tracker is None:
            self.logger.warning(f"Pose tracker dependency '{self.config.pose_tracker}' not found, capture disabled")

        self.controller = SessionController(
            self.config,
            robot_source=ArmPoseSource(self.arm) if self.arm is not None else None,
            camera_source=(
                PoseTrackerPoseSource(self.pose_tracker, self.config.body_name)
                if self.pose_tracker is not None else None
            ),
        )
        self.logger.debug(f"Recording pose pairs to {self.config.record_file}")
        return super().reconfigure(config, dependencies)

    def _result_response(self):
        result = self.controller.session.result
        if result is None:
            return "calibration failed, see logs"
        response = frame_config(result, self.config.end_effector_frame)
        response["report"] = {
            "initial_cost": result.report.initial_cost,
            "final_cost": result.report.final_cost,
            "termination_type": result.report.termination_type,
            "num_iteration": result.report.num_iterations,
        }
        return response

    async def do_command(
        self,
        command: Mapping[str, ValueTypes],
        *,
        timeout: Optional[float] = None,
        **kwargs
    ) -> Mapping[str, ValueTypes]:
        resp = {}
        for key, value in command.items():
            match key:
                case "capture":
                    captured = await self.controller.handle(Command.CAPTURE)
                    resp["capture"] = {"captured": captured, **self.controller.status()}
                case "undo":
                    removed = await self.controller.handle(Command.UNDO)
                    resp["undo"] = {"removed": removed, **self.controller.status()}
                case "finalize":
                    if self.controller.state is SessionState.DONE:
                        resp["finalize"] = "session already finalized, reconfigure to start a new one"
                        continue
                    await self.controller.handle(Command.FINALIZE)
                    resp["finalize"] = self._result_response()
                case "status":
                    resp["status"] = self.controller.status()
                case "calibrate_from_file":
                    path = value if isinstance(value, str) and value else None
                    try:
                        self.controller.calibrate_from_file(path)
                    except (CalibrationIOError, CalibrationError) as e:
                        self.logger.error(f"calibration from file failed: {e}")
                        resp["calibrate_from_file"] = str(e)
                        continue
                    resp["calibrate_from_file"] = self._result_response()
                case _:
                    resp[key] = "unsupported key"

        if len(resp) == 0:
            return None, "no valid do_command submitted"

        return resp
