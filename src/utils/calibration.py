from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from viam.logging import getLogger

try:
    from utils.errors import CalibrationError, DataInconsistency
    from utils.pair_store import RelativeMotion
    from utils.solver import HandEyeSolver, ScrewMotionSolver, SolverReport
    from utils.transforms import is_rigid_transform
except ModuleNotFoundError:
    from ..utils.errors import CalibrationError, DataInconsistency
    from ..utils.pair_store import RelativeMotion
    from ..utils.solver import HandEyeSolver, ScrewMotionSolver, SolverReport
    from ..utils.transforms import is_rigid_transform

LOGGER = getLogger(__name__)

RESULT_TOLERANCE = 1e-4


@dataclass
class CalibrationResult:
    transform: np.ndarray  # end effector -> camera, 4x4
    report: SolverReport


def estimate(
    robot_motions: Sequence[RelativeMotion],
    camera_motions: Sequence[RelativeMotion],
    solver: Optional[HandEyeSolver] = None,
) -> CalibrationResult:
    """Solve AX = XB for the end effector to camera transform.

    The minimum number of motions is the caller's concern; this only checks
    that the two streams are index aligned.
    """
    if len(robot_motions) != len(camera_motions):
        raise DataInconsistency(
            f"motion lists differ in length: {len(robot_motions)} robot vs {len(camera_motions)} camera"
        )
    if solver is None:
        solver = ScrewMotionSolver()

    LOGGER.info(f"Calculating calibration from {len(robot_motions)} motion pairs...")
    transform, report = solver.solve(
        [m.rotation for m in robot_motions],
        [m.translation for m in robot_motions],
        [m.rotation for m in camera_motions],
        [m.translation for m in camera_motions],
    )
    transform = np.asarray(transform, dtype=np.float64)
    if not is_rigid_transform(transform, RESULT_TOLERANCE):
        raise CalibrationError(f"solver returned a transform that is not rigid:\n{transform}")
    return CalibrationResult(transform=transform, report=report)
