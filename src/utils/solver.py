"""Hand-eye solvers for AX = XB.

A solver is any object with a ``solve`` method taking the robot and camera
motions as parallel rotation (axis-angle) and translation lists and returning
the end effector to camera transform together with a ``SolverReport``.
"""
from dataclasses import dataclass
from typing import Protocol, Sequence, Tuple

import cv2
import numpy as np
from scipy.optimize import least_squares
from scipy.spatial.transform import Rotation

from viam.logging import getLogger

try:
    from utils.errors import CalibrationError
    from utils.transforms import axis_angle_to_rotation, invert_transform, make_transform
except ModuleNotFoundError:
    from ..utils.errors import CalibrationError
    from ..utils.transforms import axis_angle_to_rotation, invert_transform, make_transform

LOGGER = getLogger(__name__)

MIN_SOLVER_MOTIONS = 2
# below this no robot motion is treated as a rotation
MIN_ROTATION_RAD = 1e-6

TERMINATION_CONVERGENCE = "CONVERGENCE"
TERMINATION_NO_CONVERGENCE = "NO_CONVERGENCE"
TERMINATION_FAILURE = "FAILURE"


@dataclass
class SolverReport:
    initial_cost: float
    final_cost: float
    termination_type: str
    num_successful_steps: int
    num_unsuccessful_steps: int

    @property
    def change_cost(self) -> float:
        return self.initial_cost - self.final_cost

    @property
    def num_iterations(self) -> int:
        return self.num_successful_steps + self.num_unsuccessful_steps

    def brief_report(self) -> str:
        return (
            f"Refinement Report: Iterations: {self.num_iterations}, "
            f"Initial cost: {self.initial_cost:e}, Final cost: {self.final_cost:e}, "
            f"Termination: {self.termination_type}"
        )


class HandEyeSolver(Protocol):
    def solve(
        self,
        robot_rotations: Sequence[np.ndarray],
        robot_translations: Sequence[np.ndarray],
        camera_rotations: Sequence[np.ndarray],
        camera_translations: Sequence[np.ndarray],
    ) -> Tuple[np.ndarray, SolverReport]:
        ...


def _motion_matrices(rotations, translations):
    return [
        make_transform(axis_angle_to_rotation(r), t)
        for r, t in zip(rotations, translations)
    ]


def _residuals(x: np.ndarray, A_list, B_list) -> np.ndarray:
    X = make_transform(Rotation.from_rotvec(x[:3]).as_matrix(), x[3:])
    return np.concatenate([(A @ X - X @ B)[0:3, :].ravel() for A, B in zip(A_list, B_list)])


def _termination_type(status: int) -> str:
    if status > 0:
        return TERMINATION_CONVERGENCE
    if status == 0:
        return TERMINATION_NO_CONVERGENCE
    return TERMINATION_FAILURE


class ScrewMotionSolver:
    """Dual quaternion (screw motion) estimate followed by a nonlinear refinement.

    The closed form estimate comes from OpenCV's Daniilidis method. OpenCV wants
    absolute poses, so the motions are passed as gripper poses with an identity
    reference prepended, and camera motions are inverted into target to camera
    poses; the pairwise motions OpenCV derives are then exactly A_j^-1 A_i and
    B_j^-1 B_i. The estimate is refined by least squares on ``A X - X B``.
    """

    def __init__(self, refine: bool = True, max_evaluations: int = 200):
        self.refine = refine
        self.max_evaluations = max_evaluations

    def solve(self, robot_rotations, robot_translations, camera_rotations, camera_translations):
        if len(robot_rotations) < MIN_SOLVER_MOTIONS:
            raise CalibrationError(
                f"screw motion solve needs at least {MIN_SOLVER_MOTIONS} motions, got {len(robot_rotations)}"
            )
        if max(float(np.linalg.norm(r)) for r in robot_rotations) < MIN_ROTATION_RAD:
            raise CalibrationError("robot motions contain no rotation, the hand-eye rotation is unobservable")

        A_list = _motion_matrices(robot_rotations, robot_translations)
        B_list = _motion_matrices(camera_rotations, camera_translations)

        R_gripper2base = [np.eye(3)] + [A[0:3, 0:3] for A in A_list]
        t_gripper2base = [np.zeros((3, 1))] + [A[0:3, 3].reshape(3, 1) for A in A_list]
        B_inv = [invert_transform(B) for B in B_list]
        R_target2cam = [np.eye(3)] + [B[0:3, 0:3] for B in B_inv]
        t_target2cam = [np.zeros((3, 1))] + [B[0:3, 3].reshape(3, 1) for B in B_inv]

        try:
            R_cam2gripper, t_cam2gripper = cv2.calibrateHandEye(
                R_gripper2base=R_gripper2base,
                t_gripper2base=t_gripper2base,
                R_target2cam=R_target2cam,
                t_target2cam=t_target2cam,
                method=cv2.CALIB_HAND_EYE_DANIILIDIS
            )
        except cv2.error as e:
            raise CalibrationError(f"closed form hand-eye solve failed: {e}") from e
        if R_cam2gripper is None or t_cam2gripper is None:
            raise CalibrationError("could not solve calibration")
        if not (np.all(np.isfinite(R_cam2gripper)) and np.all(np.isfinite(t_cam2gripper))):
            raise CalibrationError("closed form hand-eye solve returned a non-finite estimate")

        try:
            x0 = np.concatenate([
                Rotation.from_matrix(R_cam2gripper).as_rotvec(),
                np.asarray(t_cam2gripper, dtype=np.float64).reshape(3),
            ])
        except (ValueError, np.linalg.LinAlgError) as e:
            raise CalibrationError(f"closed form hand-eye estimate is not a rotation: {e}") from e
        initial_cost = 0.5 * float(np.sum(_residuals(x0, A_list, B_list) ** 2))
        if not np.isfinite(initial_cost):
            raise CalibrationError("closed form hand-eye solve returned a non-finite estimate")

        if not self.refine:
            X = make_transform(R_cam2gripper, t_cam2gripper)
            return X, SolverReport(initial_cost, initial_cost, TERMINATION_CONVERGENCE, 0, 0)

        LOGGER.debug(f"refining hand-eye estimate over {len(A_list)} motions, initial cost {initial_cost:e}")
        try:
            result = least_squares(
                _residuals,
                x0,
                args=(A_list, B_list),
                method="trf",
                max_nfev=self.max_evaluations,
            )
        except (ValueError, np.linalg.LinAlgError) as e:
            raise CalibrationError(f"hand-eye refinement failed: {e}") from e

        # njev counts the initial jacobian plus one per accepted step; rejected steps only cost a function evaluation
        njev = int(result.njev) if result.njev is not None else 1
        successful = max(njev - 1, 0)
        report = SolverReport(
            initial_cost=initial_cost,
            final_cost=float(result.cost),
            termination_type=_termination_type(result.status),
            num_successful_steps=successful,
            num_unsuccessful_steps=max(int(result.nfev) - njev, 0),
        )
        X = make_transform(Rotation.from_rotvec(result.x[:3]).as_matrix(), result.x[3:])
        return X, report
