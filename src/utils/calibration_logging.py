import json
import os
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402  (must come after backend selection)

try:
    from utils.calibration import CalibrationResult
    from utils.pair_store import RelativeMotion
    from utils.transforms import (
        axis_angle_to_rotation,
        invert_transform,
        make_transform,
        rotation_angle,
        rotation_to_ov,
        rotation_to_quaternion,
        rotation_to_rpy,
    )
except ModuleNotFoundError:
    from ..utils.calibration import CalibrationResult
    from ..utils.pair_store import RelativeMotion
    from ..utils.transforms import (
        axis_angle_to_rotation,
        invert_transform,
        make_transform,
        rotation_angle,
        rotation_to_ov,
        rotation_to_quaternion,
        rotation_to_rpy,
    )


def rotation_error(R1: np.ndarray, R2: np.ndarray) -> float:
    """Compute rotation error in degrees between two rotation matrices."""
    return float(np.degrees(rotation_angle(R1.T @ R2)))


def _format_vector(values: Sequence[float]) -> str:
    return " ".join(f"{v:.6f}" for v in values)


def format_calibration_report(result: CalibrationResult, ee_frame: str, camera_frame: str) -> str:
    """Human readable summary of a solved transform and its inverse."""
    T = result.transform
    R = T[:3, :3]
    q = rotation_to_quaternion(R)
    roll, pitch, yaw = rotation_to_rpy(R)
    T_inv = invert_transform(T)
    q_inv = rotation_to_quaternion(T_inv[:3, :3])

    lines = [
        f"Result from {ee_frame} to {camera_frame}:",
        np.array2string(T, precision=6, suppress_small=True),
        f"Translation (x,y,z) : {_format_vector(T[:3, 3])}",
        f"Rotation q(x,y,z,w): {_format_vector(q)}",
        f"Rotation (roll,pitch,yaw): {_format_vector([roll, pitch, yaw])}",
        f"Inverted translation (x,y,z) : {_format_vector(T_inv[:3, 3])}",
        f"Inverted rotation (x,y,z,w): {_format_vector(q_inv)}",
        result.report.brief_report(),
    ]
    return "\n".join(lines)


def frame_config(result: CalibrationResult, parent: str) -> Dict[str, Any]:
    """Frame system snippet placing the camera relative to the end effector."""
    T = result.transform
    ox, oy, oz, theta = rotation_to_ov(T[:3, :3])
    return {
        "frame": {
            "translation": {
                "x": float(T[0, 3]),
                "y": float(T[1, 3]),
                "z": float(T[2, 3])
            },
            "orientation": {
                "type": "ov_degrees",
                "value": {
                    "x": ox,
                    "y": oy,
                    "z": oz,
                    "th": theta
                }
            },
            "parent": parent
        }
    }


def compute_motion_residuals(
    T_hand_eye: np.ndarray,
    robot_motions: Sequence[RelativeMotion],
    camera_motions: Sequence[RelativeMotion],
) -> List[Dict[str, float]]:
    """Per-motion disagreement between the robot motion A and its prediction X B X^-1."""
    T_eye_hand = invert_transform(T_hand_eye)
    residuals = []
    for robot, camera in zip(robot_motions, camera_motions):
        A = make_transform(axis_angle_to_rotation(robot.rotation), robot.translation)
        B = make_transform(axis_angle_to_rotation(camera.rotation), camera.translation)
        A_predicted = T_hand_eye @ B @ T_eye_hand
        residuals.append({
            "rotation_error": rotation_error(A_predicted[:3, :3], A[:3, :3]),
            "translation_error": float(np.linalg.norm(A_predicted[:3, 3] - A[:3, 3])),
        })
    return residuals


def summarize_residuals(residuals: List[Dict[str, float]]) -> Dict[str, Any]:
    def calc(values: List[float]) -> Dict[str, float]:
        if not values:
            return {"mean": 0.0, "std": 0.0, "min": 0.0, "max": 0.0}
        return {
            "mean": float(np.mean(values)),
            "std": float(np.std(values)),
            "min": float(np.min(values)),
            "max": float(np.max(values)),
        }

    return {
        "num_motions": len(residuals),
        "rotation_error": calc([r["rotation_error"] for r in residuals]),
        "translation_error": calc([r["translation_error"] for r in residuals]),
    }


def save_json(path: str, data: Any) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def create_residual_plot(residuals: List[Dict[str, float]], path: str, tag: Optional[str] = None) -> None:
    if not residuals:
        return

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    motion_indices = list(range(1, len(residuals) + 1))
    fig, ax1 = plt.subplots(figsize=(12, 6))
    ax1.plot(motion_indices, [r["rotation_error"] for r in residuals], "o-", color="tab:blue", label="Rotation (deg)")
    ax1.set_xlabel("Motion Index")
    ax1.set_ylabel("Rotation Error (deg)", color="tab:blue")
    ax1.tick_params(axis="y", labelcolor="tab:blue")
    ax1.grid(True, alpha=0.3)

    ax2 = ax1.twinx()
    ax2.plot(motion_indices, [r["translation_error"] for r in residuals], "s-", color="tab:red", label="Translation")
    ax2.set_ylabel("Translation Error", color="tab:red")
    ax2.tick_params(axis="y", labelcolor="tab:red")

    title = "Motion-by-Motion Hand-Eye Residuals"
    if tag:
        title += f" - {tag}"
    plt.title(title)
    fig.tight_layout()
    plt.savefig(path, dpi=150, bbox_inches="tight")
    plt.close(fig)
