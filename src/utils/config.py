import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional

ARM_ATTR = "arm_name"
BASE_FRAME_ATTR = "base_frame"
CAMERA_NAME_ATTR = "camera_name"
FIDUCIAL_FRAME_ATTR = "fiducial_frame"
POSE_TRACKER_ATTR = "pose_tracker"
BODY_NAME_ATTR = "body_name"
LOAD_FROM_FILE_ATTR = "load_transforms_from_file"
RECORD_FILE_ATTR = "transform_pairs_record_filename"
LOAD_FILE_ATTR = "transform_pairs_load_filename"
OUTPUT_FILE_ATTR = "output_calibrated_transform_filename"
RESIDUAL_PLOT_ATTR = "residual_plot_filename"
LOOKUP_TIMEOUT_ATTR = "lookup_timeout_seconds"
POLL_RATE_ATTR = "poll_rate_hz"

# Default config attribute values
DEFAULT_END_EFFECTOR_FRAME = "end_effector"
DEFAULT_CAMERA_FRAME = "camera"
DEFAULT_BASE_FRAME = "world"
DEFAULT_RECORD_FILE = "TransformPairsInput.yml"
DEFAULT_LOAD_FILE = "TransformPairsOutput.yml"
DEFAULT_OUTPUT_FILE = "CalibratedTransform.yml"
DEFAULT_LOOKUP_TIMEOUT_SECONDS = 10.0
DEFAULT_POLL_RATE_HZ = 10.0

# below this many relative motions finalize warns but still calibrates
MIN_MOTIONS = 5


def validate_attributes(attrs: Mapping[str, Any]) -> None:
    """Check attribute presence and types.

    Frame names are only labels when pairs are loaded from a file, so they are
    required for recording only.
    """
    if not attrs.get(LOAD_FROM_FILE_ATTR, False):
        arm = attrs.get(ARM_ATTR)
        if arm is None:
            raise Exception(f"Missing required {ARM_ATTR} attribute.")

        camera = attrs.get(CAMERA_NAME_ATTR)
        if camera is None:
            raise Exception(f"Missing required {CAMERA_NAME_ATTR} attribute.")

        if attrs.get(POSE_TRACKER_ATTR) is None and attrs.get(FIDUCIAL_FRAME_ATTR) is None:
            raise Exception(f"Missing required {FIDUCIAL_FRAME_ATTR} attribute (or set {POSE_TRACKER_ATTR}).")

    body_name = attrs.get(BODY_NAME_ATTR)
    if body_name is not None and not isinstance(body_name, str):
        raise Exception(f"'{BODY_NAME_ATTR}' must be a string, got {type(body_name)}")

    for attr in (LOOKUP_TIMEOUT_ATTR, POLL_RATE_ATTR):
        value = attrs.get(attr)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise Exception(f"'{attr}' must be a positive number, got {value}")


@dataclass
class RecorderConfig:
    """Frame names, file paths and timing for a recording session."""
    end_effector_frame: str
    camera_frame: str
    fiducial_frame: Optional[str] = None
    base_frame: str = DEFAULT_BASE_FRAME
    pose_tracker: Optional[str] = None
    body_name: Optional[str] = None
    load_transforms_from_file: bool = False
    record_file: str = DEFAULT_RECORD_FILE
    load_file: str = DEFAULT_LOAD_FILE
    output_file: str = DEFAULT_OUTPUT_FILE
    residual_plot_file: Optional[str] = None
    lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT_SECONDS
    poll_rate_hz: float = DEFAULT_POLL_RATE_HZ

    @classmethod
    def from_attributes(cls, attrs: Mapping[str, Any]) -> "RecorderConfig":
        validate_attributes(attrs)
        return cls(
            end_effector_frame=attrs.get(ARM_ATTR, DEFAULT_END_EFFECTOR_FRAME),
            camera_frame=attrs.get(CAMERA_NAME_ATTR, DEFAULT_CAMERA_FRAME),
            fiducial_frame=attrs.get(FIDUCIAL_FRAME_ATTR),
            base_frame=attrs.get(BASE_FRAME_ATTR, DEFAULT_BASE_FRAME),
            pose_tracker=attrs.get(POSE_TRACKER_ATTR),
            body_name=attrs.get(BODY_NAME_ATTR),
            load_transforms_from_file=bool(attrs.get(LOAD_FROM_FILE_ATTR, False)),
            record_file=attrs.get(RECORD_FILE_ATTR, DEFAULT_RECORD_FILE),
            load_file=attrs.get(LOAD_FILE_ATTR, DEFAULT_LOAD_FILE),
            output_file=attrs.get(OUTPUT_FILE_ATTR, DEFAULT_OUTPUT_FILE),
            residual_plot_file=attrs.get(RESIDUAL_PLOT_ATTR),
            lookup_timeout=float(attrs.get(LOOKUP_TIMEOUT_ATTR, DEFAULT_LOOKUP_TIMEOUT_SECONDS)),
            poll_rate_hz=float(attrs.get(POLL_RATE_ATTR, DEFAULT_POLL_RATE_HZ)),
        )

    @classmethod
    def from_json(cls, config_file: str, overrides: Optional[Mapping[str, Any]] = None) -> "RecorderConfig":
        with open(config_file, "r", encoding="utf-8") as f:
            attrs = json.load(f)
        attrs.update({k: v for k, v in (overrides or {}).items() if v is not None})
        return cls.from_attributes(attrs)

    @property
    def fiducial_reference(self) -> str:
        """Name of the frame the camera pose is expressed in."""
        return self.fiducial_frame or self.body_name or self.pose_tracker
