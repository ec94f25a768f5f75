#!/usr/bin/env python3
"""
Record robot / fiducial pose pairs from the keyboard and solve the hand-eye transform.

Keys: s = capture current pair, d = delete last pair, q = calibrate and exit.
With --load-from-file the recorded pairs are read from disk and calibrated
without connecting to the machine.

Usage: python src/scripts/record_hand_eye.py --arm-name ur5e --camera-name cam --fiducial-frame tag
"""
import argparse
import asyncio
import json
import os
import sys

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from dotenv import load_dotenv
from viam.robot.client import RobotClient

from typing import Any, Dict, Optional

try:
    from utils.calibration_logging import frame_config, save_json
    from utils.config import (
        ARM_ATTR,
        BASE_FRAME_ATTR,
        CAMERA_NAME_ATTR,
        FIDUCIAL_FRAME_ATTR,
        LOAD_FILE_ATTR,
        LOAD_FROM_FILE_ATTR,
        LOOKUP_TIMEOUT_ATTR,
        OUTPUT_FILE_ATTR,
        RECORD_FILE_ATTR,
        RESIDUAL_PLOT_ATTR,
        RecorderConfig,
    )
    from utils.errors import CalibrationError, CalibrationIOError
    from utils.pose_source import FrameSystemPoseSource
    from utils.session import KeyboardCommandSource, SessionController
except ModuleNotFoundError:
    from ..utils.calibration_logging import frame_config, save_json
    from ..utils.config import (
        ARM_ATTR,
        BASE_FRAME_ATTR,
        CAMERA_NAME_ATTR,
        FIDUCIAL_FRAME_ATTR,
        LOAD_FILE_ATTR,
        LOAD_FROM_FILE_ATTR,
        LOOKUP_TIMEOUT_ATTR,
        OUTPUT_FILE_ATTR,
        RECORD_FILE_ATTR,
        RESIDUAL_PLOT_ATTR,
        RecorderConfig,
    )
    from ..utils.errors import CalibrationError, CalibrationIOError
    from ..utils.pose_source import FrameSystemPoseSource
    from ..utils.session import KeyboardCommandSource, SessionController


async def connect():
    load_dotenv()
    opts = RobotClient.Options.with_api_key(
        api_key=os.getenv('VIAM_MACHINE_API_KEY'),
        api_key_id=os.getenv('VIAM_MACHINE_API_KEY_ID'),
    )
    address = os.getenv('VIAM_MACHINE_ADDRESS')
    return await RobotClient.at_address(address, opts)


def build_config(args: argparse.Namespace) -> RecorderConfig:
    overrides: Dict[str, Any] = {
        ARM_ATTR: args.arm_name,
        CAMERA_NAME_ATTR: args.camera_name,
        FIDUCIAL_FRAME_ATTR: args.fiducial_frame,
        BASE_FRAME_ATTR: args.base_frame,
        RECORD_FILE_ATTR: args.record_file,
        LOAD_FILE_ATTR: args.load_file,
        OUTPUT_FILE_ATTR: args.output_file,
        RESIDUAL_PLOT_ATTR: args.residual_plot,
        LOOKUP_TIMEOUT_ATTR: args.lookup_timeout,
        LOAD_FROM_FILE_ATTR: True if args.load_from_file else None,
    }
    if args.config:
        return RecorderConfig.from_json(args.config, overrides)
    return RecorderConfig.from_attributes({k: v for k, v in overrides.items() if v is not None})


def print_result(controller: SessionController) -> bool:
    result = controller.session.result
    if result is None:
        print("No calibration result was produced.")
        return False
    frame = frame_config(result, controller.config.end_effector_frame)
    print(f"Now you can add the frame to {controller.config.camera_frame} in the machine config:")
    print(json.dumps(frame, indent=2))

    frame_file = os.path.splitext(controller.config.output_file)[0] + "_frame.json"
    save_json(frame_file, frame)
    print(f"Frame config saved to {frame_file}")
    return True


async def main(config: RecorderConfig) -> int:
    print(f"Calibrated output file: {config.output_file}")

    if config.load_transforms_from_file:
        controller = SessionController(config)
        try:
            controller.calibrate_from_file()
        except CalibrationIOError as e:
            print(f"Could not load transform pairs: {e}")
            return 1
        except CalibrationError as e:
            print(f"Hand-eye calibration failed: {e}")
            return 1
        return 0 if print_result(controller) else 1

    print(f"Transform pairs recording to file: {config.record_file}")
    machine: Optional[RobotClient] = None
    try:
        machine = await connect()
        frame_system = FrameSystemPoseSource(machine)
        controller = SessionController(config, robot_source=frame_system, camera_source=frame_system)
        await controller.run(KeyboardCommandSource())
    finally:
        if machine:
            await machine.close()
    return 0 if print_result(controller) else 1


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Hand-eye transform pair recorder')
    parser.add_argument(
        '--config', '-c',
        type=str,
        help='JSON file with recorder attributes; command line options override it'
    )
    parser.add_argument(
        '--arm-name',
        type=str,
        help='End effector frame (the arm component name)'
    )
    parser.add_argument(
        '--camera-name',
        type=str,
        help='Camera frame name'
    )
    parser.add_argument(
        '--fiducial-frame',
        type=str,
        help='Frame of the fiducial the camera is observing'
    )
    parser.add_argument(
        '--base-frame',
        type=str,
        help='Robot base frame (default: world)'
    )
    parser.add_argument(
        '--record-file',
        type=str,
        help='Where captured pairs are written after every capture'
    )
    parser.add_argument(
        '--load-file',
        type=str,
        help='Pairs file read by --load-from-file'
    )
    parser.add_argument(
        '--output-file',
        type=str,
        help='Where the calibrated transform is written'
    )
    parser.add_argument(
        '--residual-plot',
        type=str,
        help='Optional PNG path for the per-motion residual plot'
    )
    parser.add_argument(
        '--lookup-timeout',
        type=float,
        help='Seconds to wait for each transform lookup (default: 10)'
    )
    parser.add_argument(
        '--load-from-file',
        action='store_true',
        help='Skip recording, load the pairs file and calibrate immediately'
    )

    args = parser.parse_args()
    try:
        config = build_config(args)
    except Exception as e:
        parser.error(str(e))
    sys.exit(asyncio.run(main(config)))
