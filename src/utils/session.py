"""Interactive recording session.

The controller is a small state machine driven by discrete commands::

    IDLE --capture--> COLLECTING --finalize--> CALIBRATING --> DONE

Everything runs on one event loop and one command is handled at a time; pose
lookups are awaited in line with their own timeout, so nothing overlaps with
command handling.
"""
import asyncio
import enum
import sys
import warnings
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable, Optional, Union

from viam.logging import getLogger

try:
    from utils.calibration import CalibrationResult, estimate
    from utils.calibration_logging import (
        compute_motion_residuals,
        create_residual_plot,
        format_calibration_report,
        summarize_residuals,
    )
    from utils.config import MIN_MOTIONS, RecorderConfig
    from utils.errors import CalibrationError, CalibrationIOError, InsufficientData, PoseLookupError
    from utils.pair_storage import read_pairs, write_pairs, write_result
    from utils.pair_store import AbsolutePosePair, TransformPairStore, motion_consistency
    from utils.pose_source import PoseSource
    from utils.solver import HandEyeSolver, ScrewMotionSolver
except ModuleNotFoundError:
    from ..utils.calibration import CalibrationResult, estimate
    from ..utils.calibration_logging import (
        compute_motion_residuals,
        create_residual_plot,
        format_calibration_report,
        summarize_residuals,
    )
    from ..utils.config import MIN_MOTIONS, RecorderConfig
    from ..utils.errors import CalibrationError, CalibrationIOError, InsufficientData, PoseLookupError
    from ..utils.pair_storage import read_pairs, write_pairs, write_result
    from ..utils.pair_store import AbsolutePosePair, TransformPairStore, motion_consistency
    from ..utils.pose_source import PoseSource
    from ..utils.solver import HandEyeSolver, ScrewMotionSolver

LOGGER = getLogger(__name__)


class Command(enum.Enum):
    CAPTURE = "capture"
    UNDO = "undo"
    FINALIZE = "finalize"


class SessionState(enum.Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    CALIBRATING = "calibrating"
    DONE = "done"


KEY_COMMANDS = {
    "s": Command.CAPTURE,
    "d": Command.UNDO,
    "q": Command.FINALIZE,
}

INSTRUCTIONS = (
    "Press s to add the current frame transformation to the cache.\n"
    "Press d to delete last frame transformation.\n"
    "Press q to calibrate frame transformation and exit the application."
)


def parse_command(key: str) -> Optional[Command]:
    if not isinstance(key, str) or len(key) != 1:
        return None
    return KEY_COMMANDS.get(key.lower())


@dataclass
class Session:
    store: TransformPairStore = field(default_factory=TransformPairStore)
    state: SessionState = SessionState.IDLE
    result: Optional[CalibrationResult] = None


class SessionController:
    def __init__(
        self,
        config: RecorderConfig,
        robot_source: Optional[PoseSource] = None,
        camera_source: Optional[PoseSource] = None,
        solver: Optional[HandEyeSolver] = None,
        session: Optional[Session] = None,
    ):
        self.config = config
        self.robot_source = robot_source
        self.camera_source = camera_source
        self.solver = solver or ScrewMotionSolver()
        self.session = session or Session()

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def store(self) -> TransformPairStore:
        return self.session.store

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "num_pairs": self.store.size(),
            "num_motions": self.store.num_motions,
        }

    async def handle(self, command: Union[Command, str]) -> bool:
        """Dispatch one command. Returns False when it was not recognised or not applicable."""
        if isinstance(command, str):
            parsed = parse_command(command)
            if parsed is None:
                LOGGER.info(f"{command!r} pressed.")
                return False
            command = parsed

        if self.state in (SessionState.CALIBRATING, SessionState.DONE):
            LOGGER.info(f"session is {self.state.value}, ignoring {command.value}")
            return False

        if command is Command.CAPTURE:
            return await self.capture()
        if command is Command.UNDO:
            return self.undo()
        await self.finalize()
        return True

    async def _lookup(self, source: PoseSource, from_frame: str, to_frame: str):
        try:
            return await source.lookup(from_frame, to_frame, self.config.lookup_timeout)
        except PoseLookupError as e:
            LOGGER.warning(str(e))
            return None

    async def capture(self) -> bool:
        """Record the current robot and camera poses as one pair, or nothing at all."""
        if self.robot_source is None or self.camera_source is None:
            LOGGER.warning("no pose sources configured, cannot capture")
            return False

        camera_pose = await self._lookup(self.camera_source, self.config.fiducial_reference, self.config.camera_frame)
        robot_pose = await self._lookup(self.robot_source, self.config.base_frame, self.config.end_effector_frame)
        if camera_pose is None or robot_pose is None:
            LOGGER.warning("Fail to get one/both of needed transforms, capture discarded")
            return False

        pair = AbsolutePosePair(robot_pose=robot_pose, camera_pose=camera_pose)
        motions = self.store.append(pair)
        if motions is None:
            LOGGER.info("Adding first transform (reference pose)")
        else:
            LOGGER.info(f"Adding transform #{self.store.num_motions}")
            check = motion_consistency([motions[0]], [motions[1]])[0]
            LOGGER.debug(
                f"rotation EE: {check['robot_angle_deg']:.3f} deg vs Cam: {check['camera_angle_deg']:.3f} deg, "
                f"L2Norm EE: {check['robot_translation_norm']:.4f} vs Cam: {check['camera_translation_norm']:.4f}"
            )
        LOGGER.debug(f"EE transform:\n{robot_pose}\nCam transform:\n{camera_pose}")

        self.session.state = SessionState.COLLECTING
        self._persist()
        return True

    def undo(self) -> bool:
        removed = self.store.remove_last()
        if removed is None:
            LOGGER.info("Nothing to delete, no frame transformations recorded.")
            return False
        if self.store.size() == 0:
            self.session.state = SessionState.IDLE
        LOGGER.info(
            f"Deleted last frame transformation. Number of current transformations: {self.store.num_motions}"
        )
        self._persist()
        return True

    def _persist(self):
        try:
            write_pairs(self.store.pairs, self.config.record_file)
        except CalibrationIOError as e:
            LOGGER.warning(f"could not record pose pairs, continuing in memory: {e}")

    def _warn_if_insufficient(self):
        if self.store.num_motions >= MIN_MOTIONS:
            return
        message = (
            f"Number of calibration transform pairs < {MIN_MOTIONS} "
            f"({self.store.num_motions} collected), calibrating anyway"
        )
        LOGGER.warning(message)
        warnings.warn(message, InsufficientData, stacklevel=3)

    async def finalize(self) -> Optional[CalibrationResult]:
        """Calibrate from everything collected so far and end the session."""
        self._warn_if_insufficient()
        self.session.state = SessionState.CALIBRATING
        try:
            self.session.result = self.calibrate(self.store)
        except CalibrationError as e:
            LOGGER.error(f"calibration failed: {e}")
            self.session.result = None
        finally:
            self.session.state = SessionState.DONE
        return self.session.result

    def calibrate(self, store: TransformPairStore) -> CalibrationResult:
        store.check_invariants()
        result = estimate(store.robot_motions, store.camera_motions, self.solver)
        LOGGER.info(format_calibration_report(result, self.config.end_effector_frame, self.config.camera_frame))

        residuals = compute_motion_residuals(result.transform, store.robot_motions, store.camera_motions)
        LOGGER.info(f"motion residuals: {summarize_residuals(residuals)}")
        if self.config.residual_plot_file:
            create_residual_plot(residuals, self.config.residual_plot_file, tag=self.config.end_effector_frame)

        try:
            write_result(result, self.config.output_file)
        except CalibrationIOError as e:
            LOGGER.error(f"could not write calibration result: {e}")
        return result

    def calibrate_from_file(self, path: Optional[str] = None) -> CalibrationResult:
        """Load a record file and calibrate immediately. Read errors propagate."""
        path = path or self.config.load_file
        LOGGER.info(f"Transform pairs loading file: {path}")
        self.session.store = read_pairs(path)
        self._warn_if_insufficient()
        self.session.result = None
        self.session.state = SessionState.CALIBRATING
        try:
            self.session.result = self.calibrate(self.store)
        finally:
            self.session.state = SessionState.DONE
        return self.session.result

    async def run(self, commands: AsyncIterator[str]) -> Optional[CalibrationResult]:
        """Handle commands until the session is done or the source runs dry."""
        LOGGER.info(INSTRUCTIONS)
        period = 1.0 / self.config.poll_rate_hz
        async for key in commands:
            await self.handle(key)
            if self.state is SessionState.DONE:
                break
            await asyncio.sleep(period)
        return self.session.result


async def iterate_commands(keys: Iterable[str]) -> AsyncIterator[str]:
    for key in keys:
        yield key


class KeyboardCommandSource:
    """Single unbuffered key presses from a terminal."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdin

    def read_key(self) -> str:
        if not self.stream.isatty():
            return self.stream.read(1)

        import termios

        fd = self.stream.fileno()
        old_settings = termios.tcgetattr(fd)
        new_settings = termios.tcgetattr(fd)
        new_settings[3] &= ~(termios.ICANON | termios.ECHO)
        try:
            termios.tcsetattr(fd, termios.TCSANOW, new_settings)
            return self.stream.read(1)
        finally:
            termios.tcsetattr(fd, termios.TCSANOW, old_settings)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        key = await asyncio.to_thread(self.read_key)
        if key == "":
            raise StopAsyncIteration
        return key
