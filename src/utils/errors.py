class HandEyeError(Exception):
    """Base class for recorder errors."""


class PoseLookupError(HandEyeError):
    """A pose could not be obtained from a pose source."""

    def __init__(self, from_frame: str, to_frame: str, reason: str):
        self.from_frame = from_frame
        self.to_frame = to_frame
        super().__init__(f"could not look up transform from {from_frame} to {to_frame}: {reason}")


class PoseLookupTimeout(PoseLookupError):
    """A pose lookup did not complete within its timeout."""

    def __init__(self, from_frame: str, to_frame: str, timeout: float):
        self.timeout = timeout
        super().__init__(from_frame, to_frame, f"timed out after {timeout:.1f}s")


class DataInconsistency(HandEyeError):
    """Internal invariant violation; indicates a programming defect."""


class CalibrationError(HandEyeError):
    """The hand-eye solver could not produce a result."""


class CalibrationIOError(HandEyeError, IOError):
    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{message}: {path}")


class InsufficientData(UserWarning):
    """Fewer relative motions than recommended for a stable solve."""
