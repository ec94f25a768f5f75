import asyncio
from viam.module.module import Module
try:
    from models.hand_eye_recorder import HandEyeRecorder
except ModuleNotFoundError:
    # when running as local module with run.sh
    from .models.hand_eye_recorder import HandEyeRecorder


if __name__ == '__main__':
    asyncio.run(Module.run_from_registry())
