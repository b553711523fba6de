"""Audible cue sent to the client when the live feed changes."""
import logging
from dataclasses import asdict, dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToneCue:
    frequency_hz: float = 800.0
    waveform: str = 'sine'
    peak_gain: float = 0.3
    end_gain: float = 0.01
    duration_s: float = 0.5

    def frame(self) -> dict:
        return {'type': 'cue', **{k: v for k, v in asdict(self).items()}}


NEW_REQUEST_CUE = ToneCue()


async def sound_cue(send, cue: ToneCue = NEW_REQUEST_CUE) -> None:
    """Push the cue frame; the cue is cosmetic, so delivery failures are only logged."""
    try:
        await send(cue.frame())
    except Exception as e:  # noqa: BLE001
        logger.debug("audio cue not delivered: %s", e)
