"""
core/liveness.py — Liveness Checkers
======================================
The identity core only ever consumes a boolean: "a live person was in
front of the camera". How that boolean is produced is pluggable:

    ChallengeResponseChecker — blink / turn-head style prompts
    MotionChecker            — frame-to-frame movement over a threshold
    AttestationChecker       — no-camera fallback (captcha-style answer)

Camera-backed checkers run inside capture_session(), which closes the
capture source on every exit path: success, failure, timeout, cancel.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, List, Optional, Sequence

from config import settings

logger = logging.getLogger("veriid.liveness")


class CaptureSource(ABC):
    """A camera (or anything that yields frames). Frames are opaque to us."""

    @abstractmethod
    async def open(self) -> None: ...

    @abstractmethod
    async def read_frame(self): ...

    @abstractmethod
    async def close(self) -> None: ...


@asynccontextmanager
async def capture_session(source: CaptureSource):
    """close() runs even when open() fails partway, so it must tolerate a half-open source."""
    try:
        await source.open()
        yield source
    finally:
        await source.close()
        logger.debug("Capture source released")


class LivenessChecker(ABC):
    name = "abstract"

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = settings.LIVENESS_TIMEOUT_SECONDS if timeout is None else timeout

    @abstractmethod
    async def _check(self) -> bool: ...

    async def run(self) -> bool:
        """
        True only if the check positively passed. A timeout counts as a
        failed check; cancellation propagates.
        """
        try:
            if self.timeout:
                passed = await asyncio.wait_for(self._check(), self.timeout)
            else:
                passed = await self._check()
        except asyncio.TimeoutError:
            logger.warning(f"{self.name}: timed out after {self.timeout}s")
            return False
        logger.info(f"{self.name}: {'passed' if passed else 'failed'}")
        return bool(passed)


# A challenge inspects one frame and says whether the prompt was satisfied.
Challenge = Callable[[object], Awaitable[bool]]


class ChallengeResponseChecker(LivenessChecker):
    name = "challenge-response"

    def __init__(
        self,
        source: CaptureSource,
        challenges: Sequence[Challenge],
        frames_per_challenge: int = 30,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout)
        self.source = source
        self.challenges = list(challenges)
        self.frames_per_challenge = frames_per_challenge

    async def _check(self) -> bool:
        if not self.challenges:
            return False
        async with capture_session(self.source) as camera:
            for challenge in self.challenges:
                for _ in range(self.frames_per_challenge):
                    if await challenge(await camera.read_frame()):
                        break
                else:
                    return False
        return True


class MotionChecker(LivenessChecker):
    """
    Frames are sequences of pixel intensities. Passes when enough
    consecutive frame pairs differ by more than `threshold` on average.
    """

    name = "motion"

    def __init__(
        self,
        source: CaptureSource,
        frames: int = 20,
        threshold: float = 8.0,
        required_movements: int = 3,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout)
        self.source = source
        self.frames = frames
        self.threshold = threshold
        self.required_movements = required_movements

    @staticmethod
    def frame_difference(a: Sequence[float], b: Sequence[float]) -> float:
        if not a or len(a) != len(b):
            return 0.0
        return sum(abs(x - y) for x, y in zip(a, b)) / len(a)

    async def _check(self) -> bool:
        movements = 0
        previous: Optional[List[float]] = None
        async with capture_session(self.source) as camera:
            for _ in range(self.frames):
                frame = list(await camera.read_frame())
                if previous is not None and self.frame_difference(previous, frame) > self.threshold:
                    movements += 1
                    if movements >= self.required_movements:
                        return True
                previous = frame
        return False


class AttestationChecker(LivenessChecker):
    """No camera available: the person answers a prompt instead."""

    name = "attestation"

    def __init__(self, expected: str, answer: Callable[[], Awaitable[str]], timeout: Optional[float] = None):
        super().__init__(timeout)
        self.expected = expected
        self.answer = answer

    async def _check(self) -> bool:
        given = await self.answer()
        return (given or "").strip().lower() == self.expected.strip().lower()
