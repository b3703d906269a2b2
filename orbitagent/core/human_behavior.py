"""
拟人化节奏：动作间随机延迟、阅读停顿、偶发空闲。
"""

from __future__ import annotations

import math
import random
import time
from typing import Callable, Optional

from .. import constants


class HumanBehavior:
    MAX_ACTIONS_PER_MINUTE = constants.MAX_ACTIONS_PER_MINUTE
    MAX_APPLICATIONS_PER_SESSION = constants.MAX_APPLICATIONS_PER_SESSION
    MAX_EXTRACTIONS_PER_SESSION = constants.MAX_EXTRACTIONS_PER_SESSION

    def __init__(
        self,
        *,
        sleep: Optional[Callable[[float], None]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._sleep = sleep or time.sleep
        self._rng = rng or random.Random()

    def delay(
        self,
        min_ms: float = constants.HUMAN_DELAY_MIN,
        max_ms: float = constants.HUMAN_DELAY_MAX,
    ) -> float:
        ms = self._rng.uniform(min_ms, max_ms)
        self._sleep(ms / 1000.0)
        return ms

    def reading_pause(self, text_length: int) -> float:
        sentences = max(1, math.ceil(text_length / 75))
        pause = sentences * constants.HUMAN_READING_PAUSE_PER_SENTENCE
        variance = pause * 0.3
        return self.delay(pause - variance, pause + variance)

    def between_listings(self) -> float:
        return self.delay(constants.BETWEEN_LISTINGS_MIN, constants.BETWEEN_LISTINGS_MAX)

    def between_applications(self) -> float:
        return self.delay(
            constants.BETWEEN_APPLICATIONS_MIN, constants.BETWEEN_APPLICATIONS_MAX
        )

    def occasional_idle(self) -> float:
        if self._rng.random() < constants.IDLE_CHANCE:
            return self.delay(constants.IDLE_MIN, constants.IDLE_MAX)
        return 0.0
