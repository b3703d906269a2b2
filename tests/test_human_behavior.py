from __future__ import annotations

import random

from orbitagent import constants
from orbitagent.core.human_behavior import HumanBehavior


def _behavior(seed=7):
    slept: list[float] = []
    return HumanBehavior(sleep=slept.append, rng=random.Random(seed)), slept


def test_delay_within_bounds_and_sleeps_seconds():
    behavior, slept = _behavior()
    for _ in range(20):
        ms = behavior.delay(100, 200)
        assert 100 <= ms <= 200
    assert all(0.1 <= s <= 0.2 for s in slept)


def test_between_listings_and_applications_ranges():
    behavior, _ = _behavior()
    assert (
        constants.BETWEEN_LISTINGS_MIN
        <= behavior.between_listings()
        <= constants.BETWEEN_LISTINGS_MAX
    )
    assert (
        constants.BETWEEN_APPLICATIONS_MIN
        <= behavior.between_applications()
        <= constants.BETWEEN_APPLICATIONS_MAX
    )


def test_reading_pause_scales_with_text():
    behavior, _ = _behavior()
    short = behavior.reading_pause(10)
    long = behavior.reading_pause(750)
    assert short <= constants.HUMAN_READING_PAUSE_PER_SENTENCE * 1.3
    assert long >= 10 * constants.HUMAN_READING_PAUSE_PER_SENTENCE * 0.7


class _AlwaysIdle(random.Random):
    def random(self):
        return 0.0


class _NeverIdle(random.Random):
    def random(self):
        return 0.99


def test_occasional_idle():
    slept: list[float] = []
    assert HumanBehavior(sleep=slept.append, rng=_NeverIdle()).occasional_idle() == 0.0
    assert slept == []

    idle = HumanBehavior(sleep=slept.append, rng=_AlwaysIdle()).occasional_idle()
    assert constants.IDLE_MIN <= idle <= constants.IDLE_MAX
    assert len(slept) == 1
