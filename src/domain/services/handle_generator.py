"""Anonymous handle candidate generation domain service.

Produces handle candidates from word lists according to the caller's
generation parameters. Candidates are not checked for uniqueness here;
the identity vault reserves names and counts failed attempts.
"""

from __future__ import annotations

import random
from typing import Final

from src.domain.models.anonymous_handle import (
    HandleFormat,
    HandleGenerationParams,
    validate_handle_string,
)

ADJECTIVES: Final[tuple[str, ...]] = (
    "Swift", "Bright", "Clever", "Bold", "Calm", "Cool", "Fast", "Kind",
    "Smart", "Wise", "Brave", "Gentle", "Happy", "Lucky", "Magic", "Pure",
    "Quick", "Sharp", "Strong", "Sweet", "True", "Wild", "Young", "Zest",
    "Epic", "Noble", "Radiant", "Vibrant", "Dynamic", "Elegant", "Fierce",
    "Golden", "Harmonic", "Infinite", "Jovial", "Keen", "Luminous", "Mystic",
    "Serene", "Vivid", "Cosmic", "Prismatic", "Ethereal", "Celestial",
)  # fmt: skip

NOUNS: Final[tuple[str, ...]] = (
    "Tiger", "Eagle", "Wolf", "Bear", "Fox", "Hawk", "Lion", "Deer",
    "Owl", "Raven", "Falcon", "Shark", "Dolphin", "Phoenix", "Dragon",
    "Unicorn", "Pegasus", "Griffin", "Sphinx", "Basilisk",
    "Explorer", "Navigator", "Pioneer", "Adventurer", "Dreamer", "Creator",
    "Builder", "Artist", "Writer", "Sage", "Mage", "Warrior", "Guardian",
    "Wanderer", "Seeker", "Thinker", "Innovator", "Visionary", "Legend",
    "Philosopher", "Inventor", "Scholar", "Mentor", "Guide", "Champion",
)  # fmt: skip

COLORS: Final[tuple[str, ...]] = (
    "Red", "Blue", "Green", "Yellow", "Purple", "Orange", "Pink", "Cyan",
    "Magenta", "Lime", "Indigo", "Teal", "Coral", "Gold", "Silver", "Copper",
    "Emerald", "Ruby", "Sapphire", "Amber", "Pearl", "Crystal", "Shadow",
    "Light", "Dark", "Bright", "Deep", "Rich", "Vivid", "Pastel", "Azure",
    "Crimson", "Violet", "Turquoise", "Scarlet", "Ivory", "Ebony",
)  # fmt: skip

CONCRETE_FORMATS: Final[tuple[HandleFormat, ...]] = (
    HandleFormat.ADJECTIVE_NOUN,
    HandleFormat.COLOR_NOUN,
    HandleFormat.ADJECTIVE_COLOR,
    HandleFormat.NOUN_COLOR,
)

MAX_NUMERIC_SUFFIX: Final[int] = 9999


class HandleGenerator:
    """Builds handle candidates from word lists.

    Args:
        rng: Random source. Tests pass a seeded ``random.Random``; the
            default uses ``random.SystemRandom`` so handles are not
            predictable from each other.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.SystemRandom()

    def candidate(self, params: HandleGenerationParams) -> str:
        """Generate one candidate handle string.

        The numeric suffix survives truncation; the word part is cut to
        fit ``max_length``.
        """
        handle_format = params.format
        if handle_format == HandleFormat.RANDOM:
            handle_format = self._rng.choice(CONCRETE_FORMATS)

        words = params.prefix + self._words(handle_format)
        suffix = (
            str(self._rng.randint(1, MAX_NUMERIC_SUFFIX))
            if params.include_numbers
            else ""
        )
        if len(suffix) >= params.max_length:
            suffix = ""
        room = params.max_length - len(suffix)
        return words[:room] + suffix

    def valid_candidate(self, params: HandleGenerationParams) -> str | None:
        """Generate a candidate, or None if it breaks the format rules."""
        candidate = self.candidate(params)
        if validate_handle_string(candidate):
            return None
        return candidate

    def _words(self, handle_format: HandleFormat) -> str:
        adjective = self._rng.choice(ADJECTIVES)
        noun = self._rng.choice(NOUNS)
        color = self._rng.choice(COLORS)
        if handle_format == HandleFormat.ADJECTIVE_NOUN:
            return adjective + noun
        if handle_format == HandleFormat.COLOR_NOUN:
            return color + noun
        if handle_format == HandleFormat.ADJECTIVE_COLOR:
            return adjective + color
        return noun + color
