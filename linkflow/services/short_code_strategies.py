"""
Short code generation strategies for the allocator.
Uses Strategy Pattern to allow different generation algorithms.
"""

import random
import string
from abc import ABC, abstractmethod


class ShortCodeStrategy(ABC):
    """Abstract base class for short code generation strategies"""

    @abstractmethod
    def generate(self) -> str:
        """
        Generate a candidate short code.

        Uniqueness is not guaranteed here; the allocator claims the
        candidate with an atomic insert-if-absent and retries on collision.
        """
        pass


class RandomShortCodeStrategy(ShortCodeStrategy):
    """
    Random fixed-length code over the 62-symbol alphanumeric alphabet.

    At length 7 there are 62^7 (~3.5e12) candidates, so collisions stay
    rare until the store holds billions of codes.
    """

    ALPHABET = string.ascii_letters + string.digits

    def __init__(self, length: int = 7, rng: random.Random = None):
        if length < 3:
            raise ValueError("Short codes must be at least 3 characters long")
        self.length = length
        self._rng = rng or random.SystemRandom()

    def generate(self) -> str:
        return ''.join(self._rng.choice(self.ALPHABET) for _ in range(self.length))
