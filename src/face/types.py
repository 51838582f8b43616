from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np


@dataclass(frozen=True)
class EnrollmentRecord:
    """One enrolled identity and its (normalized) descriptor."""

    # Opaque: returned to the caller exactly as given.
    identity: Any
    descriptor: np.ndarray = field(repr=False)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of a match: identity + score, or neither for no match."""

    identity: Optional[Any] = None
    score: Optional[float] = None

    @property
    def matched(self) -> bool:
        return self.identity is not None

    def __bool__(self) -> bool:
        return self.matched


NO_MATCH = MatchResult()
