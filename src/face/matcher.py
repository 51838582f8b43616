from __future__ import annotations

import logging

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

import numpy as np
import torch

from src.config import MATCH_BACKEND, SIMILARITY_THRESHOLD, TOPK_DEBUG
from src.face.types import NO_MATCH, EnrollmentRecord, MatchResult
from src.utils.log import get_logger
from src.utils.math import as_descriptor, scale_by_max

logger = get_logger(__name__)

BACKENDS = ("auto", "numpy", "torch")


@dataclass
class MatcherConfig:
    # Minimum cosine similarity for a candidate to count as a match (inclusive).
    threshold: float = SIMILARITY_THRESHOLD
    # "auto" uses torch only when CUDA is available.
    backend: str = MATCH_BACKEND
    topk_debug: int = TOPK_DEBUG

    def __post_init__(self) -> None:
        self.threshold = float(self.threshold)
        self.backend = str(self.backend).lower().strip()
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown matcher backend: {self.backend!r} (expected one of {BACKENDS})")


def _usable(vec: Optional[np.ndarray]) -> bool:
    """A vector takes part in matching only if it is non-empty, finite and non-zero."""
    if vec is None or vec.size == 0:
        return False
    if not bool(np.all(np.isfinite(vec))):
        return False
    return bool(np.any(vec != 0.0))


def _iter_pairs(enrollment: Iterable[Any]):
    for rec in enrollment:
        if isinstance(rec, EnrollmentRecord):
            yield rec.identity, rec.descriptor
            continue
        try:
            identity, descriptor = rec
        except (TypeError, ValueError):
            logger.debug(f"Skipping malformed enrollment entry: {type(rec).__name__}")
            continue
        yield identity, descriptor


class CosineMatcher:
    """Resolve a query descriptor against an enrollment snapshot by cosine similarity.

    The matcher keeps no state between calls besides its config: every call
    reads its own query and enrollment and nothing else.

    Ties are broken by enrollment order: the first record reaching the
    best similarity wins, later records with an equal score never replace it.
    Malformed records (wrong length, zero magnitude, non-finite or non-numeric
    values) are never candidates and never abort the scan.
    """

    def __init__(self, config: Optional[MatcherConfig] = None):
        self.config = config or MatcherConfig()

    def _resolve_backend(self) -> str:
        if self.config.backend != "auto":
            return self.config.backend
        return "torch" if torch.cuda.is_available() else "numpy"

    def _prepare(
        self, query: Any, enrollment: Iterable[Any]
    ) -> Optional[Tuple[np.ndarray, List[Any], Optional[np.ndarray]]]:
        """Return (query, identities, matrix) for the usable records, or None for an unusable query.

        `matrix` is None when no enrolled record is comparable with the query.
        """
        q = as_descriptor(query)
        if not _usable(q):
            logger.debug("Query descriptor is empty or degenerate")
            return None
        # Cosine is scale-invariant; unit max-abs keeps the squared sums finite.
        q = scale_by_max(q)

        names: List[Any] = []
        rows: List[np.ndarray] = []
        for identity, descriptor in _iter_pairs(enrollment):
            vec = as_descriptor(descriptor)
            if vec is None or vec.shape[0] != q.shape[0]:
                logger.debug(
                    f"Skipping {identity}: descriptor length "
                    f"{None if vec is None else vec.shape[0]} != query length {q.shape[0]}"
                )
                continue
            if not _usable(vec):
                logger.debug(f"Skipping {identity}: degenerate descriptor")
                continue
            names.append(identity)
            rows.append(scale_by_max(vec))

        if not rows:
            return q, names, None
        return q, names, np.stack(rows, axis=0)

    def _similarities_numpy(self, q: np.ndarray, mat: np.ndarray) -> np.ndarray:
        # Row-wise reductions (not a BLAS matmul) so identical rows get bit-identical scores.
        dots = np.sum(mat * q, axis=1)
        row_norms = np.sqrt(np.sum(mat * mat, axis=1))
        q_norm = float(np.sqrt(np.sum(q * q)))
        return dots / (row_norms * q_norm)

    def _similarities_torch(self, q: np.ndarray, mat: np.ndarray) -> np.ndarray:
        device = "cuda" if torch.cuda.is_available() else "cpu"
        mat_t = torch.from_numpy(np.ascontiguousarray(mat)).to(device=device, dtype=torch.float64)
        q_t = torch.from_numpy(np.ascontiguousarray(q)).to(device=device, dtype=torch.float64)
        dots = (mat_t * q_t).sum(dim=1)
        row_norms = torch.sqrt((mat_t * mat_t).sum(dim=1))
        q_norm = torch.sqrt((q_t * q_t).sum())
        sims = dots / (row_norms * q_norm)
        return sims.detach().cpu().numpy()

    def similarities(self, q: np.ndarray, mat: np.ndarray) -> np.ndarray:
        """Cosine similarity of `q` against each row of `mat`, clipped to [-1, 1]."""
        if self._resolve_backend() == "torch":
            sims = self._similarities_torch(q, mat)
        else:
            sims = self._similarities_numpy(q, mat)
        sims = np.clip(sims, -1.0, 1.0)
        sims[~np.isfinite(sims)] = 0.0
        return sims

    def match(self, query: Any, enrollment: Iterable[Any], threshold: Optional[float] = None) -> MatchResult:
        """Return the best enrolled identity with similarity >= threshold, or NO_MATCH.

        `threshold` defaults to `config.threshold`.
        """
        records = list(enrollment)
        if not records:
            logger.debug("No enrolled descriptors to compare against")
            return NO_MATCH

        thr = self.config.threshold if threshold is None else float(threshold)

        prepared = self._prepare(query, records)
        if prepared is None:
            return NO_MATCH
        q, names, mat = prepared
        if mat is None:
            logger.debug("No enrolled descriptor is comparable with the query")
            return NO_MATCH

        sims = self.similarities(q, mat)
        if logger.isEnabledFor(logging.DEBUG):
            for name, sim in zip(names, sims):
                logger.debug(f"Comparing vs {name}: {sim * 100:.1f}%")

        candidates = sims >= thr
        if not bool(np.any(candidates)):
            logger.debug(f"No match found above threshold {thr:.2f}")
            return NO_MATCH

        # argmax returns the first index of the maximum, which is the tie-break rule.
        best_idx = int(np.argmax(np.where(candidates, sims, -np.inf)))
        result = MatchResult(identity=names[best_idx], score=float(sims[best_idx]))
        logger.debug(f"Best match: {result.identity} ({result.score * 100:.1f}%)")
        return result

    def rank(self, query: Any, enrollment: Iterable[Any], topk: Optional[int] = None) -> List[Tuple[Any, float]]:
        """Top-k (identity, similarity) candidates, best first, ignoring the threshold.

        Equal scores keep enrollment order. Useful to see why a query did or did not match.
        """
        k = int(max(1, self.config.topk_debug if topk is None else topk))
        prepared = self._prepare(query, list(enrollment))
        if prepared is None:
            return []
        q, names, mat = prepared
        if mat is None:
            return []

        sims = self.similarities(q, mat)
        order = np.argsort(-sims, kind="stable")[:k]
        return [(names[int(i)], float(sims[int(i)])) for i in order]


def find_best_match(
    query: Any,
    enrollment: Iterable[Any],
    threshold: float = SIMILARITY_THRESHOLD,
) -> MatchResult:
    """Match `query` against `enrollment` with a default `CosineMatcher`."""
    return CosineMatcher(MatcherConfig(threshold=threshold)).match(query, enrollment)
