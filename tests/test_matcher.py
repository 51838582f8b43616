from __future__ import annotations

import sys

from pathlib import Path

import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from src.face.matcher import CosineMatcher, MatcherConfig, find_best_match
from src.face.types import NO_MATCH, EnrollmentRecord, MatchResult
from src.utils.math import cosine_similarity, l2_normalize


def _rec(identity: str, vec) -> EnrollmentRecord:
    return EnrollmentRecord(identity=identity, descriptor=np.asarray(vec, dtype=np.float64))


@pytest.fixture(params=["numpy", "torch"])
def matcher(request) -> CosineMatcher:
    return CosineMatcher(MatcherConfig(threshold=0.6, backend=request.param))


@pytest.mark.parametrize("threshold", [-1.0, 0.0, 0.6, 2.0])
def test_empty_enrollment_is_no_match(threshold: float):
    assert find_best_match([1.0, 0.0], [], threshold) == NO_MATCH
    assert find_best_match([], [], threshold) == NO_MATCH


def test_threshold_boundary_is_inclusive(matcher: CosineMatcher):
    enrollment = [_rec("A", [1.0, 0.0])]
    assert matcher.match([1.0, 0.0], enrollment, threshold=1.0) == MatchResult("A", 1.0)
    assert matcher.match([1.0, 0.0], enrollment, threshold=1.01) == NO_MATCH


def test_first_record_wins_exact_ties(matcher: CosineMatcher):
    enrollment = [_rec("A", [1.0, 0.0]), _rec("B", [1.0, 0.0])]
    assert matcher.match([1.0, 0.0], enrollment, threshold=0.5) == MatchResult("A", 1.0)

    reordered = [_rec("B", [1.0, 0.0]), _rec("A", [1.0, 0.0])]
    assert matcher.match([1.0, 0.0], reordered, threshold=0.5).identity == "B"


def test_first_record_wins_ties_on_real_descriptors(matcher: CosineMatcher):
    rng = np.random.default_rng(42)
    target = l2_normalize(rng.normal(size=128))
    other = l2_normalize(rng.normal(size=128))
    enrollment = [_rec("other", other), _rec("first", target.copy()), _rec("second", target.copy())]

    result = matcher.match(target, enrollment, threshold=0.5)
    assert result.identity == "first"
    assert result.score == pytest.approx(1.0)


def test_best_of_many(matcher: CosineMatcher):
    enrollment = [_rec("A", [0.9, 0.1]), _rec("B", [1.0, 0.0])]
    result = matcher.match([1.0, 0.0], enrollment, threshold=0.5)
    assert result == MatchResult("B", 1.0)


def test_best_candidate_matches_pairwise_similarity(matcher: CosineMatcher):
    rng = np.random.default_rng(7)
    query = l2_normalize(rng.normal(size=64))
    enrollment = [_rec(f"id{i}", l2_normalize(query + rng.normal(scale=0.8, size=64))) for i in range(30)]

    result = matcher.match(query, enrollment, threshold=-1.0)
    sims = [cosine_similarity(query, r.descriptor) for r in enrollment]
    assert result.identity == f"id{int(np.argmax(sims))}"
    assert result.score == pytest.approx(max(sims), abs=1e-9)


def test_length_mismatch_record_is_skipped(matcher: CosineMatcher):
    enrollment = [_rec("short", [1.0]), _rec("long", [1.0, 0.0, 0.0]), _rec("ok", [0.8, 0.6])]
    assert matcher.match([1.0, 0.0], enrollment, threshold=0.5) == MatchResult("ok", pytest.approx(0.8))

    only_bad = [_rec("long", [1.0, 0.0, 0.0])]
    assert matcher.match([1.0, 0.0], only_bad, threshold=-1.0) == NO_MATCH


def test_degenerate_query_is_no_match(matcher: CosineMatcher):
    enrollment = [_rec("A", [1.0, 0.0])]
    assert matcher.match([], enrollment, threshold=-1.0) == NO_MATCH
    assert matcher.match([0.0, 0.0], enrollment, threshold=-1.0) == NO_MATCH
    assert matcher.match([float("nan"), 1.0], enrollment, threshold=-1.0) == NO_MATCH
    assert matcher.match(None, enrollment, threshold=-1.0) == NO_MATCH
    assert matcher.match(["a", "b"], enrollment, threshold=-1.0) == NO_MATCH


def test_degenerate_records_are_not_candidates(matcher: CosineMatcher):
    enrollment = [
        _rec("zero", [0.0, 0.0]),
        _rec("nan", [float("nan"), 0.0]),
        EnrollmentRecord(identity="text", descriptor=np.array(["a", "b"])),
        _rec("opposite", [-1.0, 0.0]),
    ]
    assert matcher.match([1.0, 0.0], enrollment, threshold=-1.0) == MatchResult("opposite", -1.0)
    assert matcher.match([1.0, 0.0], enrollment[:3], threshold=-1.0) == NO_MATCH


def test_full_pipeline():
    query = l2_normalize([3.0, 4.0])
    assert np.allclose(query, [0.6, 0.8])

    result = find_best_match(query, [_rec("X", [0.6, 0.8])], 0.6)
    assert result.identity == "X"
    assert result.score == pytest.approx(1.0)


def test_default_threshold():
    assert CosineMatcher().config.threshold == 0.6
    assert find_best_match([1.0, 0.0], [_rec("A", [0.5, np.sqrt(0.75)])]) == NO_MATCH
    assert find_best_match([1.0, 0.0], [_rec("A", [0.8, 0.6])]).identity == "A"


def test_config_threshold_is_used_and_call_overrides_it():
    enrollment = [_rec("A", [0.8, 0.6])]
    strict = CosineMatcher(MatcherConfig(threshold=0.9, backend="numpy"))
    assert strict.match([1.0, 0.0], enrollment) == NO_MATCH
    assert strict.match([1.0, 0.0], enrollment, threshold=0.7).identity == "A"


def test_accepts_pairs_and_generators():
    pairs = [("A", [0.0, 1.0]), ("B", [1.0, 0.0])]
    assert find_best_match([1.0, 0.0], pairs, 0.5).identity == "B"
    assert find_best_match([1.0, 0.0], (p for p in pairs), 0.5).identity == "B"
    assert find_best_match([1.0, 0.0], [("A", [1.0, 0.0], "extra"), ("B", [1.0, 0.0])], 0.5).identity == "B"


def test_inputs_are_not_mutated():
    query = np.array([3.0, 4.0])
    stored = np.array([6.0, 8.0])
    enrollment = [_rec("A", stored)]
    find_best_match(query, enrollment, 0.5)
    assert query.tolist() == [3.0, 4.0]
    assert enrollment[0].descriptor.tolist() == [6.0, 8.0]


def test_match_result_truthiness():
    assert not NO_MATCH
    assert NO_MATCH.identity is None and NO_MATCH.score is None
    assert MatchResult("A", 0.7)
    assert MatchResult("A", 0.7).matched


def test_rank_orders_candidates_and_ignores_threshold(matcher: CosineMatcher):
    enrollment = [
        _rec("low", [0.0, 1.0]),
        _rec("tie1", [1.0, 0.0]),
        _rec("mid", [0.8, 0.6]),
        _rec("tie2", [1.0, 0.0]),
        _rec("bad", [1.0]),
    ]
    ranked = matcher.rank([1.0, 0.0], enrollment, topk=10)
    assert [n for n, _ in ranked] == ["tie1", "tie2", "mid", "low"]
    assert ranked[2][1] == pytest.approx(0.8)

    assert len(matcher.rank([1.0, 0.0], enrollment, topk=2)) == 2
    assert matcher.rank([0.0, 0.0], enrollment) == []
    assert matcher.rank([1.0, 0.0], []) == []


def test_backends_agree():
    rng = np.random.default_rng(3)
    query = l2_normalize(rng.normal(size=128))
    enrollment = [_rec(f"id{i}", l2_normalize(rng.normal(size=128))) for i in range(50)]
    enrollment.insert(17, _rec("near", l2_normalize(query + rng.normal(scale=0.05, size=128))))

    np_m = CosineMatcher(MatcherConfig(threshold=0.5, backend="numpy"))
    th_m = CosineMatcher(MatcherConfig(threshold=0.5, backend="torch"))
    a = np_m.match(query, enrollment)
    b = th_m.match(query, enrollment)
    assert a.identity == b.identity == "near"
    assert a.score == pytest.approx(b.score, abs=1e-9)


def test_unknown_backend_is_rejected():
    with pytest.raises(ValueError):
        MatcherConfig(backend="tpu")
    assert MatcherConfig(backend=" NumPy ").backend == "numpy"


@pytest.mark.parametrize("student_id", [42, ("class-3", 7), "s-001"])
def test_identity_is_returned_as_given(matcher: CosineMatcher, student_id):
    pairs = [("other", [0.0, 1.0]), (student_id, [1.0, 0.0])]
    result = matcher.match([1.0, 0.0], pairs, threshold=0.5)
    assert result.identity == student_id
    assert type(result.identity) is type(student_id)

    record = EnrollmentRecord(identity=student_id, descriptor=np.array([1.0, 0.0]))
    assert matcher.match([1.0, 0.0], [record], threshold=0.5).identity == student_id
    assert matcher.rank([1.0, 0.0], pairs)[0][0] == student_id


@pytest.mark.parametrize("scale", [1e200, 1e-200, 1e-310])
def test_extreme_magnitudes_still_match(matcher: CosineMatcher, scale: float):
    v = np.array([0.6, 0.8, 0.0])
    enrollment = [_rec("other", np.array([0.0, 0.0, 1.0]) * scale), _rec("same", v * scale)]

    result = matcher.match(v * scale, enrollment, threshold=0.9)
    assert result.identity == "same"
    assert result.score == pytest.approx(1.0)
