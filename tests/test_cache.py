"""
MoshBrosh — Sequence Cache Tests
State machine, out-of-order collection, one-shot precompute, invalidation
on any parameter change, and concurrent observers.

Run with: pytest tests/test_cache.py -v
"""

import os
import random
import sys
from concurrent.futures import ThreadPoolExecutor

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from moshbrosh.accumulate import step
from moshbrosh.cache import CacheState, SequenceCache
from moshbrosh.errors import InvalidInput, MissingPrerequisite, StateCorruption
from moshbrosh.frame import FrameBuffer
from moshbrosh.motion import BlockMatchEstimator, estimator_for
from moshbrosh.params import EstimatorKind, validate_params
from conftest import make_sequence, make_texture


PARAMS = validate_params(window_start=10, duration=5, block_size=8, search_range=4)


class CountingFactory:
    """Estimator factory that records every call."""

    def __init__(self):
        self.calls = []

    def __call__(self, params):
        self.calls.append(params)
        return estimator_for(params)


@pytest.fixture
def frames():
    return make_sequence(20, 32, 32)


def _expected_warped(frames, params):
    est = BlockMatchEstimator()
    acc = frames[params.reference_index]
    out = {}
    for i in range(params.window_start, params.window_end):
        field = est.estimate(frames[i - 1], frames[i], params.block_size, params.search_range)
        acc = step(acc, field)
        out[i] = acc
    return out


def _fill(cache, frames, params=PARAMS):
    for i in params.required_indices():
        cache.observe(i, frames[i], params)


class TestCollecting:

    def test_starts_not_started(self):
        cache = SequenceCache()
        assert cache.state() == CacheState.NOT_STARTED
        assert cache.params is None

    def test_out_of_order_arrival(self, frames):
        cache = SequenceCache()
        order = [12, 14, 9, 11, 13, 10]
        for i in order[:-1]:
            assert cache.observe(i, frames[i], PARAMS) == CacheState.COLLECTING
        assert cache.observe(order[-1], frames[order[-1]], PARAMS) == CacheState.READY

        expected = _expected_warped(frames, PARAMS)
        for i in range(10, 15):
            assert cache.warped(i) == expected[i]

    def test_reference_needed_even_with_all_window_frames(self, frames):
        cache = SequenceCache()
        for i in range(10, 15):
            cache.observe(i, frames[i], PARAMS)
        assert cache.state() == CacheState.COLLECTING
        assert cache.missing() == [9]
        cache.observe(9, frames[9], PARAMS)
        assert cache.is_ready()

    def test_frames_outside_range_ignored(self, frames):
        cache = SequenceCache()
        cache.observe(3, frames[3], PARAMS)
        cache.observe(15, frames[15], PARAMS)
        assert cache.raw_indices() == []
        assert cache.state() == CacheState.NOT_STARTED

    def test_first_seen_wins(self, frames):
        cache = SequenceCache()
        cache.observe(11, frames[11], PARAMS)
        cache.observe(11, frames[0], PARAMS)
        assert cache.raw(11) is frames[11]

    def test_reference_captured_once(self, frames):
        cache = SequenceCache()
        cache.observe(9, frames[9], PARAMS)
        cache.observe(9, frames[1], PARAMS)
        assert cache.reference is frames[9]

    def test_missing_lists_outstanding(self, frames):
        cache = SequenceCache()
        cache.observe(10, frames[10], PARAMS)
        cache.observe(11, frames[11], PARAMS)
        assert cache.missing() == [9, 12, 13, 14]

    def test_shortest_window(self, frames):
        params = validate_params(window_start=1, duration=1, block_size=8, search_range=2)
        cache = SequenceCache()
        cache.observe(1, frames[1], params)
        assert cache.observe(0, frames[0], params) == CacheState.READY
        assert cache.warped_indices() == [1]

    def test_invalid_frame_rejected(self):
        with pytest.raises(InvalidInput):
            SequenceCache().observe(10, FrameBuffer.empty(), PARAMS)


class TestWarped:

    def test_before_ready_raises_missing(self, frames):
        cache = SequenceCache()
        cache.observe(12, frames[12], PARAMS)
        with pytest.raises(MissingPrerequisite) as exc:
            cache.warped(12)
        assert exc.value.missing == [9, 10, 11, 13, 14]

    def test_no_params_yet(self):
        with pytest.raises(MissingPrerequisite):
            SequenceCache().warped(10)

    @pytest.mark.parametrize("index", [9, 15, 0])
    def test_outside_window(self, frames, index):
        cache = SequenceCache()
        _fill(cache, frames)
        with pytest.raises(InvalidInput):
            cache.warped(index)

    def test_corrupted_ready_state(self, frames):
        cache = SequenceCache()
        _fill(cache, frames)
        cache._warped.pop(12)
        with pytest.raises(StateCorruption):
            cache.warped(12)


class TestPrecompute:

    def test_runs_exactly_once(self, frames):
        factory = CountingFactory()
        cache = SequenceCache(estimator_factory=factory)
        _fill(cache, frames)
        for _ in range(3):
            for i in range(10, 15):
                cache.warped(i)
                cache.observe(i, frames[i], PARAMS)
        assert cache.precompute_count == 1
        assert len(factory.calls) == 1

    def test_ready_ignores_new_frames(self, frames):
        cache = SequenceCache()
        _fill(cache, frames)
        before = cache.warped(12)
        assert cache.observe(12, frames[0], PARAMS) == CacheState.READY
        assert cache.warped(12) is before

    def test_params_changed_mid_precompute(self, frames):
        holder = {}

        def sabotage(params):
            holder["cache"]._params = params.model_copy(update={"blend": 0.5})
            return estimator_for(params)

        cache = SequenceCache(estimator_factory=sabotage)
        holder["cache"] = cache
        with pytest.raises(StateCorruption):
            _fill(cache, frames)
        assert cache.warped_indices() == []
        assert cache.state() != CacheState.READY

    def test_evict_raw_keeps_reference_and_results(self, frames):
        cache = SequenceCache(evict_raw=True)
        _fill(cache, frames)
        assert cache.raw_indices() == []
        assert cache.reference is frames[9]
        assert cache.warped_indices() == [10, 11, 12, 13, 14]

    def test_raw_kept_by_default(self, frames):
        cache = SequenceCache()
        _fill(cache, frames)
        assert cache.raw_indices() == list(range(9, 15))

    def test_stats(self, frames):
        cache = SequenceCache()
        _fill(cache, frames)
        stats = cache.stats()
        assert stats["state"] == "ready"
        assert stats["warped"] == 5
        assert stats["reference"] is True
        assert stats["precompute_count"] == 1


class TestInvalidation:

    @pytest.mark.parametrize("field,value", [
        ("window_start", 11),
        ("duration", 4),
        ("block_size", 16),
        ("search_range", 2),
        ("blend", 0.5),
        ("estimator", EstimatorKind.GRADIENT_FLOW),
    ])
    def test_any_change_resets_everything(self, frames, field, value):
        cache = SequenceCache()
        _fill(cache, frames)
        assert cache.is_ready()

        changed = PARAMS.model_copy(update={field: value})
        assert cache.state(changed) == CacheState.NOT_STARTED
        assert cache.raw_indices() == []
        assert cache.warped_indices() == []
        assert cache.reference is None
        assert cache.invalidation_count == 1
        assert cache.params == changed

    def test_same_params_no_reset(self, frames):
        cache = SequenceCache()
        _fill(cache, frames)
        assert cache.sync(validate_params(PARAMS.model_dump())) is False
        assert cache.is_ready()
        assert cache.invalidation_count == 0

    def test_recollects_after_change(self, frames):
        factory = CountingFactory()
        cache = SequenceCache(estimator_factory=factory)
        _fill(cache, frames)
        changed = PARAMS.model_copy(update={"window_start": 12})
        _fill(cache, frames, changed)
        assert cache.is_ready()
        assert cache.precompute_count == 2
        assert cache.warped(16) == _expected_warped(frames, changed)[16]

    def test_explicit_invalidate(self, frames):
        cache = SequenceCache()
        _fill(cache, frames)
        cache.invalidate()
        assert cache.state() == CacheState.NOT_STARTED
        assert cache.params is None
        assert cache.warped_indices() == []

    def test_frame_size_change_resets(self, frames):
        cache = SequenceCache()
        cache.observe(10, frames[10], PARAMS)
        cache.observe(11, make_texture(16, 16), PARAMS)
        assert cache.raw_indices() == [11]
        assert cache.invalidation_count == 1

    def test_frame_size_change_after_ready(self, frames):
        cache = SequenceCache()
        _fill(cache, frames)
        assert cache.is_ready()
        assert cache.observe(12, make_texture(48, 48), PARAMS) == CacheState.COLLECTING
        assert cache.raw_indices() == [12]
        assert cache.warped_indices() == []
        assert cache.invalidation_count == 1
        assert cache.precompute_count == 1


class TestConcurrency:

    def test_parallel_observers_precompute_once(self, frames):
        factory = CountingFactory()
        cache = SequenceCache(estimator_factory=factory)
        indices = list(PARAMS.required_indices()) * 6
        random.Random(1).shuffle(indices)

        def render(i):
            cache.observe(i, frames[i], PARAMS)
            try:
                return i, cache.warped(i)
            except (MissingPrerequisite, InvalidInput):
                return i, None

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(render, indices))

        assert cache.precompute_count == 1
        assert len(factory.calls) == 1
        expected = _expected_warped(frames, PARAMS)
        for i, warped in results:
            if warped is not None:
                assert warped == expected[i]
        for i in range(10, 15):
            assert cache.warped(i) == expected[i]
