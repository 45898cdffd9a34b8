import numpy as np
import pytest

from blockvision.frame_ctx import FrameCtx, MissingFrameError
from blockvision.temporal_denoiser import TemporalDenoiseStep


def _run(step, ctx, frame):
    """One cycle with the denoiser as the only stage."""
    ctx.set_frame(frame)
    out = step.process(ctx)
    ctx.replace_frame(out)
    return out


def test_first_frame_is_returned_unchanged(zero_flow):
    ctx = FrameCtx(zero_flow)
    frame = np.full((20, 30, 3), 77, dtype=np.uint8)
    out = _run(TemporalDenoiseStep(), ctx, frame)
    assert out is frame
    assert zero_flow.calls == 0


@pytest.mark.parametrize("alpha", [0.0, 0.3, 0.8, 1.0])
def test_static_scene_is_a_fixed_point(alpha, zero_flow):
    rng = np.random.default_rng(3)
    frame = rng.integers(0, 256, (24, 32, 3), dtype=np.uint8)
    ctx = FrameCtx(zero_flow)
    step = TemporalDenoiseStep(alpha=alpha)
    _run(step, ctx, frame)
    out = _run(step, ctx, frame.copy())
    assert np.array_equal(out, frame)


def test_blends_below_threshold(zero_flow):
    ctx = FrameCtx(zero_flow)
    step = TemporalDenoiseStep(alpha=0.8, threshold=30.0)
    _run(step, ctx, np.full((8, 8, 3), 110, dtype=np.uint8))
    out = _run(step, ctx, np.full((8, 8, 3), 100, dtype=np.uint8))
    # distance sqrt(3) * 10 < 30: 0.8 * 100 + 0.2 * 110
    assert np.all(out == 102)


def test_threshold_comparison_is_strict(zero_flow):
    ctx = FrameCtx(zero_flow)
    step = TemporalDenoiseStep(alpha=0.8, threshold=30.0)
    prev = np.full((4, 4, 3), 100, dtype=np.uint8)
    prev[..., 0] = 130
    _run(step, ctx, prev)
    out = _run(step, ctx, np.full((4, 4, 3), 100, dtype=np.uint8))
    # distance is exactly 30: still blended
    assert np.all(out[..., 0] == 106)
    assert np.all(out[..., 1:] == 100)


def test_rejects_pixels_that_changed_too_much(zero_flow):
    ctx = FrameCtx(zero_flow)
    step = TemporalDenoiseStep(alpha=0.5, threshold=30.0)
    first = np.full((16, 16, 3), 100, dtype=np.uint8)
    _run(step, ctx, first)
    second = first.copy()
    second[4:8, 4:8] = (10, 200, 30)
    out = _run(step, ctx, second)
    assert np.array_equal(out[4:8, 4:8], second[4:8, 4:8])
    assert np.array_equal(out[:4], first[:4])


def test_blends_against_its_own_output(zero_flow):
    ctx = FrameCtx(zero_flow)
    step = TemporalDenoiseStep(alpha=0.5, threshold=30.0)
    ctx.set_frame(np.full((6, 6, 3), 100, dtype=np.uint8))
    step.process(ctx)
    # a later stage rewrites the frame; the denoiser must not see it
    ctx.replace_frame(np.full((6, 6, 3), 200, dtype=np.uint8))

    ctx.set_frame(np.full((6, 6, 3), 110, dtype=np.uint8))
    out = step.process(ctx)
    assert np.all(out == 105)


def test_separate_contexts_keep_separate_baselines(zero_flow):
    step = TemporalDenoiseStep(alpha=0.5)
    a, b = FrameCtx(zero_flow), FrameCtx(zero_flow)
    a.set_frame(np.full((4, 4, 3), 100, dtype=np.uint8))
    step.process(a)
    b.set_frame(np.full((4, 4, 3), 110, dtype=np.uint8))
    # first frame in context b: returned as is
    assert np.all(step.process(b) == 110)


def test_needs_a_frame(zero_flow):
    with pytest.raises(MissingFrameError):
        TemporalDenoiseStep().process(FrameCtx(zero_flow))


def test_out_of_bounds_flow_is_always_rejected(constant_flow):
    ctx = FrameCtx(constant_flow(5.0, 0.0))
    step = TemporalDenoiseStep(alpha=0.2, threshold=30.0)
    first = np.full((12, 20, 3), 128, dtype=np.uint8)
    _run(step, ctx, first)
    second = np.full((12, 20, 3), 120, dtype=np.uint8)
    out = _run(step, ctx, second)
    # warped prev is black where x + 5 leaves the image
    assert np.array_equal(out[:, -5:], second[:, -5:])
    # inside: 0.2 * 120 + 0.8 * 128
    assert np.all(out[:, :-5] == 126)


def test_suppresses_temporal_noise(zero_flow):
    rng = np.random.default_rng(0)
    clean = np.full((32, 32, 3), 128, dtype=np.float32)
    ctx = FrameCtx(zero_flow)
    step = TemporalDenoiseStep(alpha=0.3, threshold=30.0)

    raw, blended = [], []
    for _ in range(50):
        noisy = np.clip(clean + rng.normal(0, 5, clean.shape), 0, 255).astype(np.uint8)
        raw.append(noisy.astype(np.float32))
        blended.append(_run(step, ctx, noisy).astype(np.float32))

    raw_var = np.var(np.stack(raw[10:]), axis=0).mean()
    blended_var = np.var(np.stack(blended[10:]), axis=0).mean()
    assert blended_var < raw_var


def test_debug_artifacts_follow_toggles(zero_flow):
    ctx = FrameCtx(zero_flow)
    step = TemporalDenoiseStep()
    frame = np.full((40, 40, 3), 50, dtype=np.uint8)
    _run(step, ctx, frame)
    _run(step, ctx, frame.copy())
    assert step.dbg.data == {}

    step.dbg.set_all(True)
    _run(step, ctx, frame.copy())
    assert set(step.dbg.data) == {"flow", "warp", "diff", "mask", "output"}
    assert step.dbg.data["mask"].dtype == np.uint8
    assert step.dbg.data["diff"].shape == (40, 40, 3)


def test_alpha_must_be_a_weight():
    with pytest.raises(ValueError):
        TemporalDenoiseStep(alpha=1.5)
