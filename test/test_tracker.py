import cv2
import numpy as np
import pytest

from blockvision.color_defs import BLUE_R9000P, COLOR_DEF_R9000P, RED_R9000P
from blockvision.color_detector import DetectorCfg, detect_blocks
from blockvision.frame_ctx import FrameCtx
from blockvision.tracker import (
    BlockTracker, TrackerCfg, hit_fraction, project_points, sample_points)


def _blank(w=320, h=240):
    return np.full((h, w, 3), 100, dtype=np.uint8)


def test_ids_wrap_around():
    tracker = BlockTracker(TrackerCfg(id_wrap=5))
    ids = [tracker.next_id() for _ in range(6)]
    assert ids == [0, 1, 2, 3, 4, 0]


def test_first_call_assigns_fresh_ids(make_block, zero_flow):
    ctx = FrameCtx(zero_flow)
    ctx.set_frame(_blank())
    tracker = BlockTracker()
    blocks = [make_block((50, 50), (40, 20)), make_block((150, 50), (40, 20)), make_block((250, 50), (40, 20))]
    tracked = tracker.track(ctx, blocks)
    assert [b.id for b in tracked] == [0, 1, 2]
    assert ctx.prev_blocks is tracked
    assert ctx.cur_blocks is tracked
    assert zero_flow.calls == 0


def test_static_block_keeps_its_id(make_block, zero_flow):
    ctx = FrameCtx(zero_flow)
    tracker = BlockTracker()
    ids = []
    for _ in range(12):
        ctx.set_frame(_blank())
        tracked = tracker.track(ctx, [make_block((160, 120), (80, 40), 20.0)])
        ids.append(tracked[0].id)
    assert ids == [0] * 12


def test_translated_block_keeps_its_id(make_frame, constant_flow):
    dx, dy = 14, 6
    cfg = DetectorCfg(mask_dilate_iter=0)
    first = make_frame(rects=[(80, 60, 100, 50, (0, 150, 150))])
    second = make_frame(rects=[(80 + dx, 60 + dy, 100, 50, (0, 150, 150))])

    ctx = FrameCtx(constant_flow(dx, dy))
    tracker = BlockTracker()
    ctx.set_frame(first)
    a = tracker.track(ctx, detect_blocks(ctx.frame, COLOR_DEF_R9000P, cfg))
    ctx.set_frame(second)
    b = tracker.track(ctx, detect_blocks(ctx.frame, COLOR_DEF_R9000P, cfg))
    assert len(a) == len(b) == 1
    assert a[0].id == b[0].id


def test_wrong_flow_gives_a_new_id(make_block, zero_flow):
    ctx = FrameCtx(zero_flow)
    tracker = BlockTracker()
    ctx.set_frame(_blank())
    tracker.track(ctx, [make_block((60, 60), (40, 20))])
    ctx.set_frame(_blank())
    moved = tracker.track(ctx, [make_block((200, 150), (40, 20))])
    assert moved[0].id == 1


def test_candidates_must_share_the_color(make_block, zero_flow):
    ctx = FrameCtx(zero_flow)
    tracker = BlockTracker()
    ctx.set_frame(_blank())
    tracker.track(ctx, [make_block((100, 100), (60, 30), color=RED_R9000P)])
    ctx.set_frame(_blank())
    tracked = tracker.track(ctx, [make_block((100, 100), (60, 30), color=BLUE_R9000P)])
    assert tracked[0].id == 1


def test_ties_go_to_the_lowest_id(make_block, zero_flow):
    ctx = FrameCtx(zero_flow)
    tracker = BlockTracker()
    ctx.set_frame(_blank())
    ctx.set_frame(_blank())
    ctx.prev_blocks = [make_block((100, 100), (60, 30), id=7), make_block((100, 100), (60, 30), id=3)]
    tracked = tracker.track(ctx, [make_block((100, 100), (50, 20))])
    assert tracked[0].id == 3


def test_best_candidate_wins(make_block, zero_flow):
    ctx = FrameCtx(zero_flow)
    tracker = BlockTracker(TrackerCfg(sample_count=200, match_threshold=0.5))
    ctx.set_frame(_blank())
    ctx.set_frame(_blank())
    # id 1 covers the whole new block, id 0 only its left part
    ctx.prev_blocks = [make_block((90, 100), (60, 40), id=0), make_block((100, 100), (80, 40), id=1)]
    tracked = tracker.track(ctx, [make_block((100, 100), (80, 40))])
    assert tracked[0].id == 1


def test_sample_points_stay_in_the_shrunk_rect(make_block):
    block = make_block((160, 120), (100, 40), 35.0)
    rng = np.random.default_rng(4)
    points = sample_points(block, 500, 0.8, rng)
    assert points.shape == (500, 2)
    inner = cv2.boxPoints((block.center, (80.0, 32.0), block.angle)).reshape(-1, 1, 2)
    for x, y in points:
        assert cv2.pointPolygonTest(inner, (float(x), float(y)), True) >= -1e-3


def test_projection_drops_points_outside_the_image():
    flow = np.zeros((100, 100, 2), dtype=np.float32)
    flow[50, 50] = (-80, 0)  # pushes (50, 50) back to x = 130
    points = np.array([[5.0, 5.0], [-3.0, 5.0], [5.0, 500.0], [50.0, 50.0], [20.0, 30.0]])
    projected = project_points(points, flow)
    assert projected.tolist() == [[5.0, 5.0], [20.0, 30.0]]


def test_out_of_bounds_samples_count_in_the_denominator(make_block):
    flow = np.zeros((100, 100, 2), dtype=np.float32)
    candidate = make_block((50, 50), (80, 80))
    points = np.array([[10.0, 10.0], [-5.0, 10.0], [10.0, 120.0], [90.0, 90.0]])
    projected = project_points(points, flow)
    assert len(projected) == 2
    assert hit_fraction(projected, candidate, total=len(points)) == pytest.approx(0.5)


def test_block_leaving_the_frame_is_not_matched(make_block, zero_flow):
    ctx = FrameCtx(zero_flow)
    tracker = BlockTracker()
    ctx.set_frame(_blank())
    # only the right quarter of the sampled area is inside the image
    tracker.track(ctx, [make_block((-8.0, 60.0), (40, 20))])
    ctx.set_frame(_blank())
    tracked = tracker.track(ctx, [make_block((-8.0, 60.0), (40, 20))])
    assert tracked[0].id == 1


def test_empty_previous_list_skips_flow(make_block, zero_flow):
    ctx = FrameCtx(zero_flow)
    tracker = BlockTracker()
    ctx.set_frame(_blank())
    tracker.track(ctx, [])
    ctx.set_frame(_blank())
    tracked = tracker.track(ctx, [make_block((60, 60), (40, 20))])
    assert tracked[0].id == 0
    assert zero_flow.calls == 0


def test_samples_debug_artifact(make_block, zero_flow):
    ctx = FrameCtx(zero_flow)
    tracker = BlockTracker()
    tracker.dbg.set_option("samples", True)
    ctx.set_frame(_blank())
    tracker.track(ctx, [make_block((60, 60), (40, 20))])
    assert tracker.dbg.data == {}
    ctx.set_frame(_blank())
    tracker.track(ctx, [make_block((60, 60), (40, 20))])
    assert tracker.dbg.data["samples"].shape == (240, 320, 3)


@pytest.mark.parametrize("kwargs", [
    {"sample_count": 0}, {"match_threshold": 1.5}, {"shrink_factor": 0.0}, {"id_wrap": 0}])
def test_invalid_config(kwargs):
    with pytest.raises(ValueError):
        TrackerCfg(**kwargs)
