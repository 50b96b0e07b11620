import numpy as np
import pytest

from sigmatch.verification import (
    ComparisonMode,
    combine_metrics,
    curve_correlation,
    curve_profile,
    grid_correlation,
    grid_density,
    pixel_iou,
    score_canvases,
    thin_signature,
)


def _canvas():
    canvas = np.zeros((250, 600), np.uint8)
    canvas[100:140, 50:550] = 255
    canvas[40:220, 280:320] = 255
    return canvas


def test_thin_signature_reduces_to_subset():
    mask = np.zeros((40, 120), np.uint8)
    mask[10:20, 10:90] = 255
    skeleton = thin_signature(mask)
    assert set(np.unique(skeleton)) <= {0, 255}
    assert 0 < np.count_nonzero(skeleton) < np.count_nonzero(mask)
    assert np.all(mask[skeleton > 0] > 0)
    per_column = np.count_nonzero(skeleton[:, 20:80], axis=0)
    assert per_column.max() <= 2


def test_thin_signature_keeps_one_pixel_line():
    mask = np.zeros((10, 30), np.uint8)
    mask[5, 3:27] = 255
    assert np.array_equal(thin_signature(mask), mask)


def test_thin_signature_empty():
    assert not thin_signature(np.zeros((8, 8), np.uint8)).any()


def test_curve_profile_mean_row_and_empty_columns():
    skeleton = np.zeros((6, 3), np.uint8)
    skeleton[2, 0] = 255
    skeleton[4, 0] = 255
    skeleton[1, 2] = 255
    assert curve_profile(skeleton).tolist() == [3.0, 6.0, 1.0]


def test_grid_density_cells():
    canvas = np.zeros((40, 100), np.uint8)
    canvas[:, :50] = 255
    density = grid_density(canvas).reshape(4, 10)
    assert np.all(density[:, :5] == 1.0)
    assert np.all(density[:, 5:] == 0.0)


def test_pixel_iou():
    a = np.array([[1, 1, 0, 0]], np.uint8)
    b = np.array([[0, 1, 1, 0]], np.uint8)
    assert pixel_iou(a, b) == pytest.approx(100 / 3)
    assert pixel_iou(np.zeros((3, 3)), np.zeros((3, 3))) == 0.0


def test_degenerate_correlation():
    empty = np.zeros((40, 100), np.uint8)
    full = np.full((40, 100), 255, np.uint8)
    # constant grids: only identical inputs correlate
    assert grid_correlation(empty, empty) == 100.0
    assert grid_correlation(empty, full) == 0.0
    assert curve_correlation(empty, empty) == 100.0


def test_negative_correlation_clamps_to_zero():
    rising = np.zeros((50, 50), np.uint8)
    falling = np.zeros((50, 50), np.uint8)
    for i in range(50):
        rising[49 - i, i] = 255
        falling[i, i] = 255
    assert curve_correlation(rising, falling) == 0.0


def test_identical_canvases_score_full_marks():
    canvas = _canvas()
    for mode in ("lenient", "strict"):
        score, metrics = score_canvases(canvas, canvas.copy(), mode)
        assert metrics["curve"] == pytest.approx(100.0)
        assert metrics["grid"] == pytest.approx(100.0)
        assert metrics["iou"] == pytest.approx(100.0)
        assert score == pytest.approx(100.0)


def test_score_canvases_shape_mismatch():
    with pytest.raises(ValueError):
        score_canvases(np.zeros((10, 10), np.uint8), np.zeros((10, 12), np.uint8))


def test_combine_metrics_weights():
    assert combine_metrics(50, 50, 50, "lenient") == pytest.approx(70.0)
    assert combine_metrics(50, 50, 50, "strict") == pytest.approx(52.5)
    assert combine_metrics(100, 0, 0, "lenient") == pytest.approx(70.0)
    assert combine_metrics(0, 0, 100, "strict") == pytest.approx(63.0)
    assert combine_metrics(100, 100, 100, "lenient") == 100.0


def test_super_lenient_scores_like_lenient():
    assert combine_metrics(40, 20, 70, "super_lenient") == combine_metrics(40, 20, 70, "lenient")
    assert ComparisonMode.SUPER_LENIENT.scoring_key == "lenient"


def test_unknown_mode():
    with pytest.raises(ValueError, match="Unknown comparison mode"):
        ComparisonMode.parse("fuzzy")
