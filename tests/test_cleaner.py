import cv2
import numpy as np
import pytest

from sigmatch import cleaner
from sigmatch.cleaner import (
    SignatureCleaner,
    adaptive_threshold,
    extract_signature,
    ink_candidates,
    inward_crop,
    label_components,
    largest_component,
    normalize_mask,
    remove_lines,
    remove_printed_glyphs,
    remove_small_components,
)


def test_label_components_groups_4_connected_pixels():
    mask = np.array(
        [
            [1, 1, 0, 1],
            [0, 1, 0, 1],
            [1, 0, 0, 0],
        ],
        dtype=np.uint8,
    )
    labels, stats = label_components(mask)
    assert len(stats) == 4
    assert labels[0, 0] == labels[0, 1] == labels[1, 1]
    assert labels[0, 3] == labels[1, 3]
    assert len({labels[0, 0], labels[0, 3], labels[2, 0]}) == 3
    assert not labels[mask == 0].any()
    assert sorted(stats[1:, cv2.CC_STAT_AREA].tolist()) == [1, 2, 3]


def test_label_components_merges_through_lower_row():
    mask = np.array([[1, 0, 1], [1, 1, 1]], dtype=np.uint8)
    labels, stats = label_components(mask)
    assert np.unique(labels[mask > 0]).tolist() == [1]
    assert stats[1, cv2.CC_STAT_AREA] == 5
    assert stats[1, cv2.CC_STAT_WIDTH] == 3 and stats[1, cv2.CC_STAT_HEIGHT] == 2


def test_label_components_diagonal_is_not_connected():
    mask = np.eye(3, dtype=np.uint8)
    labels, stats = label_components(mask)
    assert len(stats) == 4
    assert labels[0, 0] != labels[1, 1]


def test_label_components_empty():
    labels, stats = label_components(np.zeros((5, 5), np.uint8))
    assert not labels.any()
    assert len(stats) == 1


def test_remove_small_components_and_largest():
    mask = np.zeros((40, 40), np.uint8)
    mask[2:4, 2:4] = 255
    mask[10:30, 10:20] = 255
    pruned = remove_small_components(mask, 20)
    assert not pruned[2:4, 2:4].any()
    assert pruned[10:30, 10:20].all()

    blob, area = largest_component(mask)
    assert area == 200
    assert blob[15, 15] and not blob[2, 2]


def test_largest_component_empty_mask():
    blob, area = largest_component(np.zeros((10, 10), np.uint8))
    assert blob is None
    assert area == 0


def test_inward_crop_margins():
    gray = np.zeros((100, 20), np.uint8)
    region, offset = inward_crop(gray)
    assert offset == (5, 6)
    assert region.shape == (88, 10)


def test_adaptive_threshold_marks_dark_ink_only():
    gray = np.full((60, 60), 255, np.uint8)
    assert not adaptive_threshold(gray, 15).any()

    gray[28:32, 28:32] = 0
    binary = adaptive_threshold(gray, 15)
    assert binary[28:32, 28:32].all()
    assert np.count_nonzero(binary) == 16


def test_remove_lines_keeps_compact_strokes():
    mask = np.zeros((100, 300), np.uint8)
    mask[50:52, 10:290] = 255
    mask[20:30, 20:30] = 255
    cleaned = remove_lines(mask)
    assert not cleaned[50:52, :].any()
    assert cleaned[20:30, 20:30].all()


def test_remove_lines_vertical_rule():
    mask = np.zeros((200, 100), np.uint8)
    mask[10:190, 40:42] = 255
    cleaned = remove_lines(mask)
    assert not cleaned.any()


def test_remove_lines_even_kernel_width():
    # 15% of 400 is an even 60px kernel
    mask = np.zeros((100, 400), np.uint8)
    mask[50:52, 10:390] = 255
    assert not remove_lines(mask).any()


def test_remove_printed_glyphs_drops_typed_characters():
    mask = np.zeros((120, 300), np.uint8)
    mask[10:26, 10:22] = 255
    cv2.line(mask, (50, 20), (250, 100), 255, 3)
    filtered = remove_printed_glyphs(mask)
    assert not filtered[10:26, 10:22].any()
    assert np.count_nonzero(filtered) == np.count_nonzero(mask) - 16 * 12


def test_extract_signature_finds_strokes(signature):
    extraction = extract_signature(signature)
    assert extraction is not None
    assert extraction.contrast == 15
    assert extraction.stroke_area >= 50
    assert set(np.unique(extraction.mask)) <= {0, 255}
    # the mask is in inward-crop coordinates
    assert extraction.mask.shape == (signature.shape[0] - 12, signature.shape[1] - 12)


def test_extract_signature_blank_is_none(blank):
    assert extract_signature(blank) is None


def test_extract_signature_specks_only_is_none(blank):
    img = blank.copy()
    for x in range(20, 380, 40):
        img[80:82, x : x + 2] = 0
    assert extract_signature(img) is None


def test_extract_signature_drops_ruled_line(signature):
    img = signature.copy()
    img[140:142, :] = 0
    extraction = extract_signature(img)
    assert extraction is not None
    line_row = extraction.mask[140 - 6]
    assert np.count_nonzero(line_row) < 60


def test_extract_signature_accepts_colour(signature):
    bgr = cv2.cvtColor(signature, cv2.COLOR_GRAY2BGR)
    gray_result = extract_signature(signature)
    colour_result = extract_signature(bgr)
    assert np.array_equal(gray_result.mask, colour_result.mask)


def test_normalize_mask_keeps_aspect_and_centers():
    mask = np.zeros((50, 200), np.uint8)
    mask[10:30, 40:140] = 255
    canvas = normalize_mask(mask, (600, 250))
    assert canvas.shape == (250, 600)
    assert np.count_nonzero(canvas) == 600 * 120
    assert canvas[65, 0] == 255 and canvas[184, 599] == 255
    assert canvas[64, 0] == 0 and canvas[185, 0] == 0


def test_normalize_mask_empty():
    assert normalize_mask(np.zeros((10, 10), np.uint8)) is None


def test_cleaner_pipeline(signature, blank):
    cleaner = SignatureCleaner(canvas_size=(300, 100))
    extraction, canvas = cleaner.clean_and_normalize(signature)
    assert canvas.shape == (100, 300)
    assert canvas.any()
    assert extraction.blob_area >= extraction.stroke_area
    assert cleaner.clean_and_normalize(blank) is None


@pytest.mark.parametrize("constants", [(10,), (20,)])
def test_cleaner_custom_contrast(signature, constants):
    extraction = SignatureCleaner(contrast_constants=constants).extract(signature)
    assert extraction.contrast == constants[0]


def test_extract_signature_rejects_background_capture():
    # dense hatching merges into one blob covering nearly the whole crop
    img = np.full((160, 400), 255, np.uint8)
    for k in range(-400, 400, 8):
        cv2.line(img, (k, 0), (k + 160, 160), 0, 3)
    binary, _ = ink_candidates(img, 15)
    assert binary.any()
    assert extract_signature(img) is None


def test_extract_signature_falls_back_to_lower_contrast(signature):
    faint = np.where(signature == 0, 239, 255).astype(np.uint8)
    extraction = extract_signature(faint)
    assert extraction is not None
    assert extraction.contrast == 10


def test_extract_signature_sweep_order(signature, monkeypatch):
    tried = []

    def failing(gray, c, filter_glyphs=False):
        tried.append(c)
        return None

    monkeypatch.setattr(cleaner, "extract_ink", failing)
    assert extract_signature(signature) is None
    assert tried == [15, 10, 20]
