import cv2
import numpy as np
import pytest


def draw_signature(width=400, height=160, thickness=3):
    """White crop with a sine-shaped stroke and a crossing diagonal, both black."""
    img = np.full((height, width), 255, dtype=np.uint8)
    xs = np.arange(50, width - 50)
    ys = height / 2 + 30 * np.sin(2 * np.pi * (xs - 50) / 100.0)
    curve = np.stack([xs, ys], axis=1).round().astype(np.int32)
    cv2.polylines(img, [curve.reshape(-1, 1, 2)], False, 0, thickness)
    cv2.line(img, (60, height - 30), (width - 60, 30), 0, thickness)
    return img


def draw_loops(width=400, height=160, thickness=3):
    """A different signature: a chain of ellipses along a rising baseline."""
    img = np.full((height, width), 255, dtype=np.uint8)
    for i in range(5):
        center = (80 + i * 60, height - 40 - i * 15)
        cv2.ellipse(img, center, (28, 18), 20, 0, 360, 0, thickness)
    return img


def textured_page(width=800, height=1000, seed=7):
    """Smooth random texture, so any patch has a distinct NCC peak."""
    rng = np.random.default_rng(seed)
    noise = rng.uniform(0, 255, size=(height, width)).astype(np.float32)
    blurred = cv2.GaussianBlur(noise, (0, 0), 4)
    blurred = (blurred - blurred.min()) / (blurred.max() - blurred.min()) * 255
    return blurred.astype(np.uint8)


@pytest.fixture
def signature():
    return draw_signature()


@pytest.fixture
def other_signature():
    return draw_loops()


@pytest.fixture
def blank():
    return np.full((160, 400), 255, dtype=np.uint8)


@pytest.fixture
def page():
    return textured_page()


@pytest.fixture
def make_page():
    return textured_page
