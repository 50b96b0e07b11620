import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

ROOT_DIR = Path(__file__).resolve().parents[1]

LOG_LEVEL = os.getenv("SIGMATCH_LOG_LEVEL", "INFO").upper()
ENABLE_PRINT = os.getenv("SIGMATCH_ENABLE_PRINT", "0").lower() in ("1", "true", "yes")

# normalized canvas (width, height)
CANVAS_WIDTH = int(os.getenv("SIGMATCH_CANVAS_WIDTH", "600"))
CANVAS_HEIGHT = int(os.getenv("SIGMATCH_CANVAS_HEIGHT", "250"))

DEFAULT_MODE = os.getenv("SIGMATCH_DEFAULT_MODE", "lenient")
MAX_WORKERS = int(os.getenv("SIGMATCH_MAX_WORKERS", "4"))

# ink-stroke extraction
CROP_MARGIN = 6
BLOCK_SIZE = 31
CONTRAST_CONSTANTS = (15, 10, 20)
LINE_KERNEL_MIN = 20
LINE_KERNEL_RATIO = 0.15
NOISE_MIN_AREA = 20
BRIDGE_RADIUS = 2
MIN_BLOB_AREA = 100
MAX_BLOB_RATIO = 0.6
MIN_STROKE_AREA = 50

# printed glyph heuristics
GLYPH_MAX_WIDTH = 35
GLYPH_MAX_HEIGHT = 30
GLYPH_ASPECT_RANGE = (0.2, 3.5)
GLYPH_MIN_DENSITY = 0.25
GLYPH_MAX_PIXELS = 600

# scoring
GRID_COLUMNS = 10
GRID_ROWS = 4
MODE_WEIGHTS = {
    # (grid, iou, curve), boost, dilate skeletons before IoU
    "lenient": ((0.50, 0.30, 0.20), 1.40, True),
    "strict": ((0.10, 0.30, 0.60), 1.05, False),
}

# region detection
PAGE_DARK_THRESHOLD = 160
PAGE_MARGIN = 10
PAGE_PAD_RATIO = 0.05
REGION_DARK_THRESHOLD = 150
REGION_MARGIN = 8
FILTERED_PADDING = 40
FALLBACK_REGION = (0.1, 0.6, 0.8, 0.3)

# template matching
ANCHOR_PATCH_SIZE = 150
ANCHOR_GAP = 20
COARSE_TARGET = 600
COARSE_MIN_NCC = 0.25
FINAL_MIN_NCC = 0.3
REFINE_MIN_RADIUS = 20
NCC_TRUST = 0.5
FRACTIONAL_CONFIDENCE = 0.6
ABSOLUTE_CONFIDENCE = 0.3
