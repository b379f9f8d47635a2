"""Blueprint backend configuration constants, read once from the environment."""

import os
from pathlib import Path

# Storage
DATA_DIR = Path(os.getenv("BLUEPRINT_DATA_DIR", str(Path(__file__).resolve().parent / "data")))
LOG_DIR = Path(os.getenv("LOG_DIR", str(Path(__file__).resolve().parent / "logs")))
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "true").lower() in ("true", "1", "yes")

# Server binding
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8765"))

# Image input
MAX_IMAGE_MB = float(os.getenv("MAX_IMAGE_MB", "20"))

# Extraction
DEFAULT_STEP = int(os.getenv("BLUEPRINT_DEFAULT_STEP", "8"))
MIN_STEP = 2
MAX_STEP = 32

# Containment ordering: siblings whose tops differ by less than this read left-to-right
SIBLING_Y_TOLERANCE_PX = float(os.getenv("SIBLING_Y_TOLERANCE_PX", "6"))

# Verification
DIFF_THRESHOLD = float(os.getenv("DIFF_THRESHOLD", "0.1"))
DIFF_INCLUDE_AA = os.getenv("DIFF_INCLUDE_AA", "true").lower() in ("true", "1", "yes")
MISMATCH_BUDGET = float(os.getenv("MISMATCH_BUDGET", "0.02"))
RECT_MIN_IOU = float(os.getenv("RECT_MIN_IOU", "0.995"))
RECT_MAX_OFFSET_PX = float(os.getenv("RECT_MAX_OFFSET_PX", "2"))
