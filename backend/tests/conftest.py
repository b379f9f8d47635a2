"""Shared fixtures: synthetic UI screenshots and an isolated data directory.

Config is read from the environment at import time, so the overrides below
must run before any backend module is imported.
"""

import os
import tempfile

os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("BLUEPRINT_DATA_DIR", tempfile.mkdtemp(prefix="blueprint-test-"))

import numpy as np
import pytest

from services.blueprint.image_io import encode_png
from services.blueprint.models import Rect, UINode
from services.blueprint.storage import BlueprintStore

# Synthetic screenshot layout. All edges sit on multiples of 8 so that, at
# step 8, grid sample points never straddle a region boundary.
UI_SIZE = (400, 300)
FRAME_RECT = Rect(40, 40, 240, 160)
CARD_RECT = Rect(304, 40, 80, 160)
BUTTON_RECT = Rect(96, 96, 80, 48)
DOT_RECT = Rect(16, 256, 8, 8)


def texture(img: np.ndarray, rect: Rect) -> None:
    """Fill ``rect`` with 1px black/white vertical stripes (high edge energy)."""
    x, y, w, h = int(rect.x), int(rect.y), int(rect.w), int(rect.h)
    block = img[y:y + h, x:x + w]
    block[:, :, :3] = 255
    block[:, ::2, :3] = 0
    block[:, :, 3] = 255


def blank(width: int, height: int) -> np.ndarray:
    return np.full((height, width, 4), 255, dtype=np.uint8)


def make_ui_image() -> np.ndarray:
    """A 16px textured frame holding a button, a sibling card and a noise dot."""
    img = blank(*UI_SIZE)
    texture(img, FRAME_RECT)
    img[56:184, 56:264, :3] = 255
    texture(img, BUTTON_RECT)
    texture(img, CARD_RECT)
    texture(img, DOT_RECT)
    return img


def node(node_id: str, x: float, y: float, w: float, h: float, **kwargs) -> UINode:
    return UINode(id=node_id, rect=Rect(x, y, w, h), **kwargs)


@pytest.fixture
def ui_image() -> np.ndarray:
    return make_ui_image()


@pytest.fixture
def ui_png() -> bytes:
    return encode_png(make_ui_image())


@pytest.fixture
def ui_png_path(tmp_path, ui_png):
    path = tmp_path / "ui.png"
    path.write_bytes(ui_png)
    return path


@pytest.fixture
def store(tmp_path) -> BlueprintStore:
    return BlueprintStore(tmp_path / "data")
