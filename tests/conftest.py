import os
import sys

from pathlib import Path
from PIL import Image

from _helpers import *

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

def _ensure_test_images():
    data_dir = Path(__file__).parent / "data"
    data_dir.mkdir(exist_ok=True)

    rgb_path = data_dir / "rgb.png"
    if not rgb_path.exists():
        img = Image.new("RGB", (64, 64), (128, 128, 128))
        for x in range(10, 30):
            for y in range(10, 30):
                img.putpixel((x, y), (200, 50, 50))
        img.save(rgb_path, format="PNG")

    rgba_path = data_dir / "rgba.png"
    if not rgba_path.exists():
        img = Image.new("RGBA", (64, 64), (128, 128, 128, 255))
        for x in range(10, 30):
            for y in range(10, 30):
                img.putpixel((x, y), (200, 50, 50, 0))
        img.save(rgba_path, format="PNG")

    jpg_72_path = data_dir / "rgb_72dpi.jpg"
    if not jpg_72_path.exists():
        Image.open(rgb_path).convert("RGB").save(jpg_72_path, format="JPEG", dpi=(72, 72))

    jpg_300_path = data_dir / "rgb_300dpi.jpg"
    if not jpg_300_path.exists():
        Image.open(rgb_path).convert("RGB").save(jpg_300_path, format="JPEG", dpi=(300, 300))

    wide_path = data_dir / "wide_1600x400.png"
    if not wide_path.exists():
        Image.new("RGB", (1600, 400), (20, 120, 200)).save(wide_path, format="PNG")

    oversized_path = data_dir / "oversized_2100x100.png"
    if not oversized_path.exists():
        Image.new("RGB", (2100, 100), (20, 120, 200)).save(oversized_path, format="PNG")

    gif_path = data_dir / "rgb.gif"
    if not gif_path.exists():
        Image.open(rgb_path).convert("P").save(gif_path, format="GIF")


_ensure_test_images()
