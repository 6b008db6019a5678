"""
Frame Renderer: Ken Burns 프레임 + 자막 burn-in (Pillow).

All transforms are relative to the canvas centre:
    translate(cx, cy) -> scale(s) -> translate(tx, 0) -> draw image centred

Pure functions only; the composer drives them frame by frame.
"""

import base64
import binascii
import io
import math
import os
from typing import Callable, List, Optional, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from schemas import AspectRatio, CameraMovement
from utils.constants import CANVAS_SIZES
from utils.errors import ExportError, EXPORT_IMAGE_MISSING_CODE

# caption layout (fractions of the canvas)
CAPTION_FONT_RATIO = 0.045
CAPTION_BOTTOM_RATIO = 0.15
CAPTION_MAX_WIDTH_RATIO = 0.85
CAPTION_LINE_HEIGHT = 1.4
SHADOW_OFFSET = (2, 2)
SHADOW_BLUR = 4
SHADOW_ALPHA = int(255 * 0.8)

CAPTION_FONT_CANDIDATES = (
    "DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "Arial Bold.ttf",
    "arialbd.ttf",
)


def canvas_size(aspect_ratio) -> Tuple[int, int]:
    """16:9 → 1280x720, 9:16 → 720x1280."""
    ratio = AspectRatio(aspect_ratio)
    return CANVAS_SIZES[ratio.value]


def cover_fit(img_w: int, img_h: int, canvas_w: int, canvas_h: int) -> Tuple[float, float]:
    """
    object-fit: cover 기준 크기.

    Matches whichever image side makes the image at least as large as the
    canvas in both axes, preserving aspect ratio.
    """
    img_ratio = img_w / img_h
    canvas_ratio = canvas_w / canvas_h
    if img_ratio > canvas_ratio:
        return canvas_h * img_ratio, float(canvas_h)
    return float(canvas_w), canvas_w / img_ratio


def camera_transform(movement, progress: float) -> Tuple[float, float]:
    """
    카메라 무브먼트별 (scale, tx).

    tx is in canvas units, applied after scaling.
    """
    movement = CameraMovement.normalize(movement)
    if movement == CameraMovement.ZOOM_IN:
        return 1 + (0.25 * progress), 0.0
    if movement == CameraMovement.ZOOM_OUT:
        return 1.25 - (0.25 * progress), 0.0
    if movement == CameraMovement.PAN_RIGHT:
        return 1.2, -50 + (100 * progress)
    if movement == CameraMovement.PAN_LEFT:
        return 1.2, 50 - (100 * progress)
    return 1.05, 0.0


def select_frame(durations: Sequence[float], elapsed: float) -> Tuple[int, float]:
    """
    경과 시간 → (세그먼트 index, 로컬 progress).

    Linear scan accumulating durations. Past the end (trailing buffer) the
    last segment is held at progress 1.
    """
    if not durations:
        raise ValueError("durations must not be empty")

    remaining = elapsed
    for index, duration in enumerate(durations):
        if remaining <= duration:
            return index, max(0.0, min(1.0, remaining / duration))
        remaining -= duration
    return len(durations) - 1, 1.0


def wrap_text(words: Sequence[str], measure: Callable[[str], float], max_width: float) -> List[str]:
    """
    Greedy word wrap.

    Each line keeps its trailing space, and the first word always stays on
    the first line even when it alone is wider than max_width.
    """
    lines = []
    line = ""
    for n, word in enumerate(words):
        test_line = line + word + " "
        if measure(test_line) > max_width and n > 0:
            lines.append(line)
            line = word + " "
        else:
            line = test_line
    lines.append(line)
    return lines


def load_caption_font(canvas_width: int) -> ImageFont.ImageFont:
    """Bold caption font sized floor(4.5% of canvas width)."""
    size = math.floor(canvas_width * CAPTION_FONT_RATIO)
    for candidate in CAPTION_FONT_CANDIDATES:
        try:
            return ImageFont.truetype(candidate, size)
        except IOError:
            continue
    return ImageFont.load_default(size=size)


def load_segment_image(image_uri: str) -> Image.Image:
    """
    세그먼트 이미지 로드 (data: URI 또는 파일 경로).

    Raises:
        ExportError: 이미지가 없거나 디코딩할 수 없는 경우
    """
    if not image_uri:
        raise ExportError(EXPORT_IMAGE_MISSING_CODE, "Missing image for segment")

    try:
        if image_uri.startswith("data:"):
            _, _, payload = image_uri.partition(",")
            img = Image.open(io.BytesIO(base64.b64decode(payload)))
        else:
            if not os.path.exists(image_uri):
                raise ExportError(EXPORT_IMAGE_MISSING_CODE, f"Image not found: {image_uri}")
            img = Image.open(image_uri)
        img.load()
    except (OSError, ValueError, binascii.Error) as e:
        raise ExportError(EXPORT_IMAGE_MISSING_CODE, f"Could not decode segment image: {e}") from e

    return img.convert("RGB")


def _draw_caption(frame: Image.Image, text: str, font) -> None:
    width, height = frame.size
    font_size = math.floor(width * CAPTION_FONT_RATIO)
    stroke_width = max(2, round(font_size / 6))
    line_height = font_size * CAPTION_LINE_HEIGHT
    x = width / 2
    y = height - (height * CAPTION_BOTTOM_RATIO)

    measure_draw = ImageDraw.Draw(frame)
    lines = wrap_text(
        text.split(" "),
        lambda s: measure_draw.textlength(s, font=font),
        width * CAPTION_MAX_WIDTH_RATIO,
    )

    # drop shadow, drawn on its own layer and blurred
    shadow = Image.new("RGBA", frame.size, (0, 0, 0, 0))
    shadow_draw = ImageDraw.Draw(shadow)
    for i, line in enumerate(lines):
        shadow_draw.text(
            (x + SHADOW_OFFSET[0], y + SHADOW_OFFSET[1] + i * line_height),
            line,
            font=font,
            fill=(0, 0, 0, SHADOW_ALPHA),
            anchor="md",
            stroke_width=stroke_width,
            stroke_fill=(0, 0, 0, SHADOW_ALPHA),
        )
    shadow = shadow.filter(ImageFilter.GaussianBlur(SHADOW_BLUR / 2))
    frame.paste(shadow, (0, 0), shadow)

    draw = ImageDraw.Draw(frame)
    for i, line in enumerate(lines):
        draw.text(
            (x, y + i * line_height),
            line,
            font=font,
            fill="white",
            anchor="md",
            stroke_width=stroke_width,
            stroke_fill="black",
        )


def draw_frame(
    image: Image.Image,
    text: Optional[str],
    movement,
    progress: float,
    canvas: Tuple[int, int],
    burn_captions: bool,
    font=None,
) -> Image.Image:
    """
    프레임 1장 렌더링.

    Args:
        image: RGB 원본 이미지
        text: 자막 텍스트
        movement: CameraMovement
        progress: 세그먼트 로컬 진행도 0..1
        canvas: (width, height)
        burn_captions: 자막 burn-in 여부
        font: 미리 로드한 자막 폰트 (없으면 로드)

    Returns:
        canvas 크기의 RGB 이미지
    """
    width, height = canvas
    img_w, img_h = image.size
    base_w, base_h = cover_fit(img_w, img_h, width, height)
    scale, tx = camera_transform(movement, progress)
    cx, cy = width / 2, height / 2

    # inverse mapping: canvas (X, Y) -> source pixel
    sx = img_w / base_w
    sy = img_h / base_h
    coeffs = (
        sx / scale, 0.0, (-cx / scale - tx + base_w / 2) * sx,
        0.0, sy / scale, (-cy / scale + base_h / 2) * sy,
    )
    frame = image.transform(
        (width, height),
        Image.Transform.AFFINE,
        coeffs,
        resample=Image.Resampling.BILINEAR,
        fillcolor=(0, 0, 0),
    )

    if burn_captions and text:
        _draw_caption(frame, text, font or load_caption_font(width))
    return frame
