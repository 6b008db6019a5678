"""
VIRALCUT 공통 상수 모듈

Constants shared across the agents. Values that users may want to tune live
in config/ instead.
"""

# ─── Gemini 모델명 ────────────────────────────────────────
MODEL_GEMINI_FLASH = "gemini-3-flash-preview"
MODEL_GEMINI_PRO_IMAGE = "gemini-3-pro-image-preview"

# ─── Aspect ratios / canvas sizes ─────────────────────────
ASPECT_VERTICAL = "9:16"
ASPECT_HORIZONTAL = "16:9"
CANVAS_SIZES = {
    ASPECT_VERTICAL: (720, 1280),
    ASPECT_HORIZONTAL: (1280, 720),
}

# ─── Image prompt descriptors ─────────────────────────────
IMAGE_POSITIVE_DESCRIPTORS = (
    "cinematic lighting, high fidelity, distinct consistent artstyle, "
    "masterful composition, 8k resolution, highly detailed"
)
IMAGE_NEGATIVE_DESCRIPTORS = (
    "blurry, low quality, distorted, bad anatomy, ugly, disfigured, watermark, "
    "text, subtitles, ui, signature, jpeg artifacts, cartoon (unless specified), "
    "anime (unless specified), cgi (unless specified), inconsistent lighting, "
    "messy background"
)
REFERENCE_INTEGRATION_INSTRUCTION = (
    "[IMPORTANT: Integrate the object from the provided image naturally into "
    "this scene, maintaining the scene's lighting and style]."
)
IMAGE_SIZE = "1K"

# ─── Storyboard ───────────────────────────────────────────
MIN_SEGMENT_DURATION_SEC = 0.1
NO_REFERENCE_INDEX = -1
