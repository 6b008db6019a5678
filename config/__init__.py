"""
VIRALCUT Configuration Loader
"""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional

from schemas import StyleDescriptor

# 기본 설정 디렉토리
CONFIG_DIR = Path(__file__).parent
CONFIG_ENV_VAR = "VIRALCUT_CONFIG"


def get_default_settings() -> Dict[str, Any]:
    """기본 settings 반환"""
    return {
        "quota": {
            "max_daily_images": 10000,
            "max_script_duration_sec": 36000,  # 10 hours
            "store_path": "outputs/quota.json",
        },
        "generation": {
            "concurrency": 3,
            "storyboard_max_attempts": 5,
            "storyboard_backoff_base_sec": 2.0,
            "storyboard_backoff_offset_sec": 1.0,
            "image_max_attempts": 8,
            "image_backoff_base_sec": 2.0,
            "image_backoff_jitter_sec": 1.0,
            "fixed_backoff_sec": 2.0,
        },
        "video": {
            "fps": 30,
            "trailing_buffer_sec": 0.5,
            "bitrate": 8000000,
            "encoder_preference": [
                "video/webm;codecs=vp9",
                "video/mp4",
                "video/webm",
            ],
        },
        "director": {
            "gap_warning_sec": 3.0,
        },
        "models": {
            "text": "gemini-3-flash-preview",
            "image": "gemini-3-pro-image-preview",
        },
    }


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Settings 로드

    Args:
        config_path: 설정 파일 경로 (기본: $VIRALCUT_CONFIG 또는 config/settings.yaml)

    Returns:
        기본값 위에 YAML 을 병합한 settings 딕셔너리
    """
    if config_path is None:
        config_path = os.getenv(CONFIG_ENV_VAR) or CONFIG_DIR / "settings.yaml"

    if not os.path.exists(config_path):
        return get_default_settings()

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    return _deep_merge(get_default_settings(), config)


def get_quota_limits(config_path: Optional[str] = None) -> Dict[str, Any]:
    return load_settings(config_path)["quota"]


def get_generation_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    return load_settings(config_path)["generation"]


def get_video_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    return load_settings(config_path)["video"]


def get_director_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    return load_settings(config_path)["director"]


def get_model_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    return load_settings(config_path)["models"]


def get_default_styles() -> List[Dict[str, Any]]:
    """기본 비주얼 스타일 프리셋 반환."""
    return [
        {
            "id": "oil_painting",
            "name": "Healing Impasto",
            "prompt_modifier": (
                "authentic oil painting on canvas, (visible thick brushstrokes:1.4), palette knife texture, "
                "impasto style, dreamy atmosphere, Tyndall effect, dappled sunlight, soft focus. "
                "Subject Constraint: Back view of a solitary figure in rustic linen clothes, or close-up of "
                "nature details. Claude Monet style, fine art, traditional medium, no digital smooth finish."
            ),
            "description": "Warm, emotional, and textured. Focus on nature, light, and solitude.",
            "negative_prompt": "photorealistic, cgi, 3d render, smooth, shiny, digital art, vector, flat, low quality",
        },
        {
            "id": "hyperreal",
            "name": "Analog Photography",
            "prompt_modifier": (
                "Shot on Kodak Portra 400, 35mm film grain, slight motion blur, raw photo, f/1.8 aperture, "
                "natural lighting, organic texture, imperfect composition, cinematic documentary style, "
                "highly detailed texture, no skin smoothing."
            ),
            "description": "Authentic film look, grainy, raw, and emotional.",
        },
        {
            "id": "cyberpunk",
            "name": "Neon Cyberpunk",
            "prompt_modifier": (
                "Cyberpunk aesthetic, neon lights, rainy streets, optical aberration, chromatic aberration, "
                "high iso noise, cinematic lighting, gritty texture, shot on Arri Alexa"
            ),
            "description": "High energy, futuristic, dark with bright neon accents.",
        },
        {
            "id": "minimalist",
            "name": "Clean Minimalist",
            "prompt_modifier": (
                "Minimalist photography, soft natural lighting, pastel colors, clean lines, high key, "
                "studio quality, unoccluded, matte finish, architectural digest style"
            ),
            "description": "Clean, modern, focus on subject matter with zero clutter.",
        },
        {
            "id": "anime",
            "name": "Vintage Anime",
            "prompt_modifier": (
                "1990s anime style, hand drawn cel shading, grain, retro aesthetic, detailed clouds, "
                "Makoto Shinkai atmosphere, watercolour background"
            ),
            "description": "Vibrant, emotional, high-quality animation style.",
        },
        {
            "id": "dark_fantasy",
            "name": "Dark Fantasy",
            "prompt_modifier": (
                "Dark fantasy oil painting, gloomy atmosphere, fog, gothic architecture, dramatic chiaroscuro "
                "lighting, mysterious, ethereal, Frank Frazetta style, traditional art"
            ),
            "description": "Moody, dramatic, and intense.",
        },
        {
            "id": "sketch",
            "name": "Charcoal Sketch",
            "prompt_modifier": (
                "Charcoal sketch on textured paper, smudge marks, graphite pencil, rough lines, hand drawn, "
                "unfinished look, artistic"
            ),
            "description": "Playful, clean, black and white hand-drawn look.",
        },
    ]


def get_video_styles(config_path: Optional[str] = None) -> List[StyleDescriptor]:
    """
    스타일 프리셋 로드. settings.yaml 에 `styles` 목록이 있으면 기본값 대신 사용.
    """
    settings = load_settings(config_path)
    raw_styles = settings.get("styles") or get_default_styles()
    return [StyleDescriptor(**style) for style in raw_styles]


def get_style(style_id: str, config_path: Optional[str] = None) -> StyleDescriptor:
    """ID 로 스타일 조회. 없으면 KeyError."""
    for style in get_video_styles(config_path):
        if style.id == style_id:
            return style
    raise KeyError(f"Unknown style: {style_id}")
