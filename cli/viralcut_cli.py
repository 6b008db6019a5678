"""
VIRALCUT CLI - Command-line interface for subtitle-to-video generation.

기능:
- SRT 자막 → AI 스토리보드 → 세그먼트 이미지 → Ken Burns 영상
- 스타일 / 화면 비율 / 참조 이미지 / 자막 burn-in 옵션
- --storyboard-only: 이미지 생성 없이 스토리보드만 저장
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.append(str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from config import get_video_styles
from schemas import AspectRatio
from utils.errors import ViralCutError


def print_banner():
    """Print VIRALCUT banner."""
    banner = """
=====================================================================
              VIRALCUT - Subtitle to Short-Form Video
              Storyboard / Image Generation / Ken Burns Export
=====================================================================
"""
    print(banner)


def load_env():
    """Load environment variables from .env file."""
    load_dotenv()
    print("[OK] Environment variables loaded")


def print_styles():
    print("\nAvailable styles:")
    for style in get_video_styles():
        print(f"  {style.id:<18} {style.name}")
        if style.description:
            print(f"  {'':<18} {style.description}")
    print()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="viralcut",
        description="Turn a subtitle (.srt) file into a narrated storyboard video.",
    )
    parser.add_argument("subtitle", nargs="?", help="Path to the .srt subtitle file")
    parser.add_argument("--style", default=None, help="Style id (see --list-styles)")
    parser.add_argument(
        "--aspect-ratio",
        default=AspectRatio.VERTICAL.value,
        choices=[a.value for a in AspectRatio],
        help="Output aspect ratio (default: 9:16)",
    )
    parser.add_argument(
        "--reference", "-r",
        action="append",
        default=[],
        metavar="IMAGE",
        help="Reference image to keep a subject consistent (repeatable)",
    )
    parser.add_argument(
        "--no-captions",
        dest="burn_captions",
        action="store_false",
        help="Do not burn subtitles into the video",
    )
    parser.add_argument("--output-dir", default="outputs", help="Output base directory (default: outputs)")
    parser.add_argument("--list-styles", action="store_true", help="List available styles and exit")
    parser.add_argument(
        "--storyboard-only",
        action="store_true",
        help="Create and save the storyboard without generating images",
    )
    parser.add_argument("--save-stills", action="store_true", help="Also save every scene image as scene-<n>")
    return parser


def print_progress(percent: float):
    sys.stdout.write(f"\r  Rendering... {percent:5.1f}%")
    sys.stdout.flush()
    if percent >= 100:
        sys.stdout.write("\n")


async def run(args) -> int:
    from pipeline import ViralCutPipeline

    with open(args.subtitle, "r", encoding="utf-8-sig") as f:
        srt_text = f.read()

    pipeline = ViralCutPipeline(
        output_base_dir=args.output_dir,
        aspect_ratio=AspectRatio(args.aspect_ratio),
        style_id=args.style,
    )
    cues = pipeline.load_subtitles(srt_text)
    print(f"[OK] {len(cues)} subtitle cues loaded")

    for path in args.reference:
        with open(path, "rb") as f:
            pipeline.add_reference_image(f.read())
        print(f"[OK] Reference image: {path}")

    segments = await pipeline.create_storyboard()
    print(f"[OK] Storyboard: {len(segments)} segments ({pipeline.style.name})")
    for i, segment in enumerate(segments, 1):
        print(f"  {i:02d}. [{segment.duration_seconds:5.1f}s] {segment.camera_movement.value:<9} {segment.text[:50]}")

    if not args.storyboard_only:
        try:
            report = await pipeline.generate_all()
        except KeyboardInterrupt:
            pipeline.stop_generation()
            raise
        print(
            f"[OK] Images: {report.completed} completed, {report.failed} failed"
            + (" (daily quota reached)" if report.quota_exceeded else "")
        )

        if pipeline.store.completed():
            blob = await pipeline.export_video(on_progress=print_progress, burn_captions=args.burn_captions)
            print(f"[OK] Video: {blob.path} ({blob.size / (1024 * 1024):.1f} MB)")
        else:
            print("[WARNING] No segment completed; skipping video export")

        if args.save_stills:
            stills = pipeline.save_segment_images()
            print(f"[OK] {len(stills)} scene images saved")

    manifest_path = pipeline.save_project()

    print("\n" + "="*60)
    print("ALL DONE!")
    print("="*60)
    print(f"Project ID: {pipeline.project_id}")
    print(f"Manifest: {manifest_path}")
    print(f"Seed: {pipeline.seed}")
    return 0


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    if args.list_styles:
        print_styles()
        return 0

    if not args.subtitle:
        build_parser().print_usage()
        print("error: a subtitle file is required (or use --list-styles)")
        return 2

    print_banner()
    load_env()

    if not os.getenv("GOOGLE_API_KEY"):
        print("\n[WARNING] GOOGLE_API_KEY not found in environment.")
        print("          Set your API key in .env file or environment variables.\n")

    try:
        return asyncio.run(run(args))

    except KeyboardInterrupt:
        print("\n\n[INTERRUPTED] Generation interrupted by user.")
        return 1

    except (ViralCutError, KeyError, OSError) as e:
        print(f"\n\n[ERROR] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
