"""
CLI tests (argument parsing and the storyboard-only flow).
"""
import json
import sys
import os
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pipeline as pipeline_module
from cli.viralcut_cli import build_parser, main
from fakes import SAMPLE_SRT, build_pipeline


class TestParser:

    def test_defaults(self):
        args = build_parser().parse_args(["talk.srt"])
        assert args.subtitle == "talk.srt"
        assert args.aspect_ratio == "9:16"
        assert args.burn_captions is True
        assert args.reference == []

    def test_options(self):
        args = build_parser().parse_args([
            "talk.srt", "--style", "anime", "--aspect-ratio", "16:9",
            "-r", "a.png", "-r", "b.png", "--no-captions", "--save-stills",
        ])
        assert args.style == "anime"
        assert args.aspect_ratio == "16:9"
        assert args.reference == ["a.png", "b.png"]
        assert args.burn_captions is False
        assert args.save_stills is True

    def test_invalid_aspect_ratio(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["talk.srt", "--aspect-ratio", "4:3"])


class TestMain:

    def test_list_styles(self, capsys):
        assert main(["--list-styles"]) == 0
        assert "cyberpunk" in capsys.readouterr().out

    def test_subtitle_required(self, capsys):
        assert main([]) == 2

    def test_missing_file(self, tmp_path):
        assert main([str(tmp_path / "missing.srt")]) == 1

    def test_storyboard_only(self, tmp_path, monkeypatch, capsys):
        created = []

        def factory(output_base_dir, **kwargs):
            pipeline = build_pipeline(tmp_path, **kwargs)
            created.append(pipeline)
            return pipeline

        monkeypatch.setattr(pipeline_module, "ViralCutPipeline", factory)
        srt_path = tmp_path / "talk.srt"
        srt_path.write_text(SAMPLE_SRT, encoding="utf-8")

        assert main([str(srt_path), "--storyboard-only", "--style", "anime"]) == 0

        pipeline = created[0]
        assert pipeline.style.id == "anime"
        assert pipeline.image_client.calls == []
        with open(f"{pipeline.project_dir}/manifest.json", encoding="utf-8") as f:
            assert len(json.load(f)["segments"]) == 2
        assert "Storyboard: 2 segments" in capsys.readouterr().out
