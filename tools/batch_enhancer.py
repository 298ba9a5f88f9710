"""
PixelUpia SR - Batch Enhancer
==============================
Offline enhancement of single images or whole directories.

Decode → Enhance (FULL / SIMPLE) → Encode

Usage:
    python -m tools.batch_enhancer photo.jpg -o enhanced.jpg
    python -m tools.batch_enhancer photos/ -o enhanced/ --mode simple --pattern "*.jpg"
"""

import argparse
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from core.pipeline import (
    EnhanceMode,
    EnhancementPipeline,
    PipelineConfig,
    process_image_sequence,
    process_single_image,
)


@dataclass
class BatchEnhancerConfig:
    """Configuration for one batch run."""

    # Input/Output
    input_path: str
    output_path: str

    # Enhancement
    mode: EnhanceMode = EnhanceMode.FULL
    pattern: str = "*.jpg"

    # Pipeline config
    pipeline_config: PipelineConfig = field(default_factory=PipelineConfig)


class BatchEnhancer:
    """
    Offline enhancement runner.

    A file input is enhanced to `output_path`; a directory input is
    enhanced file by file into the `output_path` directory.
    """

    def __init__(self, config: BatchEnhancerConfig, pipeline: Optional[EnhancementPipeline] = None):
        """
        Initialize batch enhancer.

        Args:
            config: Batch configuration
            pipeline: Pipeline to use (built from the ONNX model if None)
        """
        self.config = config

        input_path = Path(config.input_path)
        if not input_path.exists():
            raise FileNotFoundError(f"Input not found: {config.input_path}")

        self.pipeline = pipeline or EnhancementPipeline.from_config(config.pipeline_config)

        print("=" * 70)
        print("PixelUpia SR Batch Enhancer")
        print("=" * 70)
        print(f"Input:  {config.input_path}")
        print(f"Output: {config.output_path}")
        print(f"Mode:   {config.mode.value}")
        print("=" * 70)

    def _print_progress(self, value: float):
        print(f"\r[Batch] Progress: {value * 100:5.1f}%", end='', flush=True)
        if value >= 1.0:
            print()

    def process(self) -> List[Path]:
        """
        Execute the batch.

        Returns:
            Paths of the written images
        """
        input_path = Path(self.config.input_path)

        if input_path.is_dir():
            return process_image_sequence(
                str(input_path),
                self.config.output_path,
                self.config.pipeline_config,
                mode=self.config.mode,
                pattern=self.config.pattern,
                pipeline=self.pipeline
            )

        saved = process_single_image(
            str(input_path),
            self.config.output_path,
            self.config.pipeline_config,
            mode=self.config.mode,
            pipeline=self.pipeline,
            on_progress=self._print_progress
        )
        return [saved]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PixelUpia SR batch enhancer")
    parser.add_argument("input", help="Input image or directory")
    parser.add_argument("-o", "--output", required=True, help="Output image or directory")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in EnhanceMode],
        default=EnhanceMode.FULL.value,
        help="full: native-resolution 4x upscale; simple: fixed 1080x1080 output",
    )
    parser.add_argument("--pattern", default="*.jpg", help="Glob pattern for directory input")
    parser.add_argument("--model", default=None, help="Model registry key (default model if omitted)")
    parser.add_argument("--model-path", default=None, help="Override the model file path")
    parser.add_argument("--models-dir", default="models", help="Directory holding model files")
    parser.add_argument("--gpu", action="store_true", help="Prefer a GPU execution provider")
    parser.add_argument("--threads", type=int, default=None, help="Inference threads")
    parser.add_argument(
        "--padding",
        choices=["constant", "edge"],
        default="constant",
        help="Fill for the out-of-bounds part of edge tiles",
    )
    parser.add_argument("--quality", type=int, default=95, help="JPEG quality")
    return parser


def config_from_args(args: argparse.Namespace) -> BatchEnhancerConfig:
    pipeline_config = PipelineConfig.from_model(args.model, models_dir=args.models_dir)
    if args.model_path:
        pipeline_config.model_path = args.model_path
    pipeline_config.use_gpu = args.gpu
    pipeline_config.num_threads = args.threads
    pipeline_config.padding_mode = args.padding
    pipeline_config.jpeg_quality = args.quality

    return BatchEnhancerConfig(
        input_path=args.input,
        output_path=args.output,
        mode=EnhanceMode(args.mode),
        pattern=args.pattern,
        pipeline_config=pipeline_config,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = config_from_args(args)

    try:
        enhancer = BatchEnhancer(config)
        written = enhancer.process()
    except (FileNotFoundError, RuntimeError, ValueError) as e:
        print(f"[Error] {e}")
        return 1

    return 0 if written else 1


if __name__ == "__main__":
    sys.exit(main())
