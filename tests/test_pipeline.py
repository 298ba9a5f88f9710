"""
Unit tests for the Enhancement Pipeline
"""

import numpy as np
import pytest
from PIL import Image

from core.errors import InferenceError, InvalidInputError, JobCancelledError
from core.image import RasterImage, load_image, resample
from core.pipeline import (
    EnhanceMode,
    EnhancementJob,
    EnhancementPipeline,
    JobStatus,
    PipelineConfig,
    ResizeStage,
    TileUpscaleStage,
    process_image_sequence,
    process_single_image,
)

from .conftest import make_image, make_nearest_infer, nearest_upscale


@pytest.fixture
def pipeline(nearest_infer):
    """Pipeline with the default 50px / 4x contract and a replication stub"""
    return EnhancementPipeline.from_infer(nearest_infer)


class TestFullMode:
    """Test direct single-pass upscale"""

    def test_full_output_size(self, pipeline):
        output = pipeline.enhance(make_image(120, 80), EnhanceMode.FULL)
        assert output.size == (480, 320)

    def test_full_matches_engine(self, pipeline):
        image = make_image(70, 30)
        output = pipeline.enhance(image, EnhanceMode.FULL)
        np.testing.assert_array_equal(output.data, nearest_upscale(image, 4))

    def test_full_progress_is_delegated_verbatim(self, pipeline):
        values = []
        pipeline.enhance(make_image(120, 80), EnhanceMode.FULL, on_progress=values.append)
        assert values == [i / 6 for i in range(1, 7)]

    def test_mode_accepts_string(self, pipeline):
        output = pipeline.enhance(make_image(10, 10), "full")
        assert output.size == (40, 40)


class TestSimpleMode:
    """Test resize → tile upscale → resize"""

    @pytest.mark.parametrize("width, height", [(120, 80), (30, 500), (1, 1), (640, 480)])
    def test_simple_output_is_always_1080_square(self, pipeline, width, height):
        output = pipeline.enhance(make_image(width, height), EnhanceMode.SIMPLE)
        assert output.size == (1080, 1080)

    def test_simple_progress_ranges(self, pipeline):
        values = []
        pipeline.enhance(make_image(200, 100), EnhanceMode.SIMPLE, on_progress=values.append)

        # 320×320 at 50px tiles is a 7×7 grid
        assert len(values) == 1 + 49 + 1
        assert values[0] == 0.2
        assert values[1:50] == [0.2 + (i / 49) * 0.6 for i in range(1, 50)]
        assert values[-1] == 1.0
        assert all(a < b for a, b in zip(values, values[1:]))

    def test_simple_tiles_the_intermediate_image(self):
        shapes = []
        nearest = make_nearest_infer(50, 4)

        def recording_infer(tensor):
            shapes.append(tensor.shape)
            return nearest(tensor)

        pipeline = EnhancementPipeline.from_infer(recording_infer)
        pipeline.enhance(make_image(2000, 1500), EnhanceMode.SIMPLE)
        assert len(shapes) == 49
        assert all(shape == (50 * 50 * 3,) for shape in shapes)

    def test_simple_stage_plan(self, pipeline):
        stages = pipeline.stages_for(EnhanceMode.SIMPLE)
        assert [type(s) for s in stages] == [ResizeStage, TileUpscaleStage, ResizeStage]
        assert (stages[0].width, stages[0].height) == (320, 320)
        assert (stages[2].width, stages[2].height) == (1080, 1080)
        assert [(s.start, s.span) for s in stages] == [(0.0, 0.2), (0.2, 0.6), (0.8, 0.2)]

    def test_simple_uses_configured_sizes(self, nearest_infer):
        config = PipelineConfig()
        config.simple_intermediate_size = (100, 50)
        config.simple_final_size = (300, 200)
        pipeline = EnhancementPipeline.from_infer(nearest_infer, config)

        output = pipeline.enhance(make_image(40, 40), EnhanceMode.SIMPLE)
        assert output.size == (300, 200)

    def test_simple_stretches_solid_image(self, pipeline):
        """Anisotropic resampling keeps a flat colour flat"""
        data = np.zeros((90, 400, 4), dtype=np.uint8)
        data[:, :] = (12, 200, 99, 255)
        output = pipeline.enhance(RasterImage(data), EnhanceMode.SIMPLE)
        assert (output.data[:, :, :3] == (12, 200, 99)).all()


class TestResample:
    """Test anisotropic resize"""

    def test_resample_ignores_aspect_ratio(self):
        output = resample(make_image(300, 100), 320, 320)
        assert output.size == (320, 320)

    def test_resample_same_size_copies(self):
        image = make_image(8, 8)
        output = resample(image, 8, 8)
        np.testing.assert_array_equal(output.data, image.data)
        assert output.data is not image.data

    def test_resample_rejects_empty_target(self):
        with pytest.raises(ValueError):
            resample(make_image(8, 8), 0, 8)


class TestEnhancementJob:
    """Test the job state machine"""

    def test_completed_job(self, pipeline):
        seen = []
        job = EnhancementJob(image=make_image(60, 60), mode=EnhanceMode.FULL, on_progress=seen.append)
        assert job.status == JobStatus.IDLE

        result = pipeline.run_job(job)

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 1.0
        assert job.result is result
        assert seen == [0.25, 0.5, 0.75, 1.0]

    def test_failed_job(self):
        def broken(tensor):
            raise RuntimeError("delegate crashed")

        pipeline = EnhancementPipeline.from_infer(broken)
        job = EnhancementJob(image=make_image(60, 60), mode=EnhanceMode.FULL)

        with pytest.raises(InferenceError):
            pipeline.run_job(job)

        assert job.status == JobStatus.FAILED
        assert "delegate crashed" in job.error
        assert job.result is None

    def test_cancelled_job(self, nearest_infer):
        pipeline = EnhancementPipeline.from_infer(nearest_infer)
        job = EnhancementJob(image=make_image(120, 80), mode=EnhanceMode.FULL)

        def cancel_after_first(value):
            job.cancel()

        job.on_progress = cancel_after_first

        with pytest.raises(JobCancelledError):
            pipeline.run_job(job)

        assert job.status == JobStatus.CANCELLED
        assert job.progress == pytest.approx(1 / 6)
        assert job.result is None

    def test_cancel_between_stages(self, pipeline):
        job = EnhancementJob(image=make_image(500, 500), mode=EnhanceMode.SIMPLE)

        def cancel_after_resize(value):
            if value == 0.2:
                job.cancel()

        job.on_progress = cancel_after_resize
        with pytest.raises(JobCancelledError):
            pipeline.run_job(job)
        assert job.progress == 0.2

    @pytest.mark.parametrize("status", [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED])
    def test_finished_job_cannot_run_again(self, pipeline, status):
        job = EnhancementJob(image=make_image(60, 60), mode=EnhanceMode.FULL)
        job.status = status

        with pytest.raises(InvalidInputError):
            pipeline.run_job(job)
        assert job.status == status

    def test_completed_job_keeps_its_result(self, pipeline):
        job = EnhancementJob(image=make_image(60, 60), mode=EnhanceMode.FULL)
        result = pipeline.run_job(job)

        with pytest.raises(InvalidInputError):
            pipeline.run_job(job)
        assert job.status == JobStatus.COMPLETED
        assert job.result is result

    def test_progress_never_goes_backwards(self):
        job = EnhancementJob(image=make_image(1, 1), mode=EnhanceMode.FULL)
        job.update_progress(0.5)
        job.update_progress(0.3)
        assert job.progress == 0.5


class TestConfig:
    """Test pipeline configuration"""

    def test_defaults(self):
        config = PipelineConfig()
        assert (config.tile_size, config.scale, config.channels) == (50, 4, 3)
        assert config.simple_intermediate_size == (320, 320)
        assert config.simple_final_size == (1080, 1080)
        assert config.as_dict()['padding_mode'] == 'constant'

    def test_from_default_model(self):
        config = PipelineConfig.from_model(models_dir="weights")
        assert config.tile_size == 50
        assert config.scale == 4
        assert config.model_path.replace("\\", "/") == "weights/ESRGAN.onnx"

    def test_unknown_model(self):
        with pytest.raises(ValueError):
            PipelineConfig.from_model("does-not-exist")

    def test_padding_mode_flows_to_engine(self, nearest_infer):
        config = PipelineConfig()
        config.padding_mode = 'edge'
        pipeline = EnhancementPipeline.from_infer(nearest_infer, config)
        assert pipeline.engine.padding_mode == 'edge'


class TestFileProcessing:
    """Test single-image and directory helpers"""

    def _write_png(self, path, size=(60, 40), colour=(10, 120, 240)):
        Image.new("RGB", size, colour).save(path)
        return path

    def test_process_single_image_jpeg(self, tmp_path, pipeline):
        src = self._write_png(tmp_path / "in.png")
        out = process_single_image(str(src), str(tmp_path / "out" / "enhanced.jpg"),
                                   PipelineConfig(), EnhanceMode.FULL, pipeline=pipeline)
        with Image.open(out) as result:
            assert result.format == "JPEG"
            assert result.size == (240, 160)

    def test_process_single_image_simple_png(self, tmp_path, pipeline):
        src = self._write_png(tmp_path / "in.png", size=(300, 90))
        out = process_single_image(str(src), str(tmp_path / "enhanced.png"),
                                   PipelineConfig(), EnhanceMode.SIMPLE, pipeline=pipeline)
        assert load_image(out).size == (1080, 1080)

    def test_process_image_sequence_skips_broken_files(self, tmp_path, pipeline):
        src_dir = tmp_path / "src"
        src_dir.mkdir()
        self._write_png(src_dir / "a.png", size=(20, 20))
        self._write_png(src_dir / "b.png", size=(55, 10))
        (src_dir / "c.png").write_bytes(b"not an image")

        written = process_image_sequence(str(src_dir), str(tmp_path / "out"),
                                         PipelineConfig(), EnhanceMode.FULL,
                                         pattern="*.png", pipeline=pipeline)

        assert [p.name for p in written] == ["a.png", "b.png"]
        assert load_image(written[1]).size == (220, 40)

    def test_process_image_sequence_skips_oversized_files(self, tmp_path, pipeline, monkeypatch):
        src_dir = tmp_path / "src"
        src_dir.mkdir()
        self._write_png(src_dir / "a.png", size=(400, 400))
        self._write_png(src_dir / "b.png", size=(20, 20))
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

        written = process_image_sequence(str(src_dir), str(tmp_path / "out"),
                                         PipelineConfig(), EnhanceMode.FULL,
                                         pattern="*.png", pipeline=pipeline)

        assert [p.name for p in written] == ["b.png"]
        assert not (tmp_path / "out" / "a.png").exists()

    def test_process_image_sequence_empty(self, tmp_path, pipeline):
        assert process_image_sequence(str(tmp_path), str(tmp_path / "out"),
                                      PipelineConfig(), pipeline=pipeline) == []
