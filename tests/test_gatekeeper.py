import dataclasses
import logging
import threading
import time

import numpy as np
import pytest
from PIL import Image, ImageFilter

from logiaudit.config import GatekeeperConfig
from logiaudit.quality import gatekeeper as gatekeeper_mod
from logiaudit.quality.gatekeeper import Gatekeeper, GatekeeperVerdict
from logiaudit.quality.preprocess import prepare_grid
from logiaudit.utils.image import ArrayDecoder, DecodeError, PillowDecoder

from conftest import checkerboard, png_bytes, solid, text_page


def blurred(pixels: np.ndarray, radius: float) -> np.ndarray:
    if radius == 0:
        return pixels
    return np.asarray(Image.fromarray(pixels).filter(ImageFilter.GaussianBlur(radius)), dtype=np.uint8)


class TestVerdicts:
    def test_uniform_image_is_blurry_with_zero_score(self, gatekeeper):
        for value in (0, 128, 255):
            v = gatekeeper.analyze(png_bytes(solid(1024, 768, value)), "image/png")
            assert (v.is_blurry, v.score) == (True, 0)
            assert v.reason == "insufficient_content"

    def test_checkerboard_is_sharp(self, gatekeeper):
        v = gatekeeper.analyze(png_bytes(checkerboard()), "image/png")
        assert v.score > 40
        assert v.is_blurry is False
        assert v.reason == "sharp"

    def test_camera_cap_on(self, gatekeeper, black_png):
        v = gatekeeper.analyze(black_png, "image/png")
        assert v == GatekeeperVerdict(is_blurry=True, score=0, reason="insufficient_content")

    def test_invoice_photo_end_to_end(self, gatekeeper):
        page = text_page(3000, 4000, bar=10, pitch=30, line=40, leading=100)
        data = png_bytes(page)
        gray_shape = prepare_grid(PillowDecoder().decode(data), 800).shape
        assert gray_shape == (1066, 800)

        v = gatekeeper.analyze(data, "image/png")
        assert v.score >= 45
        assert v.is_blurry is False

    def test_low_amplitude_texture_has_no_edges(self, gatekeeper):
        ys, xs = np.mgrid[0:800, 0:800]
        texture = (((xs + ys) % 2) * 3).astype(np.uint8)
        v = gatekeeper.analyze_pixels(np.stack([texture] * 3, axis=-1))
        assert (v.is_blurry, v.score) == (True, 0)

    @pytest.mark.parametrize("size", [(2, 2), (1, 50), (50, 2), (4000, 3)])
    def test_tiny_images_do_not_crash(self, gatekeeper, size):
        w, h = size
        v = gatekeeper.analyze(png_bytes(checkerboard(w, h, square=1)), "image/png")
        assert (v.is_blurry, v.score) == (True, 0)

    def test_deterministic(self, gatekeeper, sharp_png):
        first = gatekeeper.analyze(sharp_png, "image/png")
        second = gatekeeper.analyze(bytes(sharp_png), "image/png")
        assert first == second

    def test_blur_never_raises_score(self, gatekeeper):
        page = text_page()
        scores = [gatekeeper.analyze_pixels(blurred(page, r)).score for r in (0, 1, 2, 3, 5, 8)]
        assert scores == sorted(scores, reverse=True)
        assert scores[0] >= 45
        assert scores[-1] == 0

    def test_heavy_blur_is_flagged(self, gatekeeper):
        v = gatekeeper.analyze_pixels(blurred(text_page(), 6))
        assert v.is_blurry is True

    def test_verdict_is_immutable(self):
        v = GatekeeperVerdict(is_blurry=False, score=50)
        with pytest.raises(dataclasses.FrozenInstanceError):
            v.score = 10  # type: ignore[misc]
        assert v.to_dict() == {"is_blurry": False, "score": 50, "reason": "sharp"}

    def test_config_threshold_is_used(self, sharp_png):
        strict = Gatekeeper(GatekeeperConfig(threshold=10_000))
        v = strict.analyze(sharp_png, "image/png")
        assert v.is_blurry is True
        assert v.reason == "blurry"


class TestFailurePolicy:
    def test_corrupt_payload_fails_open(self, gatekeeper, caplog):
        with caplog.at_level(logging.WARNING, logger="logiaudit"):
            v = gatekeeper.analyze(b"definitely not a jpeg", "image/jpeg")
        assert (v.is_blurry, v.score, v.reason) == (False, 999, "decode_failure")
        assert v.failed_open
        assert "could not decode" in caplog.text

    def test_empty_payload_fails_open(self, gatekeeper):
        v = gatekeeper.analyze(b"", None)
        assert (v.is_blurry, v.score) == (False, 999)

    def test_truncated_png_fails_open(self, gatekeeper, sharp_png):
        v = gatekeeper.analyze(sharp_png[: len(sharp_png) // 2], "image/png")
        assert v.reason == "decode_failure"

    def test_unexpected_error_fails_open(self, gatekeeper, sharp_png, monkeypatch, caplog):
        def boom(*args, **kwargs):
            raise RuntimeError("kaboom")

        monkeypatch.setattr(gatekeeper_mod, "edge_samples", boom)
        with caplog.at_level(logging.ERROR, logger="logiaudit"):
            v = gatekeeper.analyze(sharp_png, "image/png")
        assert (v.is_blurry, v.score, v.reason) == (False, 999, "processing_error")
        assert "kaboom" in caplog.text

    def test_decoder_crash_fails_open(self):
        class BrokenDecoder:
            def decode(self, data, mime_type=None):
                raise MemoryError("no room")

        v = Gatekeeper(decoder=BrokenDecoder()).analyze(b"x")
        assert v.reason == "processing_error"

    def test_array_decoder_rejects_bad_layout(self):
        with pytest.raises(DecodeError):
            ArrayDecoder(np.zeros((0, 5, 3), dtype=np.uint8)).decode()
        with pytest.raises(DecodeError):
            ArrayDecoder(np.zeros((5, 5, 2), dtype=np.uint8)).decode()
        with pytest.raises(DecodeError):
            ArrayDecoder(np.zeros((5, 5, 3), dtype=np.float32)).decode()

    def test_bad_pixels_fail_open(self, gatekeeper):
        v = gatekeeper.analyze_pixels(np.zeros((5, 5, 3), dtype=np.float32))
        assert v.reason == "decode_failure"


class TestConcurrency:
    def test_cancelled_before_start(self, gatekeeper, sharp_png):
        cancel = threading.Event()
        cancel.set()
        assert gatekeeper.analyze(sharp_png, "image/png", cancel=cancel) is None

    def test_cancelled_during_decode(self, sharp_png):
        cancel = threading.Event()

        class CancellingDecoder(PillowDecoder):
            def decode(self, data, mime_type=None):
                pixels = super().decode(data, mime_type)
                cancel.set()  # caller navigates away mid-run
                return pixels

        gate = Gatekeeper(decoder=CancellingDecoder())
        assert gate.analyze(sharp_png, "image/png", cancel=cancel) is None

    def test_submit_returns_verdict(self, gatekeeper, sharp_png):
        job = gatekeeper.submit(sharp_png, "image/png")
        v = job.result(timeout=60)
        assert v is not None and v.is_blurry is False
        assert job.done()
        assert not job.cancelled()

    def test_job_cancel(self, sharp_png):
        started = threading.Event()
        release = threading.Event()

        class SlowDecoder(PillowDecoder):
            def decode(self, data, mime_type=None):
                started.set()
                release.wait(10)
                return super().decode(data, mime_type)

        with Gatekeeper(decoder=SlowDecoder(), max_workers=1) as gate:
            job = gate.submit(sharp_png, "image/png")
            assert started.wait(10)
            job.cancel()
            release.set()
            assert job.result(timeout=60) is None
            assert job.cancelled()

    def test_cancel_while_waiting_on_queued_job(self, sharp_png):
        started = threading.Event()
        release = threading.Event()

        class SlowDecoder(PillowDecoder):
            def decode(self, data, mime_type=None):
                started.set()
                release.wait(10)
                return super().decode(data, mime_type)

        with Gatekeeper(decoder=SlowDecoder(), max_workers=1) as gate:
            busy = gate.submit(sharp_png, "image/png")
            assert started.wait(10)
            queued = gate.submit(sharp_png, "image/png")

            seen = {}
            waiter = threading.Thread(target=lambda: seen.update(result=queued.result(timeout=30)))
            waiter.start()
            time.sleep(0.2)  # let the waiter block on the queued job
            queued.cancel()
            waiter.join(10)
            release.set()

            assert not waiter.is_alive()
            assert seen == {"result": None}
            assert queued.cancelled()
            assert busy.result(timeout=60).is_blurry is False
            assert not busy.cancelled()

    def test_cancel_after_done_keeps_verdict(self, gatekeeper, sharp_png):
        job = gatekeeper.submit(sharp_png, "image/png")
        verdict = job.result(timeout=60)
        job.cancel()
        assert not job.cancelled()
        assert job.result() == verdict
        assert verdict.is_blurry is False

    def test_submit_path_reads_inside_job(self, gatekeeper, sharp_png, tmp_path):
        img = tmp_path / "doc.png"
        img.write_bytes(sharp_png)
        assert gatekeeper.submit_path(img, "image/png").result(timeout=60) == gatekeeper.analyze(sharp_png)

    def test_unreadable_path_fails_open(self, gatekeeper, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger="logiaudit"):
            v = gatekeeper.analyze_path(tmp_path / "missing.png")
        assert (v.is_blurry, v.score, v.reason) == (False, 999, "decode_failure")
        assert "could not read" in caplog.text

    def test_parallel_evaluations_are_independent(self, gatekeeper, sharp_png, black_png):
        verdicts = gatekeeper.evaluate_many(
            [(sharp_png, "image/png"), (black_png, "image/png"), (sharp_png, "image/png"), (black_png, "image/png")]
        )
        assert [v.is_blurry for v in verdicts] == [False, True, False, True]
        assert verdicts[0] == verdicts[2]
        assert verdicts[1] == verdicts[3]
