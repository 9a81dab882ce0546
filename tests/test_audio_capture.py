import os
import tempfile
import unittest
import wave

import numpy as np

from helpers import FakeInputStream
from talkback.audio_capture import AudioCapture, to_int16
from talkback.errors import AlreadyCapturing, DeviceError, DeviceUnavailable, NoActiveCapture, StorageError


class TestAudioCapture(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        FakeInputStream.instances = []

    def tearDown(self):
        self._tmp.cleanup()

    def _capture(self, **kwargs):
        return AudioCapture(output_dir=self._tmp.name, sample_rate=8000, channels=1,
                            stream_factory=FakeInputStream, **kwargs)

    def test_capture_writes_wav_with_all_samples(self):
        cap = self._capture()
        cap.begin_capture()
        self.assertTrue(cap.is_capturing)
        stream = FakeInputStream.instances[0]
        self.assertEqual(stream.kwargs["samplerate"], 8000)
        self.assertTrue(stream.started)

        stream.feed(np.full((800, 1), 0.5, dtype=np.float32))
        stream.feed(np.full((400, 1), -0.5, dtype=np.float32))
        artifact = cap.end_capture()

        self.assertFalse(cap.is_capturing)
        self.assertTrue(stream.closed)
        self.assertEqual(artifact.num_frames, 1200)
        self.assertAlmostEqual(artifact.duration_s, 0.15)
        with wave.open(artifact.path, "rb") as wf:
            self.assertEqual(wf.getframerate(), 8000)
            self.assertEqual(wf.getsampwidth(), 2)
            self.assertEqual(wf.getnframes(), 1200)
            samples = np.frombuffer(wf.readframes(1200), dtype="<i2")
        self.assertEqual(int(samples[0]), int(0.5 * 32767))
        self.assertLess(int(samples[-1]), 0)
        self.assertGreater(artifact.size_bytes, 2400)

    def test_end_without_begin_raises(self):
        with self.assertRaises(NoActiveCapture):
            self._capture().end_capture()

    def test_begin_twice_raises(self):
        cap = self._capture()
        cap.begin_capture()
        with self.assertRaises(AlreadyCapturing):
            cap.begin_capture()

    def test_device_open_failure_is_device_unavailable(self):
        def broken(**kwargs):
            raise OSError("PortAudio library not found")

        cap = AudioCapture(output_dir=self._tmp.name, stream_factory=broken)
        with self.assertRaises(DeviceUnavailable):
            cap.begin_capture()
        self.assertFalse(cap.is_capturing)

    def test_stop_failure_is_device_error_and_releases_stream(self):
        class StuckStream(FakeInputStream):
            def stop(self):
                raise RuntimeError("Error stopping stream: Unanticipated host error")

        cap = AudioCapture(output_dir=self._tmp.name, stream_factory=StuckStream)
        cap.begin_capture()
        with self.assertRaises(DeviceError) as ctx:
            cap.end_capture()
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        self.assertFalse(cap.is_capturing)
        self.assertTrue(FakeInputStream.instances[0].closed)
        # The device can be opened again afterwards
        cap.begin_capture()
        self.assertTrue(cap.is_capturing)

    def test_unwritable_output_dir_is_storage_error(self):
        blocker = os.path.join(self._tmp.name, "not-a-dir")
        with open(blocker, "w") as f:
            f.write("x")
        cap = AudioCapture(output_dir=blocker, stream_factory=FakeInputStream)
        cap.begin_capture()
        FakeInputStream.instances[0].feed(np.zeros((100, 1), dtype=np.float32))
        with self.assertRaises(StorageError) as ctx:
            cap.end_capture()
        self.assertIsInstance(ctx.exception.__cause__, OSError)
        self.assertFalse(cap.is_capturing)

    def test_abort_releases_device_without_writing(self):
        cap = self._capture()
        cap.begin_capture()
        stream = FakeInputStream.instances[0]
        stream.feed(np.zeros((100, 1), dtype=np.float32))
        cap.abort()
        self.assertFalse(cap.is_capturing)
        self.assertTrue(stream.closed)
        self.assertEqual(os.listdir(self._tmp.name), [])
        # Aborting with nothing open is a no-op
        cap.abort()

    def test_samples_beyond_cap_are_discarded(self):
        cap = self._capture(max_seconds=0.1)
        cap.begin_capture()
        stream = FakeInputStream.instances[0]
        for _ in range(5):
            stream.feed(np.zeros((300, 1), dtype=np.float32))
        self.assertEqual(cap.end_capture().num_frames, 800)

    def test_empty_recording_still_produces_artifact(self):
        cap = self._capture()
        cap.begin_capture()
        artifact = cap.end_capture()
        self.assertEqual(artifact.num_frames, 0)
        with wave.open(artifact.path, "rb") as wf:
            self.assertEqual(wf.getnframes(), 0)

    def test_to_int16_clips_and_keeps_int16(self):
        out = to_int16(np.array([2.0, -2.0], dtype=np.float32))
        self.assertEqual(out.shape, (2, 1))
        self.assertEqual(out[:, 0].tolist(), [32767, -32767])
        raw = np.array([[1], [2]], dtype=np.int16)
        self.assertEqual(to_int16(raw).tolist(), [[1], [2]])


if __name__ == "__main__":
    unittest.main()
