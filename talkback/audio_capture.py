from __future__ import annotations

import logging
import threading
import time
import wave
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

import numpy as np

from talkback.errors import AlreadyCapturing, DeviceError, DeviceUnavailable, NoActiveCapture, StorageError
from talkback.models import AudioArtifact

logger = logging.getLogger(__name__)

StreamFactory = Callable[..., Any]


def list_input_devices():
    """
    Returns available INPUT audio devices.
    Used by the status endpoint for device selection hints.
    """
    import sounddevice as sd

    devices = []
    try:
        for idx, d in enumerate(sd.query_devices()):
            if int(d.get("max_input_channels", 0)) <= 0:
                continue
            devices.append(
                {
                    "index": idx,
                    "name": d.get("name", f"Device {idx}"),
                    "max_input_channels": int(d.get("max_input_channels", 0)),
                    "default_samplerate": int(d.get("default_samplerate", 0) or 0),
                }
            )
    except Exception as e:
        return {"ok": False, "error": repr(e), "devices": []}

    return {"ok": True, "devices": devices}


def _sounddevice_stream(**kwargs):
    # Imported here so the service starts on machines without PortAudio
    import sounddevice as sd

    return sd.InputStream(**kwargs)


def to_int16(indata: np.ndarray) -> np.ndarray:
    """
    Convert a sounddevice callback block (float32 in [-1, 1] or int16)
    into an int16 array of shape (frames, channels).
    """
    x = np.asarray(indata)
    if x.ndim == 1:
        x = x.reshape(-1, 1)
    if x.dtype == np.int16:
        return x.copy()
    f = np.clip(x.astype(np.float32), -1.0, 1.0)
    return (f * 32767.0).astype(np.int16)


class AudioCapture:
    """Owns the microphone while a recording is open.

    Samples are collected in memory by the stream callback and written out
    as a 16-bit PCM WAV file when the capture ends.
    """

    def __init__(
        self,
        output_dir: str = "recordings",
        sample_rate: int = 16000,
        channels: int = 1,
        device: Optional[Union[int, str]] = None,
        max_seconds: float = 300.0,
        stream_factory: Optional[StreamFactory] = None,
    ):
        self.output_dir = Path(output_dir)
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        if isinstance(device, str) and device.isdigit():
            device = int(device)
        self.device = device
        self.max_frames = int(max_seconds * self.sample_rate) if max_seconds else 0
        self._stream_factory = stream_factory or _sounddevice_stream

        self._stream = None
        self._blocks: List[np.ndarray] = []
        self._frames = 0
        self._truncated = False
        self._lock = threading.Lock()

    @property
    def is_capturing(self) -> bool:
        with self._lock:
            return self._stream is not None

    def _callback(self, indata, frames, time_info, status):
        if status:
            logger.debug("sounddevice status: %s", status)
        block = to_int16(indata)
        with self._lock:
            if self._stream is None:
                return
            if self.max_frames:
                room = self.max_frames - self._frames
                if room <= 0:
                    if not self._truncated:
                        self._truncated = True
                        logger.warning("Recording reached %.0fs cap; further audio discarded",
                                       self.max_frames / self.sample_rate)
                    return
                block = block[:room]
            self._blocks.append(block)
            self._frames += len(block)

    def begin_capture(self) -> None:
        with self._lock:
            if self._stream is not None:
                raise AlreadyCapturing("A capture is already in progress")
            self._blocks = []
            self._frames = 0
            self._truncated = False

        try:
            stream = self._stream_factory(
                device=self.device,
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                callback=self._callback,
            )
        except Exception as e:
            raise DeviceUnavailable(f"Cannot open input device {self.device!r}: {e}") from e

        # Publish the stream before starting it so the first callback is kept
        with self._lock:
            self._stream = stream
        try:
            stream.start()
        except Exception as e:
            with self._lock:
                self._stream = None
            try:
                stream.close()
            except Exception:
                logger.debug("Ignoring close failure after failed start", exc_info=True)
            raise DeviceUnavailable(f"Cannot start input device {self.device!r}: {e}") from e

        logger.info("Capture started (device=%s sr=%d ch=%d)", self.device, self.sample_rate, self.channels)

    def end_capture(self) -> AudioArtifact:
        with self._lock:
            stream = self._stream
            if stream is None:
                raise NoActiveCapture("No capture in progress")
            self._stream = None

        try:
            self._release(stream)
        except Exception as e:
            self._clear()
            raise DeviceError(f"Failed to stop input device {self.device!r}: {e}") from e

        blocks = self._clear()
        if blocks:
            pcm = np.concatenate(blocks, axis=0)
        else:
            pcm = np.zeros((0, self.channels), dtype=np.int16)

        try:
            artifact = self._write_wav(pcm)
        except (OSError, wave.Error) as e:
            raise StorageError(f"Cannot write recording to {self.output_dir}: {e}") from e
        size_kb = artifact.size_bytes / 1024.0
        logger.info("Wrote %s: %.2f KB (%d bytes), %.2fs",
                    artifact.path, size_kb, artifact.size_bytes, artifact.duration_s)
        return artifact

    def abort(self) -> None:
        """Release the device without writing a recording."""
        with self._lock:
            stream = self._stream
            self._stream = None
        self._clear()
        if stream is None:
            return
        try:
            self._release(stream)
        except Exception:
            logger.warning("Error while releasing input device", exc_info=True)
        logger.info("Capture aborted; recorded audio discarded")

    @staticmethod
    def _release(stream) -> None:
        try:
            stream.stop()
        finally:
            stream.close()

    def _clear(self) -> List[np.ndarray]:
        with self._lock:
            blocks, self._blocks = self._blocks, []
            self._frames = 0
        return blocks

    def _write_wav(self, pcm: np.ndarray) -> AudioArtifact:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        stamp = time.strftime("%Y%m%d-%H%M%S") + f"-{int(time.time() * 1000) % 1000:03d}"
        path = self.output_dir / f"recording-{stamp}.wav"
        with wave.open(str(path), "wb") as wf:
            wf.setnchannels(self.channels)
            wf.setsampwidth(2)
            wf.setframerate(self.sample_rate)
            wf.writeframes(pcm.astype("<i2").tobytes(order="C"))
        return AudioArtifact(
            path=str(path),
            sample_rate=self.sample_rate,
            channels=self.channels,
            num_frames=int(pcm.shape[0]),
        )
