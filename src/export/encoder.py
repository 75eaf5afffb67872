"""Perceptual encoding of the final mix through libsndfile.

The encoder consumes a stereo :class:`~audio.buffer.PCMBuffer` in fixed-size
frames, the way hardware and browser encoders are fed, and collects the
container bytes produced after every frame as one chunk.
"""
from __future__ import annotations

from dataclasses import dataclass
import io
import logging
import math
from typing import Callable, Dict, List, Literal, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field
import soundfile

from audio.buffer import PCMBuffer
from audio.scheduling import YieldPoint

from .errors import AudioEncodingError

logger = logging.getLogger(__name__)

FRAME_SIZE = 1024
YIELD_EVERY_FRAMES = 100

# codec name -> (libsndfile major format, subtype)
CODECS: Dict[str, Tuple[str, str]] = {
    "mp3": ("MP3", "MPEG_LAYER_III"),
    "ogg": ("OGG", "VORBIS"),
    "flac": ("FLAC", "PCM_16"),
    "wav": ("WAV", "PCM_16"),
}
LOSSY_CODECS = frozenset({"mp3", "ogg"})

BITRATES: Dict[str, int] = {
    "low": 128_000,
    "medium": 192_000,
    "high": 256_000,
    "lossless": 320_000,
}


def recommended_bitrate(quality: Literal["low", "medium", "high", "lossless"]) -> int:
    return BITRATES.get(quality, 256_000)


class EncoderSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    codec: str = "mp3"
    sample_rate: int = Field(48_000, gt=0)
    number_of_channels: int = Field(2, ge=1, le=2)
    bitrate: int = Field(256_000, ge=32_000, le=320_000)


@dataclass(frozen=True)
class EncoderProgress:
    encoded_samples: int
    total_samples: int
    percent: int


EncoderProgressCallback = Callable[[EncoderProgress], None]


@dataclass
class EncodedAudioResult:
    """Encoded container bytes split into the chunks emitted while encoding."""

    chunks: List[bytes]
    metadata: List[Dict[str, int]]
    duration: float
    codec: str
    settings: EncoderSettings

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)


class AudioEncoder(Protocol):
    """Encoder surface the export pipeline depends on."""

    def negotiate(self, preferences: Sequence[str]) -> Optional[str]:
        """Return the first codec in *preferences* this encoder can produce."""

    def configure(self, settings: EncoderSettings) -> bool:
        """Prepare for encoding; ``False`` when the settings are unsupported."""

    async def encode(
        self,
        buffer: PCMBuffer,
        on_progress: EncoderProgressCallback | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        """Encode *buffer* frame by frame, stopping early once *should_stop* is true."""

    def finalize(self) -> EncodedAudioResult:
        """Flush the encoder and return everything it produced."""


def _compression_level(bitrate: int) -> float:
    # libsndfile takes 0.0 (largest, best) .. 1.0 (smallest) instead of a bitrate.
    level = 1.0 - (bitrate - 128_000) / (320_000 - 128_000)
    return float(min(1.0, max(0.0, level)))


class SoundFileEncoder:
    """Single-use encoder writing MP3/Ogg Vorbis (or lossless) containers."""

    def __init__(self, frame_size: int = FRAME_SIZE) -> None:
        self.frame_size = frame_size
        self._settings: Optional[EncoderSettings] = None
        self._sink: Optional[io.BytesIO] = None
        self._file: Optional[soundfile.SoundFile] = None
        self._written = 0
        self._chunks: List[bytes] = []
        self._metadata: List[Dict[str, int]] = []
        self._total_samples = 0
        self._closed = False

    # ------------------------------------------------------------------
    # Capability checks
    # ------------------------------------------------------------------
    @staticmethod
    def supports(codec: str) -> bool:
        if codec not in CODECS:
            return False
        major, subtype = CODECS[codec]
        if major not in soundfile.available_formats():
            return False
        return soundfile.check_format(major, subtype)

    def negotiate(self, preferences: Sequence[str]) -> Optional[str]:
        for codec in preferences:
            if self.supports(codec):
                return codec
        return None

    def is_supported(self, preferences: Sequence[str] = ("mp3", "ogg")) -> bool:
        return self.negotiate(preferences) is not None

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------
    def configure(self, settings: EncoderSettings) -> bool:
        if not self.supports(settings.codec):
            logger.error("Codec %s is not available in this libsndfile build", settings.codec)
            return False
        major, subtype = CODECS[settings.codec]
        options: Dict[str, object] = {}
        if settings.codec in LOSSY_CODECS:
            options["compression_level"] = _compression_level(settings.bitrate)
        self._sink = io.BytesIO()
        try:
            self._file = soundfile.SoundFile(
                self._sink,
                mode="w",
                samplerate=settings.sample_rate,
                channels=settings.number_of_channels,
                format=major,
                subtype=subtype,
                **options,
            )
        except (soundfile.LibsndfileError, ValueError, TypeError):
            logger.exception("Configure failed for %s", settings.codec)
            self._sink = None
            return False
        self._settings = settings
        logger.info(
            "Encoder initialised: %s %dHz, %dch, %dkbps",
            settings.codec,
            settings.sample_rate,
            settings.number_of_channels,
            settings.bitrate // 1000,
        )
        return True

    def _collect_output(self) -> bytes:
        assert self._sink is not None
        with self._sink.getbuffer() as view:
            chunk = bytes(view[self._written :])
            self._written = len(view)
        return chunk

    def _rechunk(self, container: bytes) -> List[bytes]:
        # Closing rewrites container headers in place; re-slice the final
        # bytes along the chunk boundaries emitted while encoding.
        chunks: List[bytes] = []
        offset = 0
        for chunk in self._chunks:
            chunks.append(container[offset : offset + len(chunk)])
            offset += len(chunk)
        if offset < len(container):
            chunks.append(container[offset:])
        return chunks

    async def encode(
        self,
        buffer: PCMBuffer,
        on_progress: EncoderProgressCallback | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        if self._file is None or self._closed:
            raise AudioEncodingError("Encoder not configured or already finalized")

        self._total_samples = buffer.length
        self._chunks = []
        self._metadata = []
        total_frames = int(math.ceil(buffer.length / self.frame_size))
        yield_point = YieldPoint(every=YIELD_EVERY_FRAMES)
        logger.debug("Encoding %.2fs audio (%d frames)", buffer.duration, total_frames)

        for frame_index in range(total_frames):
            start = frame_index * self.frame_size
            end = min(start + self.frame_size, buffer.length)
            self._file.write(buffer.samples[start:end])
            chunk = self._collect_output()
            if chunk:
                self._chunks.append(chunk)
            self._metadata.append(
                {
                    "timestamp_us": int(round(start / buffer.sample_rate * 1_000_000)),
                    "frames": end - start,
                    "bytes": len(chunk),
                }
            )
            if on_progress:
                on_progress(
                    EncoderProgress(
                        encoded_samples=end,
                        total_samples=buffer.length,
                        percent=int(round(end / buffer.length * 100)),
                    )
                )
            if await yield_point.tick() and should_stop is not None and should_stop():
                logger.info("Encoding stopped at frame %d of %d", frame_index + 1, total_frames)
                return

        logger.debug("Encoding complete, %d chunks", len(self._chunks))

    def finalize(self) -> EncodedAudioResult:
        if self._file is None or self._settings is None:
            raise AudioEncodingError("Encoder not configured")
        if not self._closed:
            self._file.close()
            self._closed = True
            assert self._sink is not None
            self._chunks = self._rechunk(self._sink.getvalue())

        duration = self._total_samples / float(self._settings.sample_rate)
        logger.info("Finalized: %d chunks, %.2fs", len(self._chunks), duration)
        return EncodedAudioResult(
            chunks=list(self._chunks),
            metadata=list(self._metadata),
            duration=duration,
            codec=self._settings.codec,
            settings=self._settings,
        )


__all__ = [
    "AudioEncoder",
    "CODECS",
    "EncodedAudioResult",
    "EncoderProgress",
    "EncoderSettings",
    "FRAME_SIZE",
    "SoundFileEncoder",
    "recommended_bitrate",
]
