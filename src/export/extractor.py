"""Decoding clip sources into PCM buffers."""
from __future__ import annotations

from collections import OrderedDict
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import soundfile

from audio.buffer import PCMBuffer, resample_linear, silent_buffer, to_stereo, trim_buffer

from .errors import AudioExtractionError

logger = logging.getLogger(__name__)

NO_AUDIO_DURATION = 1.0
NO_AUDIO_SAMPLE_RATE = 48_000


class AudioExtractor(Protocol):
    """Source decoding surface the export pipeline depends on."""

    def extract(self, source: Any, cache_key: Optional[str] = None) -> PCMBuffer:
        """Return the decoded audio of *source*."""

    def trim(self, buffer: PCMBuffer, start_time: float, end_time: float) -> PCMBuffer:
        """Cut ``[start_time, end_time)`` out of *buffer*."""

    def resample(self, buffer: PCMBuffer, target_rate: int) -> PCMBuffer:
        """Convert *buffer* to *target_rate*."""

    def to_stereo(self, buffer: PCMBuffer) -> PCMBuffer:
        """Return a buffer with at least two channels."""

    def silent_buffer(self, duration: float) -> PCMBuffer:
        """Return stereo silence lasting *duration* seconds."""

    def clear_cache(self) -> None:
        """Drop every cached decode."""


class SoundFileExtractor:
    """libsndfile-backed extractor with a small LRU cache of decodes."""

    def __init__(self, max_cache_size: int = 5, *, sample_rate: int = NO_AUDIO_SAMPLE_RATE) -> None:
        self._cache: "OrderedDict[str, PCMBuffer]" = OrderedDict()
        self._max_cache_size = max(1, max_cache_size)
        self.sample_rate = sample_rate

    def extract(self, source: Any, cache_key: Optional[str] = None) -> PCMBuffer:
        if isinstance(source, PCMBuffer):
            return source
        if cache_key is not None and cache_key in self._cache:
            logger.debug("Cache hit for %s", cache_key)
            self._cache.move_to_end(cache_key)
            return self._cache[cache_key]

        buffer = self._decode(Path(source))
        if cache_key is not None:
            self._add_to_cache(cache_key, buffer)
        return buffer

    def _decode(self, path: Path) -> PCMBuffer:
        if not path.exists():
            raise AudioExtractionError(f"Source file {path} does not exist", path.name)
        logger.debug("Decoding %s", path)
        try:
            data, rate = soundfile.read(str(path), dtype="float32", always_2d=True)
        except soundfile.LibsndfileError:
            logger.warning("No audio track in %s, creating silent buffer", path.name)
            return silent_buffer(NO_AUDIO_DURATION, NO_AUDIO_SAMPLE_RATE, 2)
        except OSError as exc:
            raise AudioExtractionError(f"Failed to read {path}: {exc}", path.name) from exc
        logger.debug("Decoded %s: %d frames @ %dHz, %d channels", path.name, data.shape[0], rate, data.shape[1])
        return PCMBuffer(data, rate)

    # ------------------------------------------------------------------
    # Buffer helpers
    # ------------------------------------------------------------------
    def trim(self, buffer: PCMBuffer, start_time: float, end_time: float) -> PCMBuffer:
        return trim_buffer(buffer, start_time, end_time)

    def resample(self, buffer: PCMBuffer, target_rate: int) -> PCMBuffer:
        return resample_linear(buffer, target_rate)

    def to_stereo(self, buffer: PCMBuffer) -> PCMBuffer:
        return to_stereo(buffer)

    def silent_buffer(self, duration: float) -> PCMBuffer:
        """Return stereo silence of at least one frame."""

        buffer = silent_buffer(duration, self.sample_rate, 2)
        if buffer.length == 0:
            return silent_buffer(1.0 / self.sample_rate, self.sample_rate, 2)
        return buffer

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------
    def _add_to_cache(self, key: str, buffer: PCMBuffer) -> None:
        self._cache[key] = buffer
        self._cache.move_to_end(key)
        while len(self._cache) > self._max_cache_size:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug("Evicting cached buffer: %s", evicted)
        logger.debug("Cached buffer: %s (%d/%d)", key, len(self._cache), self._max_cache_size)

    def is_cached(self, key: str) -> bool:
        return key in self._cache

    def clear_cache(self) -> None:
        count = len(self._cache)
        self._cache.clear()
        logger.debug("Cleared %d cached buffers", count)

    def set_max_cache_size(self, size: int) -> None:
        self._max_cache_size = max(1, size)
        while len(self._cache) > self._max_cache_size:
            self._cache.popitem(last=False)

    def cache_stats(self) -> Dict[str, object]:
        keys: List[str] = list(self._cache.keys())
        return {"size": len(keys), "max_size": self._max_cache_size, "keys": keys}


__all__ = ["AudioExtractor", "SoundFileExtractor"]
