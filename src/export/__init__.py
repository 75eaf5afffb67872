"""Timeline audio export: source extraction, orchestration and encoding."""
from .encoder import AudioEncoder, EncodedAudioResult, EncoderProgress, EncoderSettings, SoundFileEncoder
from .errors import AudioEncodingError, AudioExportError, AudioExtractionError
from .extractor import AudioExtractor, SoundFileExtractor
from .pipeline import AudioExportPipeline, ExportPhase, ExportProgress

__all__ = [
    "AudioEncoder",
    "AudioEncodingError",
    "AudioExportError",
    "AudioExportPipeline",
    "AudioExtractionError",
    "AudioExtractor",
    "EncodedAudioResult",
    "EncoderProgress",
    "EncoderSettings",
    "ExportPhase",
    "ExportProgress",
    "SoundFileEncoder",
    "SoundFileExtractor",
]
