"""
Chunked audio transcription.

The inference API has a practical per-call duration ceiling, so long
recordings are cut into consecutive, non-overlapping chunks of
``AUDIO_CHUNK_SECONDS`` (the last one shorter), each re-encoded to
MP3/128k. All chunks are transcribed concurrently with a staggered start
(chunk ``i`` waits ``i * CHUNK_STAGGER_SECONDS``) to stay under the API
rate limit. One failed chunk fails the whole job; transcripts are joined
in chunk order, never completion order.

Requires ffmpeg on the PATH (pydub shells out to it).
"""

import logging
import math
import os
import shutil
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

from inkpipe.config import settings
from inkpipe.errors import ExtractionFailure
from inkpipe.utils.ai_provider import InferenceProvider, InferenceResult, resolve_tokens

logger = logging.getLogger(__name__)

EXPORT_FORMAT = "mp3"
EXPORT_CODEC = "libmp3lame"
EXPORT_BITRATE = "128k"


@dataclass
class ChunkResult:
    index: int
    text: Optional[str] = None
    tokens_used: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def plan_chunks(duration: float, chunk_seconds: int) -> List[Tuple[float, float]]:
    """
    Return ``(start, end)`` offsets in seconds covering *duration*.

    >>> plan_chunks(50 * 60, 20 * 60)
    [(0, 1200), (1200, 2400), (2400, 3000)]
    """
    if chunk_seconds <= 0:
        raise ValueError("chunk_seconds must be positive")
    if duration <= chunk_seconds:
        return [(0, duration)]
    count = math.ceil(duration / chunk_seconds)
    return [(i * chunk_seconds, min((i + 1) * chunk_seconds, duration)) for i in range(count)]


def iter_joined(parts: Iterable[str]) -> Iterator[str]:
    """Yield transcripts in order, with one space wherever two words would touch."""
    previous = ""
    for part in parts:
        if not part:
            continue
        if previous and not previous[-1].isspace() and not part[0].isspace():
            yield " "
        yield part
        previous = part


def join_transcripts(parts: Iterable[str]) -> str:
    """
    >>> join_transcripts(["A ", "B ", "C "])
    'A B C '
    >>> join_transcripts(["A", "B"])
    'A B'
    """
    return "".join(iter_joined(parts))


def probe_duration(path: str) -> float:
    """Duration of the audio file in seconds (ffprobe)."""
    from pydub.utils import mediainfo

    info = mediainfo(path)
    try:
        duration = float(info.get("duration") or 0)
    except (TypeError, ValueError):
        duration = 0.0
    if duration <= 0:
        # Some containers (webm) carry no duration header; decode to measure
        from pydub import AudioSegment

        duration = len(AudioSegment.from_file(path)) / 1000.0
    return duration


def transcode(src_path: str, dst_path: str) -> str:
    """Re-encode any input ffmpeg understands to MP3/128k."""
    from pydub import AudioSegment

    AudioSegment.from_file(src_path).export(dst_path, format=EXPORT_FORMAT, codec=EXPORT_CODEC, bitrate=EXPORT_BITRATE)
    return dst_path


def split_into_chunks(audio_path: str, chunk_seconds: int, out_dir: str) -> List[str]:
    """
    Split *audio_path* into chunk files inside *out_dir*.

    Audio no longer than one chunk is returned as-is.
    """
    duration = probe_duration(audio_path)
    plan = plan_chunks(duration, chunk_seconds)
    if len(plan) == 1:
        return [audio_path]

    from pydub import AudioSegment

    audio = AudioSegment.from_file(audio_path)
    chunk_paths = []
    for index, (start, end) in enumerate(plan):
        chunk_path = os.path.join(out_dir, f"chunk-{index}.{EXPORT_FORMAT}")
        audio[int(start * 1000) : int(end * 1000)].export(
            chunk_path, format=EXPORT_FORMAT, codec=EXPORT_CODEC, bitrate=EXPORT_BITRATE
        )
        chunk_paths.append(chunk_path)

    logger.info(f"Split {duration:.0f}s of audio into {len(chunk_paths)} chunk(s) of up to {chunk_seconds}s")
    return chunk_paths


def transcribe_chunks(
    chunk_paths: Sequence[str],
    transcribe: Callable[[str], InferenceResult],
    stagger_seconds: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> List[ChunkResult]:
    """
    Transcribe every chunk concurrently and return results in chunk order.

    Raises:
        ExtractionFailure: At least one chunk failed; the message lists each
            failed index with its error.
    """
    if not chunk_paths:
        return []

    def _run(index: int, path: str) -> ChunkResult:
        if index and stagger_seconds > 0:
            sleep(index * stagger_seconds)
        try:
            result = transcribe(path)
            return ChunkResult(index=index, text=result.text, tokens_used=resolve_tokens(result))
        except Exception as e:
            logger.error(f"Error processing chunk {index}: {e}")
            return ChunkResult(index=index, error=str(e) or e.__class__.__name__)

    with ThreadPoolExecutor(max_workers=len(chunk_paths), thread_name_prefix="chunk") as pool:
        futures = [pool.submit(_run, index, path) for index, path in enumerate(chunk_paths)]
        results = [future.result() for future in futures]

    results.sort(key=lambda r: r.index)
    failed = [r for r in results if not r.ok]
    if failed:
        details = "\n".join(f"Chunk {r.index}: {r.error}" for r in failed)
        raise ExtractionFailure(f"Some chunks failed to process:\n{details}")
    return results


def transcribe_in_chunks(
    audio_path: str,
    provider: InferenceProvider,
    chunk_seconds: Optional[int] = None,
    stagger_seconds: Optional[float] = None,
) -> Tuple[List[ChunkResult], int]:
    """
    Transcode, split and transcribe *audio_path*.

    Returns the ordered chunk results and the total token count. Every
    temporary file created here is removed before returning, on success
    and on failure alike.
    """
    chunk_seconds = chunk_seconds or settings.audio_chunk_seconds
    stagger_seconds = settings.chunk_stagger_seconds if stagger_seconds is None else stagger_seconds

    os.makedirs(settings.workdir, exist_ok=True)
    tmp_dir = tempfile.mkdtemp(prefix="inkpipe-audio-", dir=settings.workdir)
    try:
        normalized = transcode(audio_path, os.path.join(tmp_dir, f"input.{EXPORT_FORMAT}"))
        chunk_paths = split_into_chunks(normalized, chunk_seconds, tmp_dir)
        results = transcribe_chunks(
            chunk_paths,
            lambda path: provider.transcribe_audio(path, audio_format=EXPORT_FORMAT),
            stagger_seconds=stagger_seconds,
        )
        return results, sum(r.tokens_used for r in results)
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)


def transcribe_audio_file(
    audio_path: str,
    provider: InferenceProvider,
    chunk_seconds: Optional[int] = None,
    stagger_seconds: Optional[float] = None,
) -> Tuple[str, int]:
    """Full transcript of *audio_path* and its token cost."""
    results, tokens = transcribe_in_chunks(audio_path, provider, chunk_seconds, stagger_seconds)
    return join_transcripts([r.text or "" for r in results]), tokens
