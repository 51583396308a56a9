import logging
import shutil
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


def staged_upload_path(work_dir: Path, key: str) -> Path:
    """Where a raw upload waits for its transcode."""
    return Path(work_dir) / f"{key}.upload"


def converted_path(work_dir: Path, key: str, suffix: str = ".mp4") -> Path:
    """Transcoder output, named by upload attempt so concurrent uploads never collide."""
    return Path(work_dir) / f"{key}-converted{suffix}"


def remove_temp_file(path: Optional[Path]) -> bool:
    """Delete a temporary artifact. Failures are logged, never raised."""
    if path is None:
        return False
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"File {path} was not deleted: {e}")
        return False
    logger.debug(f"Completed deleting {path}")
    return True


def build_ffmpeg_command(
    ffmpeg_path: str,
    input_path: Path,
    output_path: Path,
    output_args: Sequence[str],
) -> List[str]:
    """Convert any browser-recorded media into the canonical container."""
    return [
        ffmpeg_path,
        "-y",  # Overwrite output
        "-nostdin",
        "-i", str(input_path),
        *output_args,
        str(output_path),
    ]


def ffmpeg_available(ffmpeg_path: str) -> bool:
    return shutil.which(ffmpeg_path) is not None
