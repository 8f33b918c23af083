"""Video encoder policy: hardware detection and quality presets."""

import logging
import platform
import subprocess
from dataclasses import dataclass

from klyppr import ffutil

logger = logging.getLogger(__name__)

QUALITY_SETTINGS = {
    "fast": {"preset": "ultrafast", "crf": 28, "qv": 6},
    "medium": {"preset": "veryfast", "crf": 23, "qv": 5},
    "high": {"preset": "medium", "crf": 18, "qv": 3},
}
DEFAULT_QUALITY = "medium"

# Most preferred first. VAAPI is left out: it needs hwupload in the graph.
HARDWARE_CHAINS = {
    "Darwin": ["h264_videotoolbox"],
    "Windows": ["h264_nvenc", "h264_amf", "h264_qsv"],
    "Linux": ["h264_nvenc", "h264_qsv"],
}


def _has_encoder(listing: str, name: str) -> bool:
    return any(
        len(parts) > 1 and parts[1] == name
        for parts in (line.split() for line in listing.splitlines())
    )


def pick_hardware_encoder(listing: str, system: str) -> str | None:
    """Return the first encoder of ``system``'s chain present in ``listing``."""
    for name in HARDWARE_CHAINS.get(system, HARDWARE_CHAINS["Linux"]):
        if _has_encoder(listing, name):
            return name
    return None


@dataclass(frozen=True)
class EncoderPolicy:
    """Which video encoder the host can use. Computed once per process."""

    hardware_encoder: str | None = None
    system: str = "Linux"

    @classmethod
    def detect(cls, system: str | None = None) -> "EncoderPolicy":
        """Probe ffmpeg's encoder list; any probe failure means software only."""
        system = system or platform.system()
        try:
            listing = ffutil.list_encoders()
        except (OSError, subprocess.CalledProcessError) as e:
            logger.warning("Encoder probe failed, using software encoding: %s", e)
            return cls(hardware_encoder=None, system=system)

        encoder = pick_hardware_encoder(listing, system)
        if encoder:
            logger.info("Hardware encoder available: %s", encoder)
        else:
            logger.info("No hardware encoder found, using software encoding")
        return cls(hardware_encoder=encoder, system=system)

    def video_args(self, quality: str = DEFAULT_QUALITY, use_hardware: bool = True) -> list[str]:
        """ffmpeg video codec flags for a quality preset."""
        q = QUALITY_SETTINGS.get(quality, QUALITY_SETTINGS[DEFAULT_QUALITY])
        enc = self.hardware_encoder if use_hardware else None

        if enc is None:
            if self.system == "Windows":
                return ["-c:v", "mpeg4", "-q:v", str(q["qv"])]
            return ["-c:v", "libx264", "-preset", q["preset"], "-crf", str(q["crf"])]

        if "videotoolbox" in enc:
            return ["-c:v", enc, "-q:v", str(int(100 - q["crf"] * 1.5))]
        if "nvenc" in enc or "amf" in enc:
            return ["-c:v", enc, "-rc", "vbr", "-cq", str(q["crf"])]
        if "qsv" in enc:
            return ["-c:v", enc, "-global_quality", str(q["crf"])]
        return ["-c:v", enc]
