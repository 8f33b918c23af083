"""JSON manifest schema, the contract between CLI/API and engine."""

import json
from dataclasses import dataclass, field
from pathlib import Path

from klyppr.editors.encoders import QUALITY_SETTINGS


@dataclass
class SilenceCutConfig:
    """Configuration for silence detection and removal."""

    threshold_db: float = -35.0
    min_duration: float = 0.5
    padding: float = 0.05


@dataclass
class Manifest:
    """Top-level job manifest."""

    input: Path
    output: Path
    version: str = "1"
    silence_cut: SilenceCutConfig = field(default_factory=SilenceCutConfig)
    quality: str = "medium"
    normalize_audio: bool = False
    use_hardware_encoder: bool = True
    threads: int | None = None

    def __post_init__(self) -> None:
        if self.quality not in QUALITY_SETTINGS:
            raise ValueError(
                f"Unknown quality preset {self.quality!r}; "
                f"expected one of {', '.join(QUALITY_SETTINGS)}"
            )
        if self.threads is not None and self.threads < 1:
            raise ValueError("threads must be at least 1")


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())

    if "input" not in data or "output" not in data:
        raise ValueError("Manifest must contain 'input' and 'output' fields")

    silence_cut = SilenceCutConfig(**data["silence_cut"]) if "silence_cut" in data else SilenceCutConfig()

    return Manifest(
        version=data.get("version", "1"),
        input=Path(data["input"]),
        output=Path(data["output"]),
        silence_cut=silence_cut,
        quality=data.get("quality", "medium"),
        normalize_audio=bool(data.get("normalize_audio", False)),
        use_hardware_encoder=bool(data.get("use_hardware_encoder", True)),
        threads=data.get("threads"),
    )
