"""Shader manifest writer.

The manifest tells the host application which SPIR-V file holds each entry
point:

    [
      {"entry_point": "main_vs", "source_path": "shaders/shader.spv"},
      {"entry_point": "main_fs", "source_path": "shaders/shader.spv"}
    ]

Entries keep the order they were compiled in.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple

from ..config.build_config import DEFAULT_MANIFEST_FILE
from ..errors import OutputWriteError
from ..fs_utils import atomic_write_text
from .compile_driver import ShaderOutput

MANIFEST_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class ShaderManifest:
    """Ordered (entry_point, source_path) pairs."""

    entries: Tuple[Tuple[str, str], ...]
    schema_version: int = MANIFEST_SCHEMA_VERSION

    @classmethod
    def from_outputs(cls, outputs: Sequence[ShaderOutput]) -> "ShaderManifest":
        return cls(tuple((o.entry_point, o.source_path) for o in outputs))

    def to_json(self) -> str:
        records = [
            {"entry_point": entry_point, "source_path": source_path}
            for entry_point, source_path in self.entries
        ]
        return json.dumps(records, indent=2)

    def __len__(self) -> int:
        return len(self.entries)


class ManifestWriter:
    """Writes the shader manifest atomically."""

    def __init__(self, manifest_file: str = DEFAULT_MANIFEST_FILE):
        self.manifest_file = manifest_file

    def write(self, output_dir: Path, entries: Sequence[ShaderOutput]) -> Path:
        """Write the manifest into output_dir.

        Args:
            output_dir: Directory receiving the manifest
            entries: Compiled entry points, in order

        Returns:
            Path to the manifest file

        Raises:
            OutputWriteError: If the manifest cannot be written
        """
        manifest = ShaderManifest.from_outputs(entries)
        output_dir = Path(output_dir)
        manifest_path = output_dir / self.manifest_file

        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            atomic_write_text(manifest_path, manifest.to_json())
        except OSError as e:
            raise OutputWriteError(f"Could not write shader manifest {manifest_path}: {e}") from e

        logging.info(f"Wrote manifest with {len(manifest)} entries to {manifest_path}")
        return manifest_path

    @staticmethod
    def read(manifest_path: Path) -> List[Tuple[str, str]]:
        """Read a manifest back as (entry_point, source_path) pairs."""
        records = json.loads(Path(manifest_path).read_text(encoding="utf-8"))
        return [(record["entry_point"], record["source_path"]) for record in records]
