"""Persist the applied disk layout for the next installation stage.

The record is a flat ``KEY=value`` file (TARGET_DISK, EFI_PART, SWAP_PART,
ROOT_PART, ENCRYPT_ROOT). It is written to a temporary sibling and moved into
place with os.replace, so readers either see the previous complete record or
the new one, never a partial file. Every persist fully overwrites the
previous record.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from arch_installer.config.settings import DEFAULT_STAGE_CONFIG_PATH, parse_key_value_lines
from arch_installer.domain.models import AppliedLayout, StageConfig
from arch_installer.exceptions import StageConfigNotFoundError, StageConfigWriteError
from arch_installer.logging import LoggerFactory


log = LoggerFactory.for_system()


@dataclass
class StageConfigStore:
    path: Path = DEFAULT_STAGE_CONFIG_PATH

    def persist(self, layout: AppliedLayout) -> StageConfig:
        stage_config = layout.to_stage_config()
        content = "\n".join(stage_config.to_lines()) + "\n"
        temp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=str(self.path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_name, self.path)
            temp_name = None
        except OSError as error:
            raise StageConfigWriteError(self.path, str(error)) from error
        finally:
            if temp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(temp_name)
        log.info(f"Saved stage configuration to {self.path}")
        return stage_config

    def load(self) -> StageConfig:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as error:
            raise StageConfigNotFoundError(self.path) from error
        return StageConfig(parse_key_value_lines(text))

    def exists(self) -> bool:
        return self.path.is_file()
