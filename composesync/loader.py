"""
Unit definition loader for composesync.
Turns a unit definition file into the descriptor handed to docker compose.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

from composesync.errors import DescriptorLoadError
from composesync.identity import unit_name


@dataclass
class UnitDefinition:
    """
    A unit definition file found in a resolved source.
    """
    path: Path
    name: str
    source_id: str

    @classmethod
    def from_path(cls, path: Path, source_id: str) -> "UnitDefinition":
        return cls(path=Path(path), name=unit_name(path), source_id=source_id)


class DescriptorLoader:
    """
    Loader for YAML unit definitions.

    A definition is plain data: a compose document (services, volumes,
    networks, ...). Its content is passed through as the descriptor without
    schema validation.
    """

    @staticmethod
    def load(definition_path: Path) -> Dict[str, Any]:
        """
        Parse a unit definition file into a descriptor.

        Args:
            definition_path: Path to the unit definition

        Returns:
            Descriptor mapping

        Raises:
            DescriptorLoadError: If the file can't be read, isn't valid YAML,
                or doesn't hold a non-empty mapping
        """
        try:
            with open(definition_path, "r") as f:
                content = yaml.safe_load(f)
        except OSError as e:
            raise DescriptorLoadError(str(definition_path), str(e)) from e
        except yaml.YAMLError as e:
            raise DescriptorLoadError(str(definition_path), f"invalid YAML: {e}") from e

        if content is None:
            raise DescriptorLoadError(str(definition_path), "definition is empty")
        if not isinstance(content, dict):
            raise DescriptorLoadError(
                str(definition_path),
                f"definition must be a mapping, got {type(content).__name__}",
            )
        return content
