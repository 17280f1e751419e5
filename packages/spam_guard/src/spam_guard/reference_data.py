"""Static reference tables used by the detectors.

The tables live in a JSON file so detection rules can be tuned without a
code change. The bundled file ships with the package; a replacement can be
pointed to with SPAM_GUARD_REFERENCE_DATA.
"""

import json
import re
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

from spam_guard.config import ConfigurationError

REQUIRED_KEYS = (
    "disposable_domains",
    "suspicious_domains",
    "suspicious_email_patterns",
    "keyboard_patterns",
    "spam_name_patterns",
    "common_first_names",
    "datacenter_ip_prefixes",
    "tor_exit_prefixes",
    "uncommon_trigrams",
    "free_email_domains",
)

_PATTERN_KEYS = ("suspicious_email_patterns", "spam_name_patterns")


@dataclass(frozen=True)
class ReferenceData:
    """Immutable lookup tables shared by all detectors."""

    disposable_domains: frozenset[str]
    suspicious_domains: frozenset[str]
    suspicious_email_patterns: tuple[re.Pattern, ...]
    keyboard_patterns: tuple[str, ...]
    spam_name_patterns: tuple[re.Pattern, ...]
    common_first_names: frozenset[str]
    datacenter_ip_prefixes: tuple[str, ...]
    tor_exit_prefixes: tuple[str, ...]
    uncommon_trigrams: tuple[str, ...]
    free_email_domains: frozenset[str]

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: str = "<dict>") -> "ReferenceData":
        """Validate and build reference data from a parsed mapping.

        Raises:
            ConfigurationError: If a table is missing, empty, not a list,
                or holds a regex that does not compile.
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"Reference data in {source} must be an object")

        tables: dict[str, list[str]] = {}
        for key in REQUIRED_KEYS:
            values = data.get(key)
            if values is None:
                raise ConfigurationError(f"Reference data {source} is missing '{key}'")
            if not isinstance(values, list) or not all(
                isinstance(v, str) for v in values
            ):
                raise ConfigurationError(
                    f"Reference data '{key}' in {source} must be a list of strings"
                )
            cleaned = [v.strip() for v in values if v.strip()]
            if not cleaned:
                raise ConfigurationError(f"Reference data '{key}' in {source} is empty")
            tables[key] = cleaned

        compiled: dict[str, tuple[re.Pattern, ...]] = {}
        for key in _PATTERN_KEYS:
            patterns = []
            for raw in tables[key]:
                try:
                    patterns.append(re.compile(raw, re.IGNORECASE))
                except re.error as e:
                    raise ConfigurationError(
                        f"Invalid regex in '{key}' ({source}): {raw!r}: {e}"
                    ) from e
            compiled[key] = tuple(patterns)

        def lowered(key: str) -> list[str]:
            return [v.lower() for v in tables[key]]

        return cls(
            disposable_domains=frozenset(lowered("disposable_domains")),
            suspicious_domains=frozenset(
                v.lstrip(".") for v in lowered("suspicious_domains")
            ),
            suspicious_email_patterns=compiled["suspicious_email_patterns"],
            # Dict keys keep first-seen order while dropping duplicates
            keyboard_patterns=tuple(dict.fromkeys(lowered("keyboard_patterns"))),
            spam_name_patterns=compiled["spam_name_patterns"],
            common_first_names=frozenset(lowered("common_first_names")),
            datacenter_ip_prefixes=tuple(dict.fromkeys(tables["datacenter_ip_prefixes"])),
            tor_exit_prefixes=tuple(dict.fromkeys(tables["tor_exit_prefixes"])),
            uncommon_trigrams=tuple(dict.fromkeys(lowered("uncommon_trigrams"))),
            free_email_domains=frozenset(lowered("free_email_domains")),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "ReferenceData":
        """Load reference data from a JSON file."""
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ConfigurationError(f"Cannot read reference data {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Reference data {path} is not valid JSON: {e}") from e
        return cls.from_dict(data, source=str(path))

    @classmethod
    def load_default(cls) -> "ReferenceData":
        """Load the reference data bundled with the package."""
        text = (
            resources.files("spam_guard")
            .joinpath("data/reference_data.json")
            .read_text(encoding="utf-8")
        )
        return cls.from_dict(json.loads(text), source="bundled reference_data.json")


_default: ReferenceData | None = None


def get_reference_data() -> ReferenceData:
    """Return the bundled reference data, loading it on first use."""
    global _default
    if _default is None:
        _default = ReferenceData.load_default()
    return _default
