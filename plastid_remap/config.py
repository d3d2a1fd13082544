"""Startup configuration: executable resolution and pre-flight checks."""

import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional

from plastid_remap.errors import (
    DependencyMissingError,
    InvalidOptionError,
    ToolNotFoundError,
    UnsupportedVersionError,
)

if TYPE_CHECKING:
    from plastid_remap.tools import ToolRunner

CORE_TOOLS = ["bwa", "samtools", "bedtools", "freebayes", "bgzip", "tabix", "bcftools", "java"]
ACCESSION_TOOLS = ["fastq-dump"]

POLISHER_ARCHIVE_VAR = "PILON_JAR"
CACHE_DIR_VAR = "SRA_CACHE_DIR"

MIN_BEDTOOLS_VERSION = (2, 20)
ALLOWED_POLISHER_OPTIONS = ("-Xmx", "-Xms")

_MEMORY_OPTION_RE = re.compile(r"^(-Xm[xs])(\d+)([kKmMgG]?)$")
_VERSION_RE = re.compile(r"v?(\d+)\.(\d+)(?:\.(\d+))?")


def override_variable(tool: str) -> str:
    """Name of the environment variable overriding the path of `tool`."""
    return tool.upper().replace("-", "_") + "_PATH"


@dataclass(frozen=True)
class ToolConfig:
    """Resolved executables plus the environment-provided locations."""

    tools: Dict[str, Path]
    polisher_archive: Optional[Path] = None
    cache_dir: Optional[Path] = None
    allowed_polisher_options: tuple = ALLOWED_POLISHER_OPTIONS

    @classmethod
    def from_environment(
        cls,
        tools: Iterable[str],
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ToolConfig":
        """Resolve every tool once, reporting all unresolved names together."""
        environ = os.environ if environ is None else environ
        resolved: Dict[str, Path] = {}
        missing: List[str] = []
        for tool in tools:
            override = environ.get(override_variable(tool))
            if override:
                if Path(override).is_file() and os.access(override, os.X_OK):
                    resolved[tool] = Path(override)
                    continue
                missing.append(f"{tool} ({override_variable(tool)}={override} is not executable)")
                continue
            found = shutil.which(tool, path=environ.get("PATH"))
            if found is None:
                missing.append(tool)
            else:
                resolved[tool] = Path(found)
        if missing:
            raise ToolNotFoundError(
                "Missing required executables: "
                + ", ".join(missing)
                + ". Install them or set the matching *_PATH variable."
            )

        archive = environ.get(POLISHER_ARCHIVE_VAR)
        cache_dir = environ.get(CACHE_DIR_VAR)
        return cls(
            tools=resolved,
            polisher_archive=Path(archive) if archive else None,
            cache_dir=Path(cache_dir) if cache_dir else None,
        )

    def executable(self, tool: str) -> Path:
        """Path resolved at startup for `tool`."""
        try:
            return self.tools[tool]
        except KeyError:
            raise ToolNotFoundError(f"Executable for {tool} was not resolved at startup.") from None


def check_polisher_archive(config: ToolConfig) -> Path:
    """Ensure the Pilon jar pointed at by PILON_JAR exists."""
    if config.polisher_archive is None:
        raise DependencyMissingError(
            f"{POLISHER_ARCHIVE_VAR} is not set; point it at the Pilon jar file."
        )
    if not config.polisher_archive.is_file():
        raise DependencyMissingError(
            f"Pilon jar not found at {config.polisher_archive} ({POLISHER_ARCHIVE_VAR})."
        )
    return config.polisher_archive


def validate_polisher_options(
    options: Optional[str],
    allowed: Iterable[str] = ALLOWED_POLISHER_OPTIONS,
) -> List[str]:
    """Split the JVM option string and reject anything that is not memory sizing."""
    if not options:
        return []
    allowed = set(allowed)
    tokens = options.split()
    for token in tokens:
        match = _MEMORY_OPTION_RE.match(token)
        if match is None or match.group(1) not in allowed:
            raise InvalidOptionError(
                f"Polisher option {token!r} is not permitted; "
                f"only memory sizing ({', '.join(sorted(allowed))}<size>) is allowed."
            )
    return tokens


def parse_version(text: str) -> tuple:
    """Return (major, minor) from a version banner such as 'bedtools v2.30.0'."""
    match = _VERSION_RE.search(text)
    if match is None:
        raise UnsupportedVersionError(f"Could not parse a version from {text.strip()!r}.")
    return int(match.group(1)), int(match.group(2))


def check_bedtools_version(runner: "ToolRunner", minimum: tuple = MIN_BEDTOOLS_VERSION) -> tuple:
    """Gate on the bedtools version; genomecov -bga needs >= 2.20."""
    _, output = runner.invoke("bedtools", ["--version"])
    version = parse_version(output)
    if version < minimum:
        raise UnsupportedVersionError(
            "bedtools %d.%d found; version >= %d.%d.0 is required."
            % (version + minimum)
        )
    return version
