"""Exception hierarchy for cami."""

from __future__ import annotations


class CamiError(Exception):
    """Base exception for all cami errors."""


# -- Agent files --


class ParseError(CamiError):
    """An agent file has missing or malformed frontmatter."""


class NoFrontmatterError(ParseError):
    """Frontmatter delimiters are absent from a document being hashed."""


# -- Lookups and configuration --


class NotFoundError(CamiError):
    """A source, location, manifest or path does not exist."""


class ConflictError(CamiError):
    """A name or path is already registered."""


class ConfigError(CamiError):
    """The configuration file could not be read, parsed or written."""


class ManifestError(CamiError):
    """A manifest could not be read, parsed or written."""


# -- Collaborators --


class GitError(CamiError):
    """A git subprocess exited non-zero or could not be started."""


class BackupError(CamiError):
    """A backup could not be created or restored."""


class NormalizationNotImplementedError(CamiError, NotImplementedError):
    """The requested normalization level has no implementation."""


class NormalizationError(CamiError):
    """A normalization failed after its backup was taken.

    ``backup_path`` points at the untouched copy of the target.
    """

    def __init__(self, message: str, backup_path: str = "") -> None:
        super().__init__(message)
        self.backup_path = backup_path
