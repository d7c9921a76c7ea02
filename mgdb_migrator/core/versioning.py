"""Version schemes used to order migrations.

A migrator commits to one scheme for its lifetime:

    semver   - strict "major.minor.patch" strings, zero is "0.0.0"
    integer  - non-negative integers, zero is 0

The zero value is reserved for the pristine state and can never be used by
a registered migration.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, Union

from mgdb_migrator.core.errors import ConfigurationError, ValidationError

Version = Union[str, int]

# Target sentinel resolving to the highest registered version
LATEST = "latest"

_SEMVER_RE = re.compile(r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)$")
_INTEGER_RE = re.compile(r"^(0|[1-9]\d*)$")


class VersionScheme(ABC):
    """Total order over one version encoding."""

    name: str = ""

    @property
    @abstractmethod
    def zero(self) -> Version:
        """The reserved lowest version."""

    @abstractmethod
    def normalize(self, value: Any) -> Version:
        """Return the canonical form of value.

        Raises:
            ValidationError: If value is not a valid version for this scheme
        """

    @abstractmethod
    def key(self, value: Version) -> tuple[int, ...]:
        """Sort key for an already normalized version."""

    def compare(self, a: Any, b: Any) -> int:
        """Three-way comparison returning -1, 0 or 1."""
        ka = self.key(self.normalize(a))
        kb = self.key(self.normalize(b))
        return (ka > kb) - (ka < kb)

    def is_zero(self, value: Any) -> bool:
        return self.compare(value, self.zero) == 0

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class SemVerScheme(VersionScheme):
    """Strict semantic versions ordered component by component."""

    name = "semver"

    @property
    def zero(self) -> str:
        return "0.0.0"

    def normalize(self, value: Any) -> str:
        if not isinstance(value, str) or not _SEMVER_RE.match(value):
            raise ValidationError(f"Invalid semver version: {value!r}")
        return value

    def key(self, value: Version) -> tuple[int, ...]:
        return tuple(int(part) for part in str(value).split("."))


class IntegerScheme(VersionScheme):
    """Sequential non-negative integers."""

    name = "integer"

    @property
    def zero(self) -> int:
        return 0

    def normalize(self, value: Any) -> int:
        # bool is an int subclass but never a version
        if isinstance(value, bool):
            raise ValidationError(f"Invalid integer version: {value!r}")
        if isinstance(value, int):
            if value < 0:
                raise ValidationError(f"Version must be non-negative: {value}")
            return value
        if isinstance(value, str) and _INTEGER_RE.match(value):
            return int(value)
        raise ValidationError(f"Invalid integer version: {value!r}")

    def key(self, value: Version) -> tuple[int, ...]:
        return (int(value),)


_SCHEMES: dict[str, type[VersionScheme]] = {
    SemVerScheme.name: SemVerScheme,
    IntegerScheme.name: IntegerScheme,
}


def get_scheme(scheme: str | VersionScheme) -> VersionScheme:
    """Resolve a scheme name ("semver" or "integer") to an instance."""
    if isinstance(scheme, VersionScheme):
        return scheme
    try:
        return _SCHEMES[scheme]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown version scheme {scheme!r}, expected one of {sorted(_SCHEMES)}"
        ) from None
