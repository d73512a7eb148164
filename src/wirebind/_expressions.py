from __future__ import annotations

import re
from typing import TYPE_CHECKING

from ._errors import ResolutionError


if TYPE_CHECKING:
    from collections.abc import Mapping


PLACEHOLDER = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


class PlaceholderEvaluator:
    """Replaces ``${key}`` and ``${key:default}`` placeholders from a mapping.

    A string made of a single placeholder evaluates to the mapped value itself,
    so non-string settings keep their type.
    """

    def __init__(self, values: Mapping[str, object], *, ignore_unresolvable: bool = False) -> None:
        self._values = values
        self._ignore_unresolvable = ignore_unresolvable

    def evaluate(self, text: str, owner: str) -> object:
        whole = PLACEHOLDER.fullmatch(text)
        if whole is not None:
            return self._lookup(whole, owner)

        return PLACEHOLDER.sub(lambda match: str(self._lookup(match, owner)), text)

    def _lookup(self, match: re.Match[str], owner: str) -> object:
        key, default = match.group(1), match.group(2)
        if key in self._values:
            return self._values[key]
        if default is not None:
            return default
        if self._ignore_unresolvable:
            return match.group(0)
        msg = f"Could not resolve placeholder '{key}' in value {match.string!r} of component '{owner}'"
        raise ResolutionError(msg)
