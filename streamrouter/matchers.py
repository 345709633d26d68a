"""Record matchers.

A handler's matcher is either a type-guard style predicate or a validator
that parses the image into a richer value (typically a pydantic model). The
variant is decided once, at registration, by ``build_matcher``; dispatch only
ever sees the tagged ``Discriminator`` / ``Validator`` objects.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError

from streamrouter.errors import ConfigurationError


@dataclass(frozen=True)
class MatchOutcome:
    """Result of evaluating a matcher against one image."""

    matched: bool
    value: Any = None


_NO_MATCH = MatchOutcome(matched=False)


@dataclass(frozen=True)
class Discriminator:
    """Predicate matcher: the image passes through unchanged."""

    predicate: Callable[[Any], bool]

    def evaluate(self, value: Any) -> MatchOutcome:
        if self.predicate(value):
            return MatchOutcome(matched=True, value=value)
        return _NO_MATCH


@dataclass(frozen=True)
class Validator:
    """Parsing matcher: the handler receives the parsed value.

    ``parse`` signals a non-match by raising ``pydantic.ValidationError``,
    ``ValueError`` or ``TypeError``. Anything else propagates.
    """

    parse: Callable[[Any], Any]

    def evaluate(self, value: Any) -> MatchOutcome:
        try:
            return MatchOutcome(matched=True, value=self.parse(value))
        except (ValidationError, ValueError, TypeError):
            return _NO_MATCH


Matcher = Discriminator | Validator


def build_matcher(obj: Any) -> Matcher:
    """Tag *obj* as a ``Discriminator`` or ``Validator``.

    Accepts an existing variant, a pydantic model class, a ``TypeAdapter`` or
    any other callable (treated as a predicate).
    """
    if isinstance(obj, (Discriminator, Validator)):
        return obj
    if isinstance(obj, type) and issubclass(obj, BaseModel):
        return Validator(obj.model_validate)
    if isinstance(obj, TypeAdapter):
        return Validator(obj.validate_python)
    if callable(obj):
        return Discriminator(obj)
    raise ConfigurationError(
        f"Matcher must be a callable, a pydantic model or a TypeAdapter; got {type(obj).__name__}"
    )
