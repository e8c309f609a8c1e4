"""Aggregated state tracked while a response streams in."""

from __future__ import annotations

from dataclasses import dataclass, field

from chatrelay.core.errors import ProviderError


@dataclass(slots=True)
class TurnState:
    """Running totals for a single request/response turn."""

    fragments: list[str] = field(default_factory=list)
    model: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    error: ProviderError | None = None
    completed: bool = False

    @property
    def text(self) -> str:
        return "".join(self.fragments)

    @property
    def finished(self) -> bool:
        return self.completed or self.error is not None

    def snapshot(self) -> TurnState:
        """Return an independent copy of the current state."""

        return TurnState(
            fragments=list(self.fragments),
            model=self.model,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            error=self.error,
            completed=self.completed,
        )
