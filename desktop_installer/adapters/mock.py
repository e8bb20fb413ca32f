"""
Mock adapter — test double for collaborator calls.

Registered under the name of the adapter it replaces ("command",
"filesystem"). Succeeds by default; individual action ids can be
scripted to fail or return a custom receipt.
"""

from __future__ import annotations

from collections.abc import Callable

from desktop_installer.adapters.base import Adapter, ExecutionContext
from desktop_installer.core.models.action import Receipt


class MockAdapter(Adapter):
    """Universal mock adapter for testing.

    Custom responses are matched on the exact action id first, then on
    the id prefix before the first ``:`` (so ``"build"`` matches
    ``"build:collaborator"``).
    """

    def __init__(
        self,
        adapter_name: str = "command",
        available: bool = True,
        default_output: str = "[mock] executed",
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._responses: dict[str, Receipt] = {}
        self._side_effects: dict[str, Callable[[ExecutionContext], None]] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def called_ids(self) -> list[str]:
        return [ctx.action.id for ctx in self._call_log]

    def is_available(self) -> bool:
        return self._available

    def set_response(self, action_id: str, receipt: Receipt) -> None:
        """Set a custom response for an action id (or id prefix)."""
        self._responses[action_id] = receipt

    def set_failure(self, action_id: str, error: str = "Mock failure", return_code: int = 1) -> None:
        """Configure an action id (or id prefix) to fail."""
        self._responses[action_id] = Receipt.failure(
            adapter=self._name,
            action_id=action_id,
            error=error,
            return_code=return_code,
        )

    def set_output(self, action_id: str, output: str) -> None:
        """Configure an action id (or id prefix) to succeed with output."""
        self._responses[action_id] = Receipt.success(
            adapter=self._name,
            action_id=action_id,
            output=output,
            return_code=0,
        )

    def set_side_effect(self, action_id: str, effect: Callable[[ExecutionContext], None]) -> None:
        """Run ``effect(context)`` when the action id (or id prefix) executes."""
        self._side_effects[action_id] = effect

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)

        action_id = context.action.id
        prefix = action_id.split(":", 1)[0]
        effect = self._side_effects.get(action_id) or self._side_effects.get(prefix)
        if effect is not None:
            effect(context)

        response = self._responses.get(action_id) or self._responses.get(prefix)
        if response is not None:
            return response.model_copy(update={"action_id": action_id})

        return Receipt.success(
            adapter=self._name,
            action_id=action_id,
            output=self._default_output,
            return_code=0,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._responses.clear()
        self._side_effects.clear()
