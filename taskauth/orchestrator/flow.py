"""
TASKAUTH - Auth Flow

Une opération mutante = une liste énumérable d'étapes nommées,
exécutées dans UNE transaction du dépôt (point de rollback unique).
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..logging import StructuredLogger
from ..storage.interfaces import IAuthRepository


class FlowState:
    """
    État partagé entre les étapes d'un flux.

    Example:
        state = FlowState(identity_id="u-1", password="...")
        state["password_hash"] = "$2b$..."
    """

    def __init__(self, **values: Any):
        self._values: Dict[str, Any] = dict(values)
        self.completed: List[str] = []
        self.failed_step: Optional[str] = None

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._values[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)


StepFn = Callable[[FlowState], Awaitable[None]]


@dataclass(frozen=True)
class Step:
    """Étape nommée d'un flux."""

    name: str
    run: StepFn


class AuthFlow:
    """
    Exécuteur de flux.

    Toute exception levée par une étape annule les écritures de toutes
    les étapes précédentes puis se propage (nom de l'étape dans
    state.failed_step).
    """

    def __init__(
        self,
        name: str,
        steps: Sequence[Step],
        repository: IAuthRepository,
        logger: Optional[StructuredLogger] = None,
    ):
        if not steps:
            raise ValueError(f"Flow '{name}' has no steps")
        names = [step.name for step in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Flow '{name}' has duplicate step names")

        self.name = name
        self._steps = list(steps)
        self._repository = repository
        self._logger = logger or StructuredLogger("taskauth.orchestrator.flow")

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    def step(self, name: str) -> Step:
        for step in self._steps:
            if step.name == name:
                return step
        raise KeyError(name)

    async def execute(self, state: Optional[FlowState] = None) -> FlowState:
        state = state if state is not None else FlowState()

        async with self._repository.transaction():
            for step in self._steps:
                try:
                    await step.run(state)
                except Exception:
                    state.failed_step = step.name
                    self._logger.debug(
                        "flow_step_failed",
                        flow=self.name,
                        step=step.name,
                        completed=list(state.completed),
                    )
                    raise
                state.completed.append(step.name)

        return state
