"""
Tests unitaires AuthFlow

Étapes nommées exécutées dans une transaction unique.
"""

import pytest

from taskauth.orchestrator import AuthFlow, FlowState, Step


def _recorder(calls, name, fail=False):
    async def run(state: FlowState) -> None:
        calls.append(name)
        if fail:
            raise RuntimeError(f"{name} failed")
        state[name] = True

    return run


class TestFlowDefinition:
    def test_empty_flow_rejected(self, repository):
        with pytest.raises(ValueError):
            AuthFlow("empty", [], repository)

    def test_duplicate_step_names_rejected(self, repository):
        calls = []
        with pytest.raises(ValueError):
            AuthFlow("dup", [Step("a", _recorder(calls, "a")), Step("a", _recorder(calls, "a"))], repository)

    def test_steps_enumerable(self, repository):
        calls = []
        flow = AuthFlow("f", [Step("a", _recorder(calls, "a")), Step("b", _recorder(calls, "b"))], repository)

        assert flow.step_names == ["a", "b"]
        assert flow.step("b").name == "b"
        with pytest.raises(KeyError):
            flow.step("c")


class TestFlowExecution:
    @pytest.mark.asyncio
    async def test_steps_run_in_order(self, repository):
        calls = []
        flow = AuthFlow("f", [Step(n, _recorder(calls, n)) for n in ("a", "b", "c")], repository)

        state = await flow.execute(FlowState(seed=1))

        assert calls == ["a", "b", "c"]
        assert state.completed == ["a", "b", "c"]
        assert state["seed"] == 1 and state["c"] is True
        assert repository.commit_count == 1

    @pytest.mark.asyncio
    async def test_failure_stops_and_rolls_back(self, repository):
        """Échec d'une étape → écritures des étapes précédentes annulées."""
        calls = []

        async def create(state: FlowState) -> None:
            state["identity"] = await repository.create_identity("alice")

        flow = AuthFlow(
            "f",
            [Step("create", create), Step("explode", _recorder(calls, "explode", fail=True)), Step("never", _recorder(calls, "never"))],
            repository,
        )
        state = FlowState()

        with pytest.raises(RuntimeError):
            await flow.execute(state)

        assert calls == ["explode"]
        assert state.failed_step == "explode"
        assert state.completed == ["create"]
        assert await repository.find_identity_by_username("alice") is None
        assert repository.rollback_count == 1

    def test_state_access(self):
        state = FlowState(a=1)
        state["b"] = 2

        assert "a" in state and "b" in state
        assert state.get("c", 3) == 3
        with pytest.raises(KeyError):
            state["c"]
