from __future__ import annotations

import threading
from typing import Any

import pytest

from stack_provisioner.core.state import ResourceInstance
from stack_provisioner.engine.errors import ProvisionError, ProvisionErrorKind
from stack_provisioner.engine.executor import ExecutableAction, HandlerExecutor, classify_error
from stack_provisioner.engine.handlers import ResourceHandler
from stack_provisioner.engine.registry import ResourceTypeRegistry
from stack_provisioner.engine.types import OperationKind
from stack_provisioner.resources import ResourceSchema


class _Retryable(Exception):
    retryable = True


class BlockingHandler(ResourceHandler):
    def __init__(self) -> None:
        self.release = threading.Event()
        self.raise_on_create: Exception | None = None

    def create(self, ctx: Any, desired: Any) -> dict[str, Any]:
        if self.raise_on_create is not None:
            raise self.raise_on_create
        if not self.release.wait(timeout=5):
            raise AssertionError("never released")
        return {"id": desired.address, "region": ctx.environment.region}

    def update(self, ctx: Any, desired: Any, prior: Any) -> dict[str, Any]:
        return {"id": prior.outputs["id"], "inputs": desired.inputs}

    def delete(self, ctx: Any, prior: Any) -> None:
        return None


@pytest.fixture
def handler() -> BlockingHandler:
    return BlockingHandler()


@pytest.fixture
def executor(handler: BlockingHandler):
    registry = ResourceTypeRegistry()
    registry.register("thing", ResourceSchema(), handler)
    with HandlerExecutor(registry) as ex:
        yield ex
    handler.release.set()


def _action(kind: OperationKind, prior: ResourceInstance | None = None) -> ExecutableAction:
    return ExecutableAction(
        key=f"{kind.value}:u.a",
        kind=kind,
        address="u.a",
        unit="u",
        resource_id="a",
        resource_type="thing",
        inputs={"size": 1},
        prior=prior,
    )


def _prior() -> ResourceInstance:
    return ResourceInstance(
        address="u.a", unit="u", resource_id="a", resource_type="thing", outputs={"id": "x"}
    )


class TestClassifyError:
    @pytest.mark.parametrize(
        ("exc", "kind"),
        [
            (ProvisionError(ProvisionErrorKind.CONFLICT, "taken"), ProvisionErrorKind.CONFLICT),
            (TimeoutError(), ProvisionErrorKind.TIMEOUT),
            (ConnectionResetError(), ProvisionErrorKind.TRANSIENT),
            (_Retryable(), ProvisionErrorKind.TRANSIENT),
            (KeyError("x"), ProvisionErrorKind.FATAL),
        ],
    )
    def test_kinds(self, exc: BaseException, kind: ProvisionErrorKind) -> None:
        assert classify_error(exc) is kind


class TestHandlerExecutor:
    def test_create_returns_outputs(
        self, executor: HandlerExecutor, handler: BlockingHandler
    ) -> None:
        handler.release.set()
        assert executor.execute(_action(OperationKind.CREATE), timeout=5) == {
            "id": "u.a",
            "region": None,
        }

    def test_update_passes_resolved_inputs(self, executor: HandlerExecutor) -> None:
        outputs = executor.execute(_action(OperationKind.UPDATE, _prior()), timeout=5)
        assert outputs == {"id": "x", "inputs": {"size": 1}}

    def test_delete_returns_nothing(self, executor: HandlerExecutor) -> None:
        assert executor.execute(_action(OperationKind.DELETE, _prior()), timeout=5) == {}

    def test_update_without_prior_is_fatal(self, executor: HandlerExecutor) -> None:
        with pytest.raises(ProvisionError) as exc:
            executor.execute(_action(OperationKind.UPDATE), timeout=5)
        assert exc.value.kind is ProvisionErrorKind.FATAL
        assert exc.value.address == "u.a"

    def test_slow_call_times_out(self, executor: HandlerExecutor) -> None:
        with pytest.raises(ProvisionError) as exc:
            executor.execute(_action(OperationKind.CREATE), timeout=0.05)
        assert exc.value.kind is ProvisionErrorKind.TIMEOUT
        assert "did not finish within 0.05s" in exc.value.message

    def test_handler_error_gets_address(
        self, executor: HandlerExecutor, handler: BlockingHandler
    ) -> None:
        handler.raise_on_create = ProvisionError(ProvisionErrorKind.CONFLICT, "name taken")
        with pytest.raises(ProvisionError) as exc:
            executor.execute(_action(OperationKind.CREATE), timeout=5)
        assert exc.value.kind is ProvisionErrorKind.CONFLICT
        assert exc.value.address == "u.a"
        assert str(exc.value) == "u.a: [conflict] name taken"

    def test_plain_exception_is_classified(
        self, executor: HandlerExecutor, handler: BlockingHandler
    ) -> None:
        handler.raise_on_create = ConnectionError("reset by peer")
        with pytest.raises(ProvisionError) as exc:
            executor.execute(_action(OperationKind.CREATE), timeout=5)
        assert exc.value.kind is ProvisionErrorKind.TRANSIENT
        assert exc.value.message == "reset by peer"

    def test_abandoned_call_does_not_hold_up_the_next(
        self, executor: HandlerExecutor, handler: BlockingHandler
    ) -> None:
        with pytest.raises(ProvisionError):
            executor.execute(_action(OperationKind.CREATE), timeout=0.05)
        outputs = executor.execute(_action(OperationKind.UPDATE, _prior()), timeout=0.5)
        assert outputs == {"id": "x", "inputs": {"size": 1}}

    def test_closed_executor_refuses_work(self, handler: BlockingHandler) -> None:
        registry = ResourceTypeRegistry()
        registry.register("thing", ResourceSchema(), handler)
        executor = HandlerExecutor(registry)
        executor.close()
        with pytest.raises(RuntimeError, match="executor is closed"):
            executor.execute(_action(OperationKind.DELETE, _prior()), timeout=1)
