"""Abstract operator entry point.

Hosts the operator runtime inside kopf: the startup handler starts every
operator registered with the default registry, the cleanup handler stops
them, and the probe reports their watcher states. Register operators before
calling :func:`run`.
"""

import logging

import kopf
from pythonjsonlogger.json import JsonFormatter

from abstract_operator import __version__
from abstract_operator.bootstrap import OperatorRuntime
from abstract_operator.config import OperatorSettings
from abstract_operator.controllers.registry import OperatorRegistry, registry
from abstract_operator.errors import OperatorError
from abstract_operator.utils.metrics import OPERATOR_INFO, start_metrics_server

logger = logging.getLogger(__name__)

RUNTIME_KEY = "runtime"


def _json_default(obj: object) -> str:
    """Fallback serializer for objects that json can't handle (e.g. kopf settings)."""
    return str(obj)


def configure_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging for all operator output."""
    handler = logging.StreamHandler()
    handler.setFormatter(
        JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
            json_default=_json_default,
        )
    )
    logging.root.handlers = [handler]
    logging.root.setLevel(level)


def register_info(settings: OperatorSettings) -> None:
    """Publish the runtime configuration as the ``operator_info`` gauge."""
    OPERATOR_INFO.labels(
        version=__version__,
        crd=str(settings.crd).lower(),
        watch_namespace=settings.watch_namespace,
        reconciliation_interval_s=str(settings.full_reconciliation_interval_s),
    ).set(1)


async def start_runtime(
    memo: kopf.Memo,
    operators: OperatorRegistry = registry,
    settings: OperatorSettings | None = None,
) -> OperatorRuntime:
    """Start the runtime and keep it in the kopf memo."""
    settings = settings or OperatorSettings()
    if settings.metrics:
        register_info(settings)
        start_metrics_server(settings.metrics_port)

    runtime = OperatorRuntime(operators, settings)
    memo[RUNTIME_KEY] = runtime
    await runtime.start()
    return runtime


@kopf.on.startup()
async def startup_handler(memo: kopf.Memo, logger: kopf.Logger, **_: object) -> None:
    """Handle operator startup."""
    logger.info(f"Operator starting up in version {__version__}")
    try:
        runtime = await start_runtime(memo)
    except OperatorError as e:
        started: OperatorRuntime | None = memo.get(RUNTIME_KEY)
        if started is not None:
            await started.stop()
        raise kopf.PermanentError(
            f"Unable to start operator for one or more namespaces: {e}"
        ) from e
    logger.info(f"{len(runtime.operators)} operator(s) running")


@kopf.on.probe(id="operators")
def probe_operators(memo: kopf.Memo, **_: object) -> dict[str, str]:
    """Report the watcher state of every running operator."""
    runtime: OperatorRuntime | None = memo.get(RUNTIME_KEY)
    if runtime is None:
        return {}
    return runtime.status()


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, logger: kopf.Logger, **_: object) -> None:
    """Handle operator cleanup."""
    logger.info("Operator shutting down")
    runtime: OperatorRuntime | None = memo.get(RUNTIME_KEY)
    if runtime is not None:
        await runtime.stop()


def run() -> None:
    """Run the operators in a standalone kopf process."""
    settings = OperatorSettings()
    configure_logging(settings.log_level)
    kopf.run(
        standalone=True,
        clusterwide=True,
        liveness_endpoint="http://0.0.0.0:8080/healthz",
    )
