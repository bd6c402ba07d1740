"""Dependency policy engine service entry point.

Initializes the FastAPI application with:
- In-memory policy, violation and evaluation-history repositories
- The policy registry and bundled template catalog
- The enforcement orchestrator and compliance service
- Structured logging and the log-line event publisher
- Error mapping from the engine exception taxonomy to HTTP status codes
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dependency_policy_engine import __version__
from dependency_policy_engine.adapters.publishers import LoggingEventPublisher
from dependency_policy_engine.adapters.repositories import (
    InMemoryEvaluationHistoryRepository,
    InMemoryPolicyRepository,
    InMemoryViolationRepository,
)
from dependency_policy_engine.api.router import router
from dependency_policy_engine.core.guard import ScheduleRunGuard
from dependency_policy_engine.core.interfaces import IEventPublisher
from dependency_policy_engine.core.services import ComplianceService
from dependency_policy_engine.engine.actions import ActionExecutor
from dependency_policy_engine.engine.evaluator import DependencyEvaluator
from dependency_policy_engine.engine.orchestrator import EnforcementOrchestrator
from dependency_policy_engine.engine.registry import PolicyRegistry
from dependency_policy_engine.engine.rules import RuleEvaluator
from dependency_policy_engine.engine.templates import TemplateCatalog
from dependency_policy_engine.errors import (
    NotFoundError,
    PolicyValidationError,
    ScheduleAlreadyRunningError,
)
from dependency_policy_engine.observability import configure_logging, get_logger
from dependency_policy_engine.settings import Settings

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle.

    On startup, sweeps exceptions that expired while the service was down.

    Args:
        app: The FastAPI application instance.

    Yields:
        None
    """
    settings: Settings = app.state.settings
    logger.info("Dependency policy engine starting", service=settings.service_name, version=__version__)

    expired = await app.state.registry.expire_exceptions()
    logger.info(
        "Dependency policy engine startup complete",
        templates=len(app.state.registry.list_templates()),
        expired_exceptions=expired,
    )

    yield

    logger.info("Dependency policy engine shutdown complete")


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(PolicyValidationError)
    async def _invalid(request: Request, exc: PolicyValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.message, "field": exc.field})

    @app.exception_handler(ScheduleAlreadyRunningError)
    async def _already_running(request: Request, exc: ScheduleAlreadyRunningError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})


def create_app(
    settings: Settings | None = None,
    publisher: IEventPublisher | None = None,
) -> FastAPI:
    """Build the FastAPI application and wire every component.

    Args:
        settings: Service settings. Read from the environment when omitted.
        publisher: Event publisher. Defaults to the structured-log publisher.

    Returns:
        The configured FastAPI application.
    """
    settings = settings or Settings()
    configure_logging(settings.log_level, json_output=settings.log_json)
    publisher = publisher or LoggingEventPublisher()

    policy_repository = InMemoryPolicyRepository()
    violation_repository = InMemoryViolationRepository()
    history_repository = InMemoryEvaluationHistoryRepository()

    registry = PolicyRegistry(
        repository=policy_repository,
        publisher=publisher,
        templates=TemplateCatalog(settings.template_dir),
        review_interval_days=settings.review_interval_days,
    )
    orchestrator = EnforcementOrchestrator(
        policy_repository=policy_repository,
        dependency_evaluator=DependencyEvaluator(
            rule_evaluator=RuleEvaluator(default_mode=settings.default_condition_mode),
        ),
        action_executor=ActionExecutor(publisher),
        publisher=publisher,
        history_repository=history_repository,
        max_concurrency=settings.max_concurrency,
        deadline_seconds=settings.evaluation_deadline_seconds,
        execute_warning_actions=settings.execute_warning_actions,
    )
    compliance_service = ComplianceService(
        orchestrator=orchestrator,
        policy_repository=policy_repository,
        violation_repository=violation_repository,
        history_repository=history_repository,
        publisher=publisher,
        guard=ScheduleRunGuard(),
    )

    app = FastAPI(title=settings.service_name, version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.publisher = publisher
    app.state.registry = registry
    app.state.compliance_service = compliance_service

    _register_exception_handlers(app)
    app.include_router(router, prefix="/api/v1")

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.service_name}

    return app


app: FastAPI = create_app()
