"""Litestar plugin for continuation integration.

This module provides the ContinuationsPlugin for wiring the action registry,
continuation resolver and workflow engine into Litestar applications.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.plugins import InitPluginProtocol

from litestar_continuations.actions.registry import ActionRegistry
from litestar_continuations.actions.resolver import ContinuationResolver
from litestar_continuations.config import ContinuationSettings
from litestar_continuations.engine.workflow import WorkflowEngine
from litestar_continuations.store.file import FileCheckpointStore

if TYPE_CHECKING:
    from litestar.config.app import AppConfig

    from litestar_continuations.store.base import CheckpointStore
    from litestar_continuations.tokens.codec import TokenCodec

__all__ = ["ContinuationsPlugin", "ContinuationsPluginConfig"]


@dataclass
class ContinuationsPluginConfig:
    """Configuration for the ContinuationsPlugin.

    Attributes:
        registry: Optional pre-populated ActionRegistry. If not provided,
            an empty one is created.
        codec: Optional pre-configured TokenCodec. If not provided, one is
            built from ``settings``.
        resolver: Optional pre-configured ContinuationResolver.
        store: Optional CheckpointStore shared by every request. Defaults to a
            FileCheckpointStore under ``settings.workflow_dir``. A database store
            must be built with ``session_maker`` so each operation gets its own session.
        engine: Optional pre-configured WorkflowEngine.
        settings: Settings used for anything not provided explicitly. Read
            from the environment when omitted.
        event_bus: Optional event bus handed to the engine.
        freeze_registry: Freeze the registry once the app is initialized.
        dependency_key_registry: DI key of the ActionRegistry.
        dependency_key_resolver: DI key of the ContinuationResolver.
        dependency_key_engine: DI key of the WorkflowEngine.
        enable_api: Whether to enable the REST API endpoints. Defaults to True.
        api_path_prefix: URL path prefix for all API endpoints.
        api_guards: List of Litestar guards to apply to all API endpoints.
        api_tags: OpenAPI tags to apply to the API endpoints.
        include_api_in_schema: Whether to include API endpoints in OpenAPI schema.
    """

    registry: ActionRegistry | None = None
    codec: TokenCodec | None = None
    resolver: ContinuationResolver | None = None
    store: CheckpointStore | None = None
    engine: WorkflowEngine | None = None
    settings: ContinuationSettings | None = None
    event_bus: Any | None = None
    freeze_registry: bool = True
    dependency_key_registry: str = "action_registry"
    dependency_key_resolver: str = "continuation_resolver"
    dependency_key_engine: str = "workflow_engine"
    enable_api: bool = True
    api_path_prefix: str = "/continuations"
    api_guards: list[Any] = field(default_factory=list)
    api_tags: list[str] = field(default_factory=lambda: ["Continuations"])
    include_api_in_schema: bool = True


class ContinuationsPlugin(InitPluginProtocol):
    """Litestar plugin for continuation tokens and checkpointed workflows.

    Example:
        Basic usage::

            from litestar import Litestar
            from litestar_continuations import ActionRegistry, ContinuationsPlugin, ContinuationsPluginConfig

            registry = ActionRegistry()


            @registry.action("search", "find")
            def find(parameters):
                return {"matches": []}


            app = Litestar(plugins=[ContinuationsPlugin(config=ContinuationsPluginConfig(registry=registry))])

        Using in a route handler::

            @post("/search")
            async def search(continuation_resolver: ContinuationResolver) -> dict:
                envelope = await continuation_resolver.invoke("search", "find", {"term": "foo"})
                return envelope.to_dict()
    """

    __slots__ = ("_config", "_engine", "_registry", "_resolver")

    def __init__(self, config: ContinuationsPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or ContinuationsPluginConfig()
        self._registry: ActionRegistry | None = None
        self._resolver: ContinuationResolver | None = None
        self._engine: WorkflowEngine | None = None

    @property
    def registry(self) -> ActionRegistry:
        """Get the action registry.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._registry is None:
            msg = "ContinuationsPlugin has not been initialized. Access registry after app startup."
            raise RuntimeError(msg)
        return self._registry

    @property
    def resolver(self) -> ContinuationResolver:
        """Get the continuation resolver.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._resolver is None:
            msg = "ContinuationsPlugin has not been initialized. Access resolver after app startup."
            raise RuntimeError(msg)
        return self._resolver

    @property
    def engine(self) -> WorkflowEngine:
        """Get the workflow engine.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._engine is None:
            msg = "ContinuationsPlugin has not been initialized. Access engine after app startup."
            raise RuntimeError(msg)
        return self._engine

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        This method:
        1. Creates or uses the provided registry, resolver and engine
        2. Freezes the registry unless disabled
        3. Adds dependency providers to the app config
        4. Optionally registers REST API controllers and exception handlers

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.

        Raises:
            InsecureKeyError: If a codec has to be built, a secret is required and none is configured.
        """
        config = self._config
        settings = config.settings

        def get_settings() -> ContinuationSettings:
            nonlocal settings
            if settings is None:
                settings = ContinuationSettings()
            return settings

        if config.resolver is not None:
            self._resolver = config.resolver
            self._registry = config.resolver.registry
        else:
            self._registry = config.registry or ActionRegistry()
            codec = config.codec or get_settings().build_codec()
            self._resolver = ContinuationResolver(codec, self._registry)

        if config.engine is not None:
            self._engine = config.engine
        else:
            store = config.store or FileCheckpointStore(get_settings().workflow_dir)
            engine_options: dict[str, Any] = {}
            if settings is not None:
                engine_options = {"manifest_ttl": settings.manifest_ttl_delta, "retention": settings.retention_delta}
            self._engine = WorkflowEngine(self._resolver, store, event_bus=config.event_bus, **engine_options)

        if config.freeze_registry:
            self._registry.freeze()

        # Create dependency providers
        def provide_registry() -> ActionRegistry:
            return self._registry  # type: ignore[return-value]

        def provide_resolver() -> ContinuationResolver:
            return self._resolver  # type: ignore[return-value]

        def provide_engine() -> WorkflowEngine:
            return self._engine  # type: ignore[return-value]

        app_config.dependencies[config.dependency_key_registry] = Provide(provide_registry, sync_to_thread=False)
        app_config.dependencies[config.dependency_key_resolver] = Provide(provide_resolver, sync_to_thread=False)
        app_config.dependencies[config.dependency_key_engine] = Provide(provide_engine, sync_to_thread=False)

        if config.enable_api:
            from litestar import Router

            from litestar_continuations.web.controllers import (
                ActionController,
                ContinuationController,
                WorkflowController,
            )
            from litestar_continuations.web.exceptions import workflow_exception_handlers

            router = Router(
                path=config.api_path_prefix,
                route_handlers=[ActionController, ContinuationController, WorkflowController],
                guards=config.api_guards,
                tags=config.api_tags,
                include_in_schema=config.include_api_in_schema,
            )
            app_config.route_handlers.append(router)

            for exc_type, handler in workflow_exception_handlers().items():
                app_config.exception_handlers.setdefault(exc_type, handler)

        return app_config
