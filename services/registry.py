"""
Service Registry with lazy loading
Factory registration, dependency resolution and lifecycle management
"""
from typing import Dict, Any, Callable, Optional, Set, List
from enum import Enum
import threading
import logging

logger = logging.getLogger(__name__)


class ServiceLifecycle(Enum):
    """Service lifecycle management options"""
    SINGLETON = "singleton"  # Single instance per application
    TRANSIENT = "transient"  # New instance per get()
    SCOPED = "scoped"        # Single instance per scope id


class ServiceDescriptor:
    """Describes a service registration"""

    def __init__(
        self,
        name: str,
        factory: Optional[Callable] = None,
        instance: Optional[Any] = None,
        lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
        dependencies: Optional[List[str]] = None
    ):
        self.name = name
        self.factory = factory
        self.instance = instance
        self.lifecycle = lifecycle
        self.dependencies = dependencies or []
        self.lock = threading.Lock()


class ServiceRegistry:
    """
    Registry for the autopilot services.

    Factories receive their declared dependencies as keyword arguments.
    Singletons are created once per application. Celery tasks share the
    worker's application, so in-process state such as the coordinator's
    in-flight steps survives between periodic runs in one worker process.
    """

    def __init__(self):
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        self._scoped_instances: Dict[str, Dict[str, Any]] = {}
        self._thread_local = threading.local()
        self._lock = threading.Lock()

    def register(self, name: str, service: Any) -> None:
        """Register a pre-built instance as a singleton."""
        if service is None:
            raise ValueError(f"Service instance must be provided for '{name}'")
        with self._lock:
            self._descriptors[name] = ServiceDescriptor(name=name, instance=service)

    def register_factory(
        self,
        name: str,
        factory: Callable,
        lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
        dependencies: Optional[List[str]] = None
    ) -> None:
        """
        Register a factory function for lazy service instantiation.

        Args:
            name: Service identifier
            factory: Callable that returns a service instance
            lifecycle: Service lifecycle type
            dependencies: Services this factory depends on
        """
        descriptor = ServiceDescriptor(name=name, factory=factory, lifecycle=lifecycle,
                                       dependencies=dependencies)
        with self._lock:
            self._descriptors[name] = descriptor

    def register_singleton(self, name: str, factory: Callable, **kwargs) -> None:
        self.register_factory(name, factory, ServiceLifecycle.SINGLETON, **kwargs)

    def get(self, name: str, scope_id: Optional[str] = None) -> Any:
        """
        Get a service by name, creating it and its dependencies on first use.

        Raises:
            ValueError: If service is not registered
            RuntimeError: If circular dependency detected
        """
        if name not in self._descriptors:
            raise ValueError(f"Service '{name}' is not registered")

        descriptor = self._descriptors[name]
        stack = self._initialization_stack()
        if name in stack:
            cycle = " -> ".join(stack + [name])
            raise RuntimeError(f"Circular dependency detected: {cycle}")

        if descriptor.lifecycle == ServiceLifecycle.SINGLETON:
            return self._get_singleton(descriptor)
        if descriptor.lifecycle == ServiceLifecycle.TRANSIENT:
            return self._create_instance(descriptor)
        return self._get_scoped(descriptor, scope_id or "default")

    def _initialization_stack(self) -> List[str]:
        if not hasattr(self._thread_local, 'initialization_stack'):
            self._thread_local.initialization_stack = []
        return self._thread_local.initialization_stack

    def _get_singleton(self, descriptor: ServiceDescriptor) -> Any:
        if descriptor.instance is not None:
            return descriptor.instance
        with descriptor.lock:
            # Double-check after acquiring the lock
            if descriptor.instance is None:
                descriptor.instance = self._create_instance(descriptor)
            return descriptor.instance

    def _get_scoped(self, descriptor: ServiceDescriptor, scope_id: str) -> Any:
        with self._lock:
            scope = self._scoped_instances.setdefault(scope_id, {})
            if descriptor.name not in scope:
                scope[descriptor.name] = self._create_instance(descriptor)
            return scope[descriptor.name]

    def _create_instance(self, descriptor: ServiceDescriptor) -> Any:
        if descriptor.factory is None:
            raise ValueError(f"No factory registered for '{descriptor.name}'")

        stack = self._initialization_stack()
        stack.append(descriptor.name)
        try:
            deps = {dep: self.get(dep) for dep in descriptor.dependencies}
            instance = descriptor.factory(**deps)
            logger.debug(f"Created service instance: {descriptor.name}")
            return instance
        finally:
            stack.pop()

    def has(self, name: str) -> bool:
        return name in self._descriptors

    def reset_service(self, name: str) -> None:
        """Force re-instantiation of a service on next get"""
        if name in self._descriptors:
            descriptor = self._descriptors[name]
            if descriptor.factory is not None:
                with descriptor.lock:
                    descriptor.instance = None
            with self._lock:
                for scope in self._scoped_instances.values():
                    scope.pop(name, None)

    def clear_scope(self, scope_id: str) -> None:
        with self._lock:
            self._scoped_instances.pop(scope_id, None)

    def list_services(self) -> List[str]:
        return sorted(self._descriptors.keys())

    def validate_dependencies(self) -> List[str]:
        """
        Validate all service dependencies are registered.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        for name, descriptor in self._descriptors.items():
            for dep in descriptor.dependencies:
                if dep not in self._descriptors:
                    errors.append(f"Service '{name}' depends on unregistered service '{dep}'")
        return errors

    def get_initialization_order(self) -> List[str]:
        """
        Topologically sorted service names, dependencies first.

        Raises:
            RuntimeError: If circular dependency exists
        """
        graph = {name: list(d.dependencies) for name, d in self._descriptors.items()}
        visited: Set[str] = set()
        order: List[str] = []

        def visit(node: str, path: List[str]):
            if node in path:
                cycle = " -> ".join(path + [node])
                raise RuntimeError(f"Circular dependency detected: {cycle}")
            if node in visited:
                return
            for dep in graph.get(node, []):
                visit(dep, path + [node])
            visited.add(node)
            order.append(node)

        for name in graph:
            visit(name, [])
        return order

    def warmup(self, services: Optional[List[str]] = None) -> None:
        """Pre-instantiate services in dependency order (all singletons when None)."""
        if services is None:
            services = [name for name, d in self._descriptors.items()
                        if d.lifecycle == ServiceLifecycle.SINGLETON]
        for name in self.get_initialization_order():
            if name in services:
                logger.info(f"Warming up service: {name}")
                self.get(name)
