"""
Relation Fetch Pipeline - Splits relation loads across both stores.

Provides:
- GraphRelations: class-level declaration of graph-backed relations
- ModelFetchPipeline / CollectionFetchPipeline: per-instance fetch orchestration
- RelationalLoader / SQLAlchemyLoader: loading of store-backed relations

Flow:
1. ``fetching``: requested names matching a declared graph relation are
   removed from the request; they are resolved now if the owner has an
   identity, otherwise parked in metadata under ``pending_graph_relations``
2. The relational store loads whatever names remain
3. ``fetched``: parked names are resolved and the metadata key is cleared
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Protocol, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from dualstore.exceptions import ConfigurationError
from dualstore.graph.normalizer import GraphResponseNormalizer
from dualstore.logging_config import get_logger
from dualstore.metadata import Metadata
from dualstore.transaction import TransactionCoordinator, maybe_await


logger = get_logger(__name__)

PENDING_GRAPH_RELATIONS = "pending_graph_relations"
FETCH_EVENTS = ("fetching", "fetched")

FetchHook = Callable[[Any, "FetchOptions"], Any]


@dataclass
class FetchOptions:
    """Options travelling through one fetch or load cycle."""

    with_related: list[str] | None = None
    columns: list[str] | None = None
    transacting: TransactionCoordinator | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class RelationalLoader(Protocol):
    """Loads store-backed relations onto one object or a list of objects."""

    async def load(self, target: Any, relations: list[str], options: FetchOptions) -> None:
        ...


class SQLAlchemyLoader:
    """RelationalLoader backed by ``AsyncSession.refresh``."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def load(self, target: Any, relations: list[str], options: FetchOptions) -> None:
        targets = target if isinstance(target, list) else [target]
        for obj in targets:
            await self._session.refresh(obj, attribute_names=relations)


def _as_list(relations: str | Iterable[str] | None) -> list[str]:
    if relations is None:
        return []
    if isinstance(relations, str):
        return [relations]
    return list(relations)


async def _settle(awaitables: Iterable[Awaitable[Any]]) -> list[Any]:
    """Await everything, then raise the first failure if there was one."""
    results = await asyncio.gather(*awaitables, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


class FetchPipeline(ABC):
    """Shared fetch orchestration for single records and collections."""

    def __init__(
        self,
        owner: Any,
        graph_relations: Iterable[str],
        loader: RelationalLoader | None = None,
        metadata: Metadata | None = None,
        normalizer: GraphResponseNormalizer | None = None,
    ):
        self.owner = owner
        self.graph_relations: tuple[str, ...] = tuple(graph_relations)
        self.metadata = metadata if metadata is not None else Metadata()
        self.normalizer = normalizer or GraphResponseNormalizer()
        self._loader = loader
        self._hooks: dict[str, list[FetchHook]] = {event: [] for event in FETCH_EVENTS}

    @abstractmethod
    def has_identity(self) -> bool:
        """Whether graph relations can be resolved now."""
        pass

    @abstractmethod
    async def resolve(self, relations: Sequence[str]) -> list[Any]:
        """Resolve graph relations and store the normalized results."""
        pass

    def _load_target(self) -> Any:
        return self.owner

    def on(self, event: str, hook: FetchHook) -> "FetchPipeline":
        """Register a hook run after the pipeline handles ``event``."""
        if event not in self._hooks:
            raise ValueError(f"Unknown fetch event: {event}")
        self._hooks[event].append(hook)
        return self

    async def _run_hooks(self, event: str, options: FetchOptions) -> None:
        for hook in self._hooks[event]:
            await maybe_await(hook(self.owner, options))

    def partition(self, requested: Iterable[str]) -> tuple[list[str], list[str]]:
        """
        Split requested names into (store-backed, graph-backed).

        Store-backed names keep their order and repeats; graph-backed names
        are resolved once each.
        """
        store: list[str] = []
        graph: list[str] = []
        for name in requested:
            if name not in self.graph_relations:
                store.append(name)
            elif name not in graph:
                graph.append(name)
        return store, graph

    @property
    def pending(self) -> list[str]:
        return list(self.metadata.get(PENDING_GRAPH_RELATIONS, []))

    # ===== Transitions =====

    async def fetching(self, options: FetchOptions | None = None) -> FetchOptions:
        """Handle the ``fetching`` transition; strips graph names from the request."""
        options = options if options is not None else FetchOptions()
        graph_related: list[str] = []

        if options.with_related:
            options.with_related, graph_related = self.partition(options.with_related)

        if graph_related:
            if self.has_identity():
                await self.resolve(graph_related)
            else:
                logger.debug(f"Deferring graph relations until identity is known: {graph_related}")
                self.metadata.set(PENDING_GRAPH_RELATIONS, graph_related)

        await self._run_hooks("fetching", options)
        return options

    async def fetched(self, options: FetchOptions | None = None) -> FetchOptions:
        """Handle the ``fetched`` transition; resolves deferred graph names."""
        options = options if options is not None else FetchOptions()
        pending = self.pending
        self.metadata.unset(PENDING_GRAPH_RELATIONS)

        if pending:
            await self.resolve(pending)

        await self._run_hooks("fetched", options)
        return options

    # ===== Entry Points =====

    async def fetch(
        self,
        fetcher: Callable[[FetchOptions], Any],
        options: FetchOptions | None = None,
    ) -> Any:
        """Run one relational fetch between the ``fetching`` and ``fetched`` transitions."""
        options = await self.fetching(options)
        result = await maybe_await(fetcher(options))
        await self.fetched(options)
        return result

    async def load(
        self,
        relations: str | Iterable[str],
        options: FetchOptions | None = None,
        loader: RelationalLoader | None = None,
    ) -> Any:
        """
        Load relations onto the owner from whichever store holds them.

        Graph-only loads never reach the relational loader.

        Returns:
            The owner
        """
        options = options if options is not None else FetchOptions()
        options.with_related = _as_list(relations)

        await self.fetching(options)

        remaining = options.with_related or []
        options.with_related = None

        if remaining:
            loader = loader or self._loader
            if loader is None:
                raise ConfigurationError(
                    f"No relational loader configured for relations: {remaining}",
                    config_key="loader",
                )
            await loader.load(self._load_target(), remaining, options)

        await self.fetched(options)
        return self.owner


class ModelFetchPipeline(FetchPipeline):
    """
    Fetch pipeline for one entity instance.

    Each graph relation is resolved by calling the owner's method of the same
    name; the normalized response is stored in ``relations``.
    """

    def __init__(
        self,
        owner: Any,
        graph_relations: Iterable[str],
        loader: RelationalLoader | None = None,
        metadata: Metadata | None = None,
        normalizer: GraphResponseNormalizer | None = None,
        identity: Callable[[Any], Any] | None = None,
    ):
        super().__init__(owner, graph_relations, loader, metadata, normalizer)
        self._identity = identity or (lambda obj: getattr(obj, "id", None))
        self.relations: dict[str, Any] = {}

    def has_identity(self) -> bool:
        return self._identity(self.owner) is not None

    async def resolve(self, relations: Sequence[str]) -> list[Any]:
        return await _settle(self._resolve_one(name) for name in relations)

    async def _resolve_one(self, name: str) -> Any:
        resolver = getattr(self.owner, name, None)
        if not callable(resolver):
            raise ConfigurationError(
                f"{type(self.owner).__name__} declares graph relation {name!r} without a resolver",
                config_key=name,
            )

        response = await maybe_await(resolver())
        self.relations[name] = self.normalizer.normalize(response) if response else {}
        return self.relations[name]


class CollectionFetchPipeline(FetchPipeline):
    """
    Fetch pipeline for a collection; resolution fans out over every member.

    A collection has an identity once it has members. A list passed as
    ``members`` is held by reference, so members the relational fetch adds
    to it are resolved on ``fetched``.
    """

    def __init__(
        self,
        members: Iterable[Any],
        graph_relations: Iterable[str],
        member_pipeline: Callable[[Any], ModelFetchPipeline],
        loader: RelationalLoader | None = None,
        metadata: Metadata | None = None,
        normalizer: GraphResponseNormalizer | None = None,
    ):
        if not isinstance(members, list):
            members = list(members)
        super().__init__(members, graph_relations, loader, metadata, normalizer)
        self._member_pipeline = member_pipeline

    @property
    def members(self) -> list[Any]:
        return self.owner

    def has_identity(self) -> bool:
        return bool(self.owner)

    def _load_target(self) -> Any:
        return list(self.owner)

    async def resolve(self, relations: Sequence[str]) -> list[Any]:
        return await _settle(
            self._member_pipeline(member).resolve(relations) for member in self.owner
        )


class GraphRelations:
    """
    Declares the graph-backed relations of an entity type.

    Accessed on an instance it yields that instance's ModelFetchPipeline,
    built on first access. Works on plain classes and ORM models alike.

    Usage:
        class Person(Base):
            __tablename__ = "people"
            id: Mapped[int] = mapped_column(primary_key=True)
            addresses = relationship(Address)

            graph = GraphRelations("friends")

            async def friends(self):
                return await executor.fetch_all(...)

        await person.graph.load(["addresses", "friends"], loader=SQLAlchemyLoader(session))
        person.graph.relations["friends"]
    """

    def __init__(
        self,
        *names: str,
        loader: RelationalLoader | None = None,
        identity: str = "id",
        normalizer: GraphResponseNormalizer | None = None,
    ):
        self.names: tuple[str, ...] = names
        self.loader = loader
        self.identity = identity
        self.normalizer = normalizer or GraphResponseNormalizer()
        self._attr = "_graph_pipeline"

    def __set_name__(self, owner: type, name: str) -> None:
        self._attr = f"_{name}_pipeline"

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return self.pipeline(instance)

    def pipeline(self, instance: Any) -> ModelFetchPipeline:
        pipeline = instance.__dict__.get(self._attr)
        if pipeline is None:
            pipeline = ModelFetchPipeline(
                instance,
                self.names,
                loader=self.loader,
                normalizer=self.normalizer,
                identity=lambda obj: getattr(obj, self.identity, None),
            )
            instance.__dict__[self._attr] = pipeline
        return pipeline

    def collection(
        self,
        members: Iterable[Any],
        loader: RelationalLoader | None = None,
        metadata: Metadata | None = None,
    ) -> CollectionFetchPipeline:
        """Build a pipeline over a collection of instances of the declaring type."""
        return CollectionFetchPipeline(
            members,
            self.names,
            member_pipeline=self.pipeline,
            loader=loader or self.loader,
            metadata=metadata,
            normalizer=self.normalizer,
        )
