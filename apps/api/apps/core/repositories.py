"""
Aggregate repository contracts.

Engines never touch storage directly. They open ``locked(aggregate_id)``,
load the aggregate, mutate a private copy and ``save`` it back, so a
failed operation leaves the stored aggregate untouched.
"""
import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Dict, Generic, Iterator, List, Optional, TypeVar

from django.db import transaction

from .exceptions import NotFoundError, ValidationError

T = TypeVar('T')


class AggregateRepository(ABC, Generic[T]):
    """Storage contract for one aggregate type."""

    entity_name = 'Aggregate'

    @abstractmethod
    def get(self, aggregate_id: str) -> T:
        """Return the aggregate or raise NotFoundError."""

    @abstractmethod
    def exists(self, aggregate_id: str) -> bool:
        ...

    @abstractmethod
    def add(self, aggregate: T) -> T:
        ...

    @abstractmethod
    def save(self, aggregate: T) -> T:
        ...

    @abstractmethod
    def all(self) -> List[T]:
        ...

    @abstractmethod
    def locked(self, aggregate_id: str):
        """Context manager giving exclusive write access to one aggregate."""

    def filter(self, predicate: Callable[[T], bool]) -> List[T]:
        return [item for item in self.all() if predicate(item)]


class InMemoryRepository(AggregateRepository[T]):
    """
    Dict backed repository used by tests and local tooling.

    Reads and writes go through deep copies. Locks are re-entrant and
    held per aggregate id.
    """

    id_attribute = 'id'

    def __init__(self, items: Optional[List[T]] = None):
        self._items: Dict[str, T] = {}
        self._registry_lock = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        for item in items or []:
            self.add(item)

    def key_for(self, aggregate: T) -> str:
        return str(getattr(aggregate, self.id_attribute))

    def get(self, aggregate_id: str) -> T:
        try:
            return copy.deepcopy(self._items[str(aggregate_id)])
        except KeyError:
            raise NotFoundError(self.entity_name, aggregate_id)

    def exists(self, aggregate_id: str) -> bool:
        return str(aggregate_id) in self._items

    def add(self, aggregate: T) -> T:
        key = self.key_for(aggregate)
        with self._registry_lock:
            if key in self._items:
                raise ValidationError(f'{self.entity_name} {key} already exists')
            self._items[key] = copy.deepcopy(aggregate)
        return aggregate

    def save(self, aggregate: T) -> T:
        key = self.key_for(aggregate)
        if key not in self._items:
            raise NotFoundError(self.entity_name, key)
        self._items[key] = copy.deepcopy(aggregate)
        return aggregate

    def all(self) -> List[T]:
        return [copy.deepcopy(item) for item in list(self._items.values())]

    @contextmanager
    def locked(self, aggregate_id: str) -> Iterator[None]:
        with self._registry_lock:
            lock = self._locks.setdefault(str(aggregate_id), threading.RLock())
        with lock:
            yield


class DjangoRepository(AggregateRepository[T]):
    """
    ORM backed repository.

    Subclasses set ``model`` and implement the two mapping hooks.
    ``locked`` opens a transaction and takes a row lock, so everything
    the engine writes inside the block commits or rolls back together.
    """

    model = None

    def to_domain(self, record) -> T:
        raise NotImplementedError

    def write(self, aggregate: T, created: bool) -> None:
        raise NotImplementedError

    def get(self, aggregate_id: str) -> T:
        try:
            return self.to_domain(self.model.objects.get(pk=aggregate_id))
        except self.model.DoesNotExist:
            raise NotFoundError(self.entity_name, aggregate_id)

    def exists(self, aggregate_id: str) -> bool:
        return self.model.objects.filter(pk=aggregate_id).exists()

    @transaction.atomic
    def add(self, aggregate: T) -> T:
        self.write(aggregate, created=True)
        return aggregate

    @transaction.atomic
    def save(self, aggregate: T) -> T:
        self.write(aggregate, created=False)
        return aggregate

    def all(self) -> List[T]:
        return [self.to_domain(record) for record in self.model.objects.all()]

    @contextmanager
    def locked(self, aggregate_id: str) -> Iterator[None]:
        with transaction.atomic():
            # Row lock; a no-op on SQLite which serialises writers anyway
            list(
                self.model.objects.select_for_update()
                .filter(pk=aggregate_id)
                .values_list('pk', flat=True)
            )
            yield
