import logging
from typing import Callable, Generic, Iterable, List, Optional, Type, TypeVar

from errors import ConflictError, NotFoundError, StorageReadError
from models import Budget, Transaction, User, utc_now
from storage import BUDGETS, TRANSACTIONS, USERS, FileStore

logger = logging.getLogger(__name__)

E = TypeVar("E", Transaction, Budget, User)


class JsonRepository(Generic[E]):
    collection: str = ""
    entity: Type[E]
    label: str = "Record"

    def __init__(self, store: FileStore, categories: Optional[Iterable[str]] = None):
        self.store = store
        self.categories = tuple(categories) if categories is not None else None

    # ---------- full collection ----------

    def read_all(self, lenient: Optional[bool] = None) -> List[E]:
        lenient = self.store.lenient_reads if lenient is None else lenient
        rows = self.store.read(self.collection, lenient=lenient)
        entities = []
        for index, row in enumerate(rows):
            try:
                if not isinstance(row, dict):
                    raise ValueError("is not an object")
                entities.append(self.entity.from_dict(row))
            except ValueError as exc:
                message = f"{self.collection} entry {index} {exc}"
                if lenient:
                    logger.error("%s, skipping it", message)
                    continue
                logger.error("%s", message)
                raise StorageReadError(self.collection, message, exc) from exc
        return entities

    def write_all(self, entities: List[E]) -> None:
        self.store.write(self.collection, [e.to_dict() for e in entities])

    # ---------- queries ----------

    def list(self, user_id: Optional[str] = None, lenient: Optional[bool] = None) -> List[E]:
        entities = self.read_all(lenient=lenient)
        if user_id is None:
            return entities
        return [e for e in entities if e.user_id == user_id]

    def get(self, entity_id: str, user_id: Optional[str] = None) -> E:
        for e in self.list(user_id):
            if e.id == entity_id:
                return e
        raise NotFoundError(f"{self.label} not found")

    # ---------- mutations ----------

    def check(self, entity: E, others: List[E]) -> None:
        """Collection-level invariants; subclasses raise ConflictError."""
        if any(o.id == entity.id for o in others):
            raise ConflictError(f"{self.label} id {entity.id} already exists")

    def add(self, entity: E) -> E:
        entity.validate(self.categories)
        with self.store.locked(self.collection):
            entities = self.read_all(lenient=False)
            self.check(entity, entities)
            entities.append(entity)
            self.write_all(entities)
        logger.info("%s %s created", self.label, entity.id)
        return entity

    def upsert(
        self,
        entity_id: str,
        mutator: Callable[[E], Optional[E]],
        user_id: Optional[str] = None,
    ) -> E:
        """Apply `mutator` to the stored entity and persist the result.

        `id`, owner and `createdAt` survive whatever the mutator does;
        `updatedAt` is refreshed. Raises NotFoundError if the entity is absent.
        """
        with self.store.locked(self.collection):
            entities = self.read_all(lenient=False)
            index = self._index_of(entities, entity_id, user_id)
            current = entities[index]
            updated = mutator(current) or current
            updated.id = current.id
            updated.user_id = current.user_id
            updated.created_at = current.created_at
            updated.updated_at = utc_now()
            updated.validate(self.categories)
            self.check(updated, entities[:index] + entities[index + 1:])
            entities[index] = updated
            self.write_all(entities)
        logger.info("%s %s updated", self.label, entity_id)
        return updated

    def delete(self, entity_id: str, user_id: Optional[str] = None) -> E:
        with self.store.locked(self.collection):
            entities = self.read_all(lenient=False)
            index = self._index_of(entities, entity_id, user_id)
            removed = entities.pop(index)
            self.write_all(entities)
        logger.info("%s %s deleted", self.label, entity_id)
        return removed

    def _index_of(self, entities: List[E], entity_id: str, user_id: Optional[str]) -> int:
        for index, e in enumerate(entities):
            if e.id == entity_id and (user_id is None or e.user_id == user_id):
                return index
        raise NotFoundError(f"{self.label} not found")


class TransactionRepository(JsonRepository[Transaction]):
    collection = TRANSACTIONS
    entity = Transaction
    label = "Transaction"


class BudgetRepository(JsonRepository[Budget]):
    collection = BUDGETS
    entity = Budget
    label = "Budget"

    def check(self, entity: Budget, others: List[Budget]) -> None:
        super().check(entity, others)
        for o in others:
            if o.user_id == entity.user_id and o.category == entity.category:
                raise ConflictError(f"A budget for {entity.category} already exists")


class UserRepository(JsonRepository[User]):
    collection = USERS
    entity = User
    label = "User"

    def find_by_email(self, email: str) -> Optional[User]:
        email = (email or "").strip().lower()
        for u in self.read_all():
            if u.email == email:
                return u
        return None

    def check(self, entity: User, others: List[User]) -> None:
        super().check(entity, others)
        if any(o.email == entity.email for o in others):
            raise ConflictError("User with this email already exists")


# -------------------------------
# SNAPSHOT ACCESSORS
# -------------------------------

def read_transactions(store: FileStore, lenient: Optional[bool] = None) -> List[Transaction]:
    return TransactionRepository(store).read_all(lenient=lenient)


def write_transactions(store: FileStore, transactions: List[Transaction]) -> None:
    TransactionRepository(store).write_all(transactions)


def read_budgets(store: FileStore, lenient: Optional[bool] = None) -> List[Budget]:
    return BudgetRepository(store).read_all(lenient=lenient)


def write_budgets(store: FileStore, budgets: List[Budget]) -> None:
    BudgetRepository(store).write_all(budgets)


class Repositories:
    """The three repositories sharing one store and category allow-list."""

    def __init__(self, store: FileStore, categories: Optional[Iterable[str]] = None):
        self.store = store
        self.transactions = TransactionRepository(store, categories)
        self.budgets = BudgetRepository(store, categories)
        self.users = UserRepository(store, categories)
