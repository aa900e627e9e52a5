import threading

import pytest

from conftest import make_budget, make_txn
from errors import ConflictError, NotFoundError, StorageReadError, ValidationError
from models import User
from repositories import read_budgets, read_transactions, write_budgets, write_transactions


def test_snapshot_round_trip(store):
    write_transactions(store, [make_txn("t1", 50), make_txn("t2", 30, type="income", category="salary")])
    write_budgets(store, [make_budget("b1", "food", 60)])

    txns = read_transactions(store)
    assert [t.id for t in txns] == ["t1", "t2"]
    assert txns[1].type == "income"
    assert read_budgets(store)[0].limit == 60


def test_non_object_entry_is_rejected(store):
    store.write("transactions", [make_txn("t1", 5).to_dict(), "oops"])
    with pytest.raises(StorageReadError):
        read_transactions(store)


def test_add_assigns_and_validates(repos):
    txn = make_txn("t1", "12.50", description="  weekly   groceries ", category="Food")
    saved = repos.transactions.add(txn)
    assert saved.amount == 12.5
    assert saved.description == "weekly groceries"
    assert saved.category == "food"
    assert repos.transactions.get("t1").amount == 12.5


@pytest.mark.parametrize("field,value", [
    ("amount", 0),
    ("amount", -5),
    ("amount", "1.234"),
    ("amount", 1000000000.01),
    ("category", "gambling"),
    ("type", "transfer"),
    ("description", "ab"),
    ("date", "05/01/2024"),
])
def test_add_rejects_invalid_transaction(repos, field, value):
    txn = make_txn("t1", 10)
    setattr(txn, field, value)
    with pytest.raises(ValidationError):
        repos.transactions.add(txn)
    assert repos.transactions.list() == []


def test_upsert_preserves_identity_fields(repos):
    repos.transactions.add(make_txn("t1", 10, user_id="u1"))

    def change(t):
        t.amount = 99
        t.id = "hijacked"
        t.user_id = "someone-else"
        t.created_at = "never"

    updated = repos.transactions.upsert("t1", change)
    assert updated.id == "t1"
    assert updated.user_id == "u1"
    assert updated.created_at == "2024-01-01T00:00:00Z"
    assert updated.updated_at
    assert repos.transactions.get("t1").amount == 99


def test_upsert_missing_raises_not_found(repos):
    with pytest.raises(NotFoundError):
        repos.transactions.upsert("nope", lambda t: t)


def test_ownership_scopes_lookups(repos):
    repos.transactions.add(make_txn("t1", 10, user_id="alice"))
    repos.transactions.add(make_txn("t2", 20, user_id="bob"))

    assert [t.id for t in repos.transactions.list("alice")] == ["t1"]
    with pytest.raises(NotFoundError):
        repos.transactions.get("t2", "alice")
    with pytest.raises(NotFoundError):
        repos.transactions.delete("t2", "alice")
    assert len(repos.transactions.list()) == 2


def test_delete_missing_leaves_file_untouched(repos, store):
    repos.transactions.add(make_txn("t1", 10))
    path = store.path_for("transactions")
    before = path.read_bytes()
    mtime = path.stat().st_mtime_ns

    with pytest.raises(NotFoundError):
        repos.transactions.delete("missing")

    assert path.read_bytes() == before
    assert path.stat().st_mtime_ns == mtime


def test_delete_removes_record(repos):
    repos.transactions.add(make_txn("t1", 10))
    repos.transactions.add(make_txn("t2", 20))
    removed = repos.transactions.delete("t1")
    assert removed.id == "t1"
    assert [t.id for t in repos.transactions.list()] == ["t2"]


def test_duplicate_budget_category_conflicts(repos):
    repos.budgets.add(make_budget("b1", "food", 100, user_id="u1"))
    with pytest.raises(ConflictError):
        repos.budgets.add(make_budget("b2", "Food", 50, user_id="u1"))

    # another user may budget the same category
    repos.budgets.add(make_budget("b3", "food", 70, user_id="u2"))
    assert len(repos.budgets.list()) == 2


def test_budget_update_into_existing_category_conflicts(repos):
    repos.budgets.add(make_budget("b1", "food", 100))
    repos.budgets.add(make_budget("b2", "transport", 40))

    def rename(b):
        b.category = "food"

    with pytest.raises(ConflictError):
        repos.budgets.upsert("b2", rename)
    assert repos.budgets.get("b2").category == "transport"


def test_budget_update_same_category_is_allowed(repos):
    repos.budgets.add(make_budget("b1", "food", 100))

    def raise_limit(b):
        b.limit = 150

    assert repos.budgets.upsert("b1", raise_limit).limit == 150


def test_duplicate_user_email_conflicts(repos):
    repos.users.add(User(id="u1", name="Ann", email="ann@finance-app.io"))
    with pytest.raises(ConflictError):
        repos.users.add(User(id="u2", name="Ann Again", email="ANN@finance-app.io"))
    assert repos.users.find_by_email("Ann@Finance-App.io").id == "u1"
    assert repos.users.find_by_email("bob@finance-app.io") is None


def test_configured_categories_are_enforced(store):
    from repositories import Repositories

    repos = Repositories(store, categories=("rent",))
    repos.transactions.add(make_txn("t1", 10, category="rent"))
    with pytest.raises(ValidationError):
        repos.transactions.add(make_txn("t2", 10, category="food"))


def test_concurrent_adds_do_not_lose_updates(repos):
    def create(n):
        for i in range(10):
            repos.transactions.add(make_txn(f"{n}-{i}", i + 1))

    threads = [threading.Thread(target=create, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(repos.transactions.list()) == 40


@pytest.mark.parametrize("field,value", [
    ("amount", "lots"),
    ("amount", None),
    ("date", None),
    ("date", "2024-13-40"),
])
def test_malformed_stored_row_fails_loudly(store, field, value):
    row = make_txn("t1", 5).to_dict()
    row[field] = value
    store.write("transactions", [make_txn("t0", 7).to_dict(), row])
    with pytest.raises(StorageReadError) as info:
        read_transactions(store)
    assert "entry 1" in info.value.message


def test_lenient_read_skips_malformed_rows(store):
    store.write("transactions", [
        make_txn("t0", 7).to_dict(),
        dict(make_txn("t1", 5).to_dict(), amount="lots"),
    ])
    store.write("budgets", [dict(make_budget("b1", "food", 60).to_dict(), limit="many")])
    assert [t.id for t in read_transactions(store, lenient=True)] == ["t0"]
    assert read_budgets(store, lenient=True) == []


def test_sanitized_text_must_be_storable(repos):
    with pytest.raises(ValidationError):
        repos.transactions.add(make_txn("t1", 5, description="abc\ud800def"))
    assert repos.transactions.list() == []
