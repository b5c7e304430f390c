"""
Flow tests for the HouseholdSession

Sessions run against a shared in-memory store and change stream, so a
write by one member reaches every other open session.
"""

import asyncio

import pytest

from household_sync.audit import AuditLogger
from household_sync.config import AppSettings, SyncSettings
from household_sync.models import AuditEventType
from household_sync.services.remote import (
    InMemoryChangeStream,
    InMemoryRemoteStore,
    RemoteRejectedError,
)
from household_sync.session import HouseholdSession


FAST = SyncSettings(
    debounce_ms=20,
    event_debounce_ms=20,
    reload_retry_attempts=1,
    reload_retry_min_wait_s=0,
    reload_retry_max_wait_s=0,
)


def make_backend():
    stream = InMemoryChangeStream()
    store = InMemoryRemoteStore(change_stream=stream)
    store.seed("memberships", [
        {"user_id": "u1", "household_id": "h1", "role": "owner", "display_name": "Anna"},
        {"user_id": "u2", "household_id": "h1", "role": "member", "display_name": "Bo"},
    ])
    return store, stream


def make_session(store, stream, user_id="u1", audit=None):
    return HouseholdSession(
        store,
        stream,
        user_id,
        audit_logger=audit or AuditLogger(),
        sync_settings=FAST,
        app_settings=AppSettings(),
    )


class TestOpen:
    """Tests for session start-up and preconditions."""

    def test_open_loads_everything(self):
        async def scenario():
            store, stream = make_backend()
            store.seed("shopping_items", [
                {"id": "s1", "household_id": "h1", "text": "Milk", "checked": False},
            ])
            session = make_session(store, stream)
            opened = await session.open()
            result = (
                opened,
                session.context.household_id,
                [m.label() for m in session.members.value],
                [r.text for r in session.shopping.records.value],
                stream.subscriber_count("shopping_items", "h1"),
            )
            await session.close()
            return result

        opened, household_id, members, shopping, subscribers = asyncio.run(scenario())
        assert opened is True
        assert household_id == "h1"
        assert members == ["Anna", "Bo"]
        assert shopping == ["Milk"]
        assert subscribers == 1

    def test_not_signed_in(self):
        async def scenario():
            store, stream = make_backend()
            session = make_session(store, stream, user_id=None)
            return await session.open(), session

        opened, session = asyncio.run(scenario())
        assert opened is False
        assert session.last_error.value == "Not signed in."

    def test_no_household(self):
        audit = AuditLogger()

        async def scenario():
            store, stream = make_backend()
            session = make_session(store, stream, user_id="stranger", audit=audit)
            return await session.open(), session

        opened, session = asyncio.run(scenario())
        assert opened is False
        assert session.last_error.value == "You do not have a household yet."
        assert audit.recent()[0].event_type == AuditEventType.PRECONDITION_FAILED

    def test_mutation_before_open_is_refused(self):
        async def scenario():
            store, stream = make_backend()
            session = make_session(store, stream)
            result = await session.add_shopping_item("Milk")
            return result, session, store

        result, session, store = asyncio.run(scenario())
        assert result is None
        assert session.last_error.value == "You do not have a household yet."
        assert store.calls_of("insert") == []

    def test_close_ends_subscriptions(self):
        async def scenario():
            store, stream = make_backend()
            session = make_session(store, stream)
            await session.open()
            await session.close()
            return stream

        stream = asyncio.run(scenario())
        for table in ("shopping_items", "pantry_items", "household_todos", "important_events", "expenses"):
            assert stream.subscriber_count(table, "h1") == 0


class TestShoppingAndPantry:
    """Tests for shopping list and pantry actions."""

    def test_other_members_see_new_items(self):
        """Test that a create in one session reaches another session."""
        async def scenario():
            store, stream = make_backend()
            anna = make_session(store, stream, "u1")
            bo = make_session(store, stream, "u2")
            await anna.open()
            await bo.open()
            await bo.add_shopping_item("  Bread ")
            await stream.drain()
            seen = [r.text for r in anna.shopping.records.value]
            await anna.close()
            await bo.close()
            return seen

        assert asyncio.run(scenario()) == ["Bread"]

    def test_blank_item_rejected(self):
        async def scenario():
            store, stream = make_backend()
            session = make_session(store, stream)
            await session.open()
            result = await session.add_shopping_item("   ")
            await session.close()
            return result, session, store

        result, session, store = asyncio.run(scenario())
        assert result is None
        assert session.last_error.value == "Item is required."
        assert store.calls_of("insert") == []

    def test_clear_checked_is_one_delete(self):
        async def scenario():
            store, stream = make_backend()
            store.seed("shopping_items", [
                {"id": "a", "household_id": "h1", "text": "A", "checked": True},
                {"id": "b", "household_id": "h1", "text": "B", "checked": False},
                {"id": "c", "household_id": "h1", "text": "C", "checked": True},
            ])
            session = make_session(store, stream)
            await session.open()
            ok = await session.clear_checked()
            await stream.drain()
            remaining = [str(r.id) for r in session.shopping.records.value]
            await session.close()
            return ok, remaining, store

        ok, remaining, store = asyncio.run(scenario())
        assert ok is True
        assert remaining == ["b"]
        assert store.calls_of("delete", "shopping_items") == [["a", "c"]]

    def test_move_to_pantry(self):
        async def scenario():
            store, stream = make_backend()
            store.seed("shopping_items", [
                {"id": "s1", "household_id": "h1", "text": "Milk", "checked": True},
            ])
            session = make_session(store, stream)
            await session.open()
            ok = await session.move_to_pantry("s1")
            await stream.drain()
            result = (
                ok,
                [r.text for r in session.shopping.records.value],
                [r.name for r in session.pantry.records.value],
            )
            await session.close()
            return result

        ok, shopping, pantry = asyncio.run(scenario())
        assert ok is True
        assert shopping == []
        assert pantry == ["Milk"]

    def test_move_to_pantry_skips_duplicates(self):
        """Test that an item already in the pantry is not added twice."""
        async def scenario():
            store, stream = make_backend()
            store.seed("shopping_items", [
                {"id": "s1", "household_id": "h1", "text": "milk", "checked": False},
            ])
            store.seed("pantry_items", [
                {"id": "p1", "household_id": "h1", "name": "Milk ", "qty": 1, "unit": "l"},
            ])
            session = make_session(store, stream)
            await session.open()
            ok = await session.move_to_pantry("s1")
            await stream.drain()
            await session.close()
            return ok, store

        ok, store = asyncio.run(scenario())
        assert ok is True
        assert store.calls_of("insert", "pantry_items") == []
        assert store.rows("shopping_items") == []

    def test_add_pantry_item_with_quantity(self):
        async def scenario():
            store, stream = make_backend()
            session = make_session(store, stream)
            await session.open()
            item = await session.add_pantry_item("Rice", "1,5", "kg")
            await session.close()
            return item

        item = asyncio.run(scenario())
        assert item.qty == 1.5
        assert item.unit == "kg"
        assert item.created_by == "u1"


class TestTodos:
    """Tests for chores."""

    def test_toggle_sets_done_at(self):
        async def scenario():
            store, stream = make_backend()
            store.seed("household_todos", [
                {"id": "t1", "household_id": "h1", "title": "Vacuum", "done": False},
            ])
            session = make_session(store, stream)
            await session.open()
            await session.toggle_todo("t1")
            await stream.drain()
            done = session.todos.get("t1")
            await session.toggle_todo("t1")
            await stream.drain()
            undone = session.todos.get("t1")
            await session.close()
            return done, undone

        done, undone = asyncio.run(scenario())
        assert done.done is True
        assert done.done_at is not None
        assert undone.done is False
        assert undone.done_at is None

    def test_assign_to_stranger_refused(self):
        async def scenario():
            store, stream = make_backend()
            store.seed("household_todos", [
                {"id": "t1", "household_id": "h1", "title": "Vacuum", "done": False},
            ])
            session = make_session(store, stream)
            await session.open()
            ok = await session.assign_todo("t1", "stranger")
            assigned = await session.assign_todo("t1", "u2")
            await stream.drain()
            await session.close()
            return ok, assigned, session

        ok, assigned, session = asyncio.run(scenario())
        assert ok is False
        assert assigned is True
        assert session.todos.get("t1").assigned_to == "u2"


class TestExpenses:
    """Tests for the shared ledger and settlement."""

    def test_add_expense_updates_settlement(self):
        async def scenario():
            store, stream = make_backend()
            session = make_session(store, stream)
            await session.open()
            gate = store.hold("insert")
            task = asyncio.ensure_future(session.add_expense("Groceries", "129,50"))
            await asyncio.sleep(0)
            pending_total = session.settlement.value.total_minor
            gate.set()
            expense = await task
            await stream.drain()
            settlement = session.settlement.value
            await session.close()
            return pending_total, expense, settlement

        pending_total, expense, settlement = asyncio.run(scenario())
        assert pending_total == 0
        assert expense.amount_minor == 12950
        assert expense.paid_by == "u1"
        assert settlement.total_minor == 12950
        assert settlement.balance_for("u1") == 6475
        assert [(t.from_name, t.to_name, t.amount_minor) for t in settlement.transfers] == [
            ("Bo", "Anna", 6475),
        ]

    def test_invalid_amount_rejected(self):
        async def scenario():
            store, stream = make_backend()
            session = make_session(store, stream)
            await session.open()
            result = await session.add_expense("Lunch", "abc")
            await session.close()
            return result, session, store

        result, session, store = asyncio.run(scenario())
        assert result is None
        assert session.last_error.value == "Amount must be a number greater than 0."
        assert store.calls_of("insert") == []

    def test_only_creator_removes_expense(self):
        async def scenario():
            store, stream = make_backend()
            store.seed("expenses", [{
                "id": "e1",
                "household_id": "h1",
                "paid_by": "u2",
                "title": "Rent",
                "amount_minor": 100000,
                "created_by": "u2",
            }])
            anna = make_session(store, stream, "u1")
            await anna.open()
            refused = await anna.remove("expenses", "e1")
            error = anna.last_error.value
            await anna.close()

            bo = make_session(store, stream, "u2")
            await bo.open()
            removed = await bo.remove("expenses", "e1")
            await stream.drain()
            await bo.close()
            return refused, error, removed, store

        refused, error, removed, store = asyncio.run(scenario())
        assert refused is False
        assert error == "Only the member who added an expense can remove it."
        assert removed is True
        assert store.rows("expenses") == []


def ingredient_row(record_id, recipe_id, name):
    return {"id": record_id, "household_id": "h1", "recipe_id": recipe_id, "name": name}


class TestRecipes:
    """Tests for recipes and their ingredient lists."""

    def test_new_recipe_goes_first(self):
        async def scenario():
            store, stream = make_backend()
            store.seed("recipes", [{"id": "rc0", "household_id": "h1", "title": "Soup"}])
            session = make_session(store, stream)
            await session.open()
            recipe = await session.add_recipe("Pancakes", "breakfast, , sweet")
            titles = [r.title for r in session.recipes.records.value]
            await session.close()
            return recipe, titles, stream

        recipe, titles, stream = asyncio.run(scenario())
        assert recipe.tags == ["breakfast", "sweet"]
        assert titles == ["Pancakes", "Soup"]
        assert "mat:recipes:h1" in stream.topics

    def test_ingredients_reach_other_members(self):
        """Test that an ingredient added in one session shows up in another."""
        async def scenario():
            store, stream = make_backend()
            store.seed("recipes", [{"id": "rc1", "household_id": "h1", "title": "Pancakes"}])
            store.seed("recipe_ingredients", [ingredient_row("i0", "rc2", "Rice")])
            anna = make_session(store, stream, "u1")
            bo = make_session(store, stream, "u2")
            await anna.open()
            await bo.open()
            await anna.open_recipe("rc1")
            added = await bo.add_ingredient("rc1", "Flour", "2,5", "dl")
            await stream.drain()
            seen = [(i.name, i.qty, i.unit) for i in anna.ingredients["rc1"].records.value]
            await anna.close()
            await bo.close()
            return added, seen, stream

        added, seen, stream = asyncio.run(scenario())
        assert added.recipe_id == "rc1"
        assert seen == [("Flour", 2.5, "dl")]
        assert "ri:rc1" in stream.topics
        assert stream.subscriber_count("recipe_ingredients", "rc1") == 0

    def test_close_recipe_unsubscribes(self):
        async def scenario():
            store, stream = make_backend()
            session = make_session(store, stream)
            await session.open()
            await session.open_recipe("rc1")
            subscribed = stream.subscriber_count("recipe_ingredients", "rc1")
            session.close_recipe("rc1")
            result = (subscribed, stream.subscriber_count("recipe_ingredients", "rc1"), dict(session.ingredients))
            await session.close()
            return result

        subscribed, after, open_recipes = asyncio.run(scenario())
        assert subscribed == 1
        assert after == 0
        assert open_recipes == {}

    def test_add_missing_to_shopping(self):
        """Test that only ingredients missing at home and from the list are added, once each."""
        async def scenario():
            store, stream = make_backend()
            store.seed("shopping_items", [
                {"id": "s1", "household_id": "h1", "text": "eggs", "checked": False},
            ])
            store.seed("pantry_items", [
                {"id": "p1", "household_id": "h1", "name": "Milk"},
            ])
            store.seed("recipe_ingredients", [
                ingredient_row("i1", "rc1", "milk"),
                ingredient_row("i2", "rc1", "Eggs"),
                ingredient_row("i3", "rc1", "Flour"),
                ingredient_row("i4", "rc1", "flour "),
                ingredient_row("i5", "rc1", "Sugar"),
            ])
            session = make_session(store, stream)
            await session.open()
            added = await session.add_missing_to_shopping("rc1")
            texts = [r.text for r in session.shopping.records.value]
            await session.close()
            return added, texts

        added, texts = asyncio.run(scenario())
        assert added == 2
        assert texts == ["eggs", "flour", "sugar"]

    def test_blank_ingredient_rejected(self):
        async def scenario():
            store, stream = make_backend()
            session = make_session(store, stream)
            await session.open()
            result = await session.add_ingredient("rc1", "  ")
            await session.close()
            return result, session, store

        result, session, store = asyncio.run(scenario())
        assert result is None
        assert session.last_error.value == "Ingredient is required."
        assert store.calls_of("insert") == []


class TestHousehold:
    """Tests for the household name."""

    def test_rename_reaches_other_members(self):
        async def scenario():
            store, stream = make_backend()
            store.seed("households", [{"id": "h1", "name": "Home", "join_code": "abc"}])
            anna = make_session(store, stream, "u1")
            bo = make_session(store, stream, "u2")
            await anna.open()
            await bo.open()
            before = anna.household_name
            ok = await bo.rename_household("  Villa ")
            await stream.drain()
            result = (before, ok, anna.household_name, stream.topics)
            await anna.close()
            await bo.close()
            return result

        before, ok, after, topics = asyncio.run(scenario())
        assert before == "Home"
        assert ok is True
        assert after == "Villa"
        assert "household:h1" in topics

    def test_failed_rename_reverts(self):
        async def scenario():
            store, stream = make_backend()
            store.seed("households", [{"id": "h1", "name": "Home"}])
            session = make_session(store, stream)
            await session.open()
            store.fail_next("update", RemoteRejectedError("denied"), table="households")
            gate = store.hold("update")
            task = asyncio.ensure_future(session.rename_household("Villa"))
            await asyncio.sleep(0)
            during = session.household_name
            gate.set()
            ok = await task
            result = (during, ok, session.household_name, session.last_error.value)
            await session.close()
            return result

        during, ok, after, error = asyncio.run(scenario())
        assert during == "Villa"
        assert ok is False
        assert after == "Home"
        assert error == "denied"

    def test_unnamed_household_uses_fallback(self):
        async def scenario():
            store, stream = make_backend()
            session = make_session(store, stream)
            await session.open()
            name = session.household_name
            await session.close()
            return name

        assert asyncio.run(scenario()) == "Household"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
