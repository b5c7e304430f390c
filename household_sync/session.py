"""
Household Session Orchestrator

This module ties together all the components for one signed-in member:
1. Resolve who is signed in and which household they belong to
2. Build one MutationCoordinator per collection and load them
3. Subscribe every collection to its change stream
4. Expose the user actions of every page (add, toggle, edit, clear, ...)
5. Keep the settlement plan current as expenses or the roster change
6. Open recipe ingredient lists on demand, one collection per recipe

DESIGN DECISION: The session enforces the boundaries:
- No mutation without a signed-in member and a household
- No invalid input reaches a coordinator
- No failure propagates to the caller; it becomes `last_error`
"""

import asyncio
from typing import Any, Optional, Sequence, Union

import structlog

from household_sync.audit import AuditLogger, create_correlation_id
from household_sync.config import AppSettings, SyncSettings, get_settings
from household_sync.models.audit import AuditEventBuilder
from household_sync.models.household import Household, HouseholdContext, Member
from household_sync.models.records import (
    Expense,
    HouseholdRecord,
    RecordId,
    utcnow,
)
from household_sync.models.settlement import SettlementResult
from household_sync.models.validation import ValidationResult
from household_sync.queries.views import (
    can_delete_expense,
    missing_ingredients,
    normalize_name,
)
from household_sync.services.remote import (
    ChangeStream,
    RemoteStore,
    RemoteStoreError,
)
from household_sync.settlement import SettlementEngine
from household_sync.sync import (
    ALL_COLLECTIONS,
    RECIPE_INGREDIENTS,
    ChangeStreamSubscriber,
    CollectionSpec,
    MutationCoordinator,
    Observable,
)
from household_sync.validation import InputValidator


logger = structlog.get_logger("household_sync.session")

MEMBERSHIPS_TABLE = "memberships"
MEMBERS_PROCEDURE = "get_household_members"
HOUSEHOLDS_TABLE = "households"


class PreconditionError(Exception):
    """A mutation was attempted before its preconditions were met."""
    pass


class NotAuthenticatedError(PreconditionError):
    """Nobody is signed in."""

    def __init__(self, message: str = "Not signed in."):
        super().__init__(message)


class NoHouseholdError(PreconditionError):
    """The signed-in user has no household membership."""

    def __init__(self, message: str = "You do not have a household yet."):
        super().__init__(message)


class HouseholdSession:
    """
    Everything one member's views need, wired together.

    Usage:
        session = HouseholdSession(store, stream, user_id="u-1")
        if await session.open():
            await session.add_shopping_item("milk")
            plan = session.settlement.value
        await session.close()
    """

    def __init__(
        self,
        store: RemoteStore,
        stream: ChangeStream,
        user_id: Optional[str],
        audit_logger: Optional[AuditLogger] = None,
        sync_settings: Optional[SyncSettings] = None,
        app_settings: Optional[AppSettings] = None,
        validator: Optional[InputValidator] = None,
        collections: Sequence[CollectionSpec] = ALL_COLLECTIONS,
    ):
        self.user_id = user_id
        self.context: Optional[HouseholdContext] = None

        self.last_error: Observable[Optional[str]] = Observable(None)
        self.members: Observable[list[Member]] = Observable([])
        self.settlement: Observable[SettlementResult] = Observable(
            SettlementEngine.compute([], [])
        )
        self.household: Observable[Optional[Household]] = Observable(None)
        self.coordinators: dict[str, MutationCoordinator] = {}
        # Ingredient lists of opened recipes, keyed by recipe id
        self.ingredients: dict[str, MutationCoordinator] = {}

        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._sync_settings = sync_settings or get_settings().sync
        self._app_settings = app_settings or get_settings().app
        self._validator = validator or InputValidator()
        self._collections = tuple(collections)
        self._subscriber = ChangeStreamSubscriber(stream, self._audit)
        self._unsubscribe_views: list[Any] = []
        self._recipe_disposers: dict[str, Any] = {}

        self._household_revision = 0
        self._household_writes = 0
        self._household_refresh_needed = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def resolve_context(self) -> HouseholdContext:
        """
        Find the household of the signed-in user.

        Raises:
            NotAuthenticatedError: If no user is signed in
            NoHouseholdError: If the user has no membership
            RemoteStoreError: If the membership lookup fails
        """
        if not self.user_id:
            raise NotAuthenticatedError()
        rows = await self._store.select(
            MEMBERSHIPS_TABLE,
            {"user_id": self.user_id},
            limit=1,
        )
        if not rows or not rows[0].get("household_id"):
            raise NoHouseholdError()
        return HouseholdContext(user_id=self.user_id, household_id=rows[0]["household_id"])

    async def open(self) -> bool:
        """
        Resolve the household, load every collection and subscribe to changes.

        Returns False (with `last_error` set) if the session cannot start.
        """
        self.last_error.set(None)
        try:
            self.context = await self.resolve_context()
        except PreconditionError as e:
            self._precondition_failed(str(e))
            return False
        except RemoteStoreError as e:
            self.last_error.set(str(e))
            return False

        household_id = self.context.household_id
        for spec in self._collections:
            self.coordinators[spec.name] = MutationCoordinator(
                spec,
                self._store,
                household_id,
                last_error=self.last_error,
                audit_logger=self._audit,
                settings=self._sync_settings,
            )

        await asyncio.gather(
            self.reload_members(),
            self.reload_household(),
            *(c.reload() for c in self.coordinators.values()),
        )

        for coordinator in self.coordinators.values():
            self._subscriber.bind(coordinator)
        self._subscriber.subscribe(
            HOUSEHOLDS_TABLE,
            household_id,
            self.reload_household,
            topic=f"household:{household_id}",
        )

        if "expenses" in self.coordinators:
            self._unsubscribe_views.append(
                self.coordinators["expenses"].records.subscribe(lambda _: self._recompute_settlement())
            )
        self._unsubscribe_views.append(
            self.members.subscribe(lambda _: self._recompute_settlement())
        )
        self._recompute_settlement()

        logger.info(
            "session_opened",
            household_id=household_id,
            collections=sorted(self.coordinators),
        )
        return True

    async def close(self) -> None:
        """Unsubscribe everything and cancel pending debounced writes."""
        self._subscriber.close()
        for unsubscribe in self._unsubscribe_views:
            unsubscribe()
        self._unsubscribe_views.clear()
        for coordinator in self.coordinators.values():
            coordinator.close()
        for coordinator in self.ingredients.values():
            coordinator.close()
        self.ingredients.clear()
        self._recipe_disposers.clear()
        logger.info("session_closed", user_id=self.user_id)

    async def reload_members(self) -> bool:
        """Refresh the member roster from the remote procedure."""
        if self.context is None:
            return False
        try:
            rows = await self._store.call(
                MEMBERS_PROCEDURE,
                {"household_id": self.context.household_id},
            )
        except RemoteStoreError as e:
            self.last_error.set(str(e))
            self.members.set([])
            return False
        try:
            members = [Member.model_validate(row) for row in rows or []]
        except ValueError as e:
            logger.warning("invalid_member_rows", error=str(e))
            self.last_error.set("Received an invalid member list from the store")
            return False
        self.members.set(members)
        return True

    # -------------------------------------------------------------------------
    # Household
    # -------------------------------------------------------------------------

    @property
    def household_name(self) -> str:
        """The household's name, or the configured fallback while it has none."""
        household = self.household.value
        if household is not None and household.name:
            return household.name
        return self._app_settings.default_household_name

    async def reload_household(self) -> bool:
        """
        Re-read the household row.

        A result that raced a rename is discarded and read again once the
        rename settled, like a collection reload.
        """
        if self.context is None:
            return False
        revision = self._household_revision
        try:
            rows = await self._store.select(
                HOUSEHOLDS_TABLE,
                {"id": self.context.household_id},
                limit=1,
            )
            household = Household.model_validate(rows[0]) if rows else None
        except RemoteStoreError as e:
            self.last_error.set(str(e))
            return False
        except ValueError as e:
            logger.warning("invalid_household_row", error=str(e))
            self.last_error.set("Received an invalid household record from the store")
            return False

        if self._household_writes or revision != self._household_revision:
            self._household_refresh_needed = True
            if not self._household_writes:
                return await self._settle_household()
            return False
        self._household_refresh_needed = False
        self.household.set(household)
        return True

    async def rename_household(self, name: str) -> bool:
        """Show the new name at once; put the old one back if the store refuses."""
        context = self._require_context()
        if context is None:
            return False
        result = self._validator.validate_household_name(name)
        if not self._accept(result, "household"):
            return False

        correlation_id = create_correlation_id()
        cleaned = result.cleaned["name"]
        previous = self.household.value
        if previous is not None:
            renamed = previous.model_copy(update={"name": cleaned})
        else:
            renamed = Household(id=context.household_id, name=cleaned)
        self._household_revision += 1
        self.household.set(renamed)

        self._household_writes += 1
        try:
            await self._store.update(HOUSEHOLDS_TABLE, context.household_id, {"name": cleaned})
        except RemoteStoreError as e:
            self._household_revision += 1
            self.household.set(previous)
            self.last_error.set(str(e) or "Could not rename the household")
            self._audit.log(AuditEventBuilder.rolled_back(
                "update", "household", context.household_id, str(e), correlation_id,
            ))
            return False
        finally:
            self._household_writes -= 1
            await self._settle_household()

        self.last_error.set(None)
        self._audit.log(AuditEventBuilder.confirmed(
            "update", "household", context.household_id, correlation_id,
            details={"fields": ["name"]},
        ))
        return True

    async def _settle_household(self) -> bool:
        if self._household_refresh_needed and not self._household_writes:
            self._household_refresh_needed = False
            return await self.reload_household()
        return False

    # -------------------------------------------------------------------------
    # Collection access
    # -------------------------------------------------------------------------

    def collection(self, name: str) -> MutationCoordinator:
        try:
            return self.coordinators[name]
        except KeyError:
            raise KeyError(f"Unknown or unopened collection: {name}")

    @property
    def shopping(self) -> MutationCoordinator:
        return self.collection("shopping")

    @property
    def pantry(self) -> MutationCoordinator:
        return self.collection("pantry")

    @property
    def todos(self) -> MutationCoordinator:
        return self.collection("todos")

    @property
    def events(self) -> MutationCoordinator:
        return self.collection("events")

    @property
    def expenses(self) -> MutationCoordinator:
        return self.collection("expenses")

    @property
    def recipes(self) -> MutationCoordinator:
        return self.collection("recipes")

    # -------------------------------------------------------------------------
    # Shopping
    # -------------------------------------------------------------------------

    async def add_shopping_item(self, text: str) -> Optional[HouseholdRecord]:
        context = self._require_context()
        if context is None:
            return None
        result = self._validator.validate_shopping_item(text)
        if not self._accept(result, "shopping"):
            return None
        return await self.shopping.create({**result.cleaned, "created_by": context.user_id})

    async def toggle_shopping_item(self, record_id: Union[RecordId, str]) -> bool:
        if self._require_context() is None:
            return False
        item = self.shopping.get(record_id)
        if item is None:
            return await self.shopping.update(record_id, {"checked": True})
        return await self.shopping.update(item.id, {"checked": not item.checked})

    async def edit_shopping_text(self, record_id: Union[RecordId, str], text: str) -> bool:
        if self._require_context() is None:
            return False
        return await self.shopping.update(record_id, {"text": text})

    async def clear_checked(self) -> bool:
        """Delete every checked shopping item in one batch."""
        if self._require_context() is None:
            return False
        checked = [r.id for r in self.shopping.records.value if r.checked]
        if not checked:
            return True
        return await self.shopping.bulk_remove(checked)

    async def move_to_pantry(self, record_id: Union[RecordId, str]) -> bool:
        """
        Move a shopping item to the pantry.

        The pantry row is only created if no pantry item has the same
        (case-insensitive) name. The shopping row is removed only after the
        pantry side succeeded; a failed removal restores the shopping list.
        """
        context = self._require_context()
        if context is None:
            return False
        item = self.shopping.get(record_id)
        if item is None:
            return False
        name = item.text.strip()
        if not name:
            return False

        correlation_id = create_correlation_id()
        existing = {normalize_name(p.name) for p in self.pantry.records.value}
        if normalize_name(name) not in existing:
            created = await self.pantry.create(
                {"name": name, "qty": None, "unit": None, "created_by": context.user_id},
                correlation_id=correlation_id,
            )
            if created is None:
                return False
        return await self.shopping.remove(item.id, correlation_id=correlation_id)

    # -------------------------------------------------------------------------
    # Pantry
    # -------------------------------------------------------------------------

    async def add_pantry_item(
        self,
        name: str,
        qty_text: Optional[str] = None,
        unit: Optional[str] = "st",
    ) -> Optional[HouseholdRecord]:
        context = self._require_context()
        if context is None:
            return None
        result = self._validator.validate_pantry_item(name, qty_text, unit)
        if not self._accept(result, "pantry"):
            return None
        return await self.pantry.create({**result.cleaned, "created_by": context.user_id})

    async def edit_pantry_item(self, record_id: Union[RecordId, str], **patch: Any) -> bool:
        if self._require_context() is None:
            return False
        return await self.pantry.update(record_id, patch)

    # -------------------------------------------------------------------------
    # Todos
    # -------------------------------------------------------------------------

    async def add_todo(
        self,
        title: str,
        assigned_to: Optional[str] = None,
    ) -> Optional[HouseholdRecord]:
        context = self._require_context()
        if context is None:
            return None
        result = self._validator.validate_todo(title, assigned_to, self.members.value)
        if not self._accept(result, "todos"):
            return None
        return await self.todos.create({**result.cleaned, "created_by": context.user_id})

    async def toggle_todo(self, record_id: Union[RecordId, str]) -> bool:
        if self._require_context() is None:
            return False
        todo = self.todos.get(record_id)
        if todo is None:
            return await self.todos.update(record_id, {"done": True})
        done = not todo.done
        return await self.todos.update(
            todo.id,
            {"done": done, "done_at": utcnow() if done else None},
        )

    async def assign_todo(self, record_id: Union[RecordId, str], user_id: Optional[str]) -> bool:
        if self._require_context() is None:
            return False
        if user_id is not None and user_id not in {m.user_id for m in self.members.value}:
            self.last_error.set("The chosen member is not part of this household.")
            return False
        return await self.todos.update(record_id, {"assigned_to": user_id})

    async def clear_done_todos(self) -> bool:
        if self._require_context() is None:
            return False
        done = [r.id for r in self.todos.records.value if r.done]
        if not done:
            return True
        return await self.todos.bulk_remove(done)

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def add_event(
        self,
        title: str,
        starts_at: Any,
        notes: Optional[str] = None,
    ) -> Optional[HouseholdRecord]:
        context = self._require_context()
        if context is None:
            return None
        result = self._validator.validate_event(title, starts_at, notes)
        if not self._accept(result, "events"):
            return None
        return await self.events.create({**result.cleaned, "created_by": context.user_id})

    async def edit_event(self, record_id: Union[RecordId, str], **patch: Any) -> bool:
        if self._require_context() is None:
            return False
        return await self.events.update(record_id, patch)

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def add_expense(self, title: str, amount_text: str) -> Optional[HouseholdRecord]:
        """Record an expense paid by the signed-in member."""
        context = self._require_context()
        if context is None:
            return None
        result = self._validator.validate_expense(title, amount_text)
        if not self._accept(result, "expenses"):
            return None
        return await self.expenses.create({
            **result.cleaned,
            "paid_by": context.user_id,
            "created_by": context.user_id,
        })

    async def remove_expense(self, record_id: Union[RecordId, str]) -> bool:
        context = self._require_context()
        if context is None:
            return False
        expense = self.expenses.get(record_id)
        if isinstance(expense, Expense) and not can_delete_expense(expense, context.user_id):
            self.last_error.set("Only the member who added an expense can remove it.")
            self._audit.log(AuditEventBuilder.mutation_refused(
                "expenses", str(expense.id), "not the creator",
            ))
            return False
        return await self.expenses.remove(record_id)

    # -------------------------------------------------------------------------
    # Recipes
    # -------------------------------------------------------------------------

    async def add_recipe(
        self,
        title: str,
        tags: Union[str, Sequence[str], None] = None,
    ) -> Optional[HouseholdRecord]:
        context = self._require_context()
        if context is None:
            return None
        result = self._validator.validate_recipe(title, tags)
        if not self._accept(result, "recipes"):
            return None
        return await self.recipes.create({**result.cleaned, "created_by": context.user_id})

    async def edit_recipe(self, record_id: Union[RecordId, str], **patch: Any) -> bool:
        if self._require_context() is None:
            return False
        return await self.recipes.update(record_id, patch)

    async def remove_recipe(self, record_id: Union[RecordId, str]) -> bool:
        """Close the recipe's ingredient list, then remove the recipe."""
        if self._require_context() is None:
            return False
        self.close_recipe(str(record_id))
        return await self.recipes.remove(record_id)

    async def open_recipe(self, recipe_id: str) -> Optional[MutationCoordinator]:
        """
        Load and subscribe to the ingredients of one recipe.

        Opening an already open recipe returns its existing collection.
        """
        context = self._require_context()
        if context is None:
            return None
        if recipe_id in self.ingredients:
            return self.ingredients[recipe_id]

        coordinator = MutationCoordinator(
            RECIPE_INGREDIENTS,
            self._store,
            context.household_id,
            last_error=self.last_error,
            audit_logger=self._audit,
            settings=self._sync_settings,
            scope_id=recipe_id,
        )
        self.ingredients[recipe_id] = coordinator
        await coordinator.reload()
        if coordinator.closed:
            # Closed while loading
            return None
        self._recipe_disposers[recipe_id] = self._subscriber.bind(coordinator)
        return coordinator

    def close_recipe(self, recipe_id: str) -> None:
        coordinator = self.ingredients.pop(recipe_id, None)
        dispose = self._recipe_disposers.pop(recipe_id, None)
        if dispose is not None:
            dispose()
        if coordinator is not None:
            coordinator.close()

    async def add_ingredient(
        self,
        recipe_id: str,
        name: str,
        qty_text: Optional[str] = None,
        unit: Optional[str] = "st",
    ) -> Optional[HouseholdRecord]:
        context = self._require_context()
        if context is None:
            return None
        result = self._validator.validate_ingredient(name, qty_text, unit)
        if not self._accept(result, "ingredients"):
            return None
        coordinator = await self.open_recipe(recipe_id)
        if coordinator is None:
            return None
        return await coordinator.create({**result.cleaned, "created_by": context.user_id})

    async def remove_ingredient(self, recipe_id: str, record_id: Union[RecordId, str]) -> bool:
        if self._require_context() is None:
            return False
        coordinator = self.ingredients.get(recipe_id)
        if coordinator is None:
            return False
        return await coordinator.remove(record_id)

    def missing_for_recipe(self, recipe_id: str) -> list[str]:
        """Ingredient names of an open recipe that are neither at home nor on the list."""
        coordinator = self.ingredients.get(recipe_id)
        if coordinator is None:
            return []
        return missing_ingredients(
            coordinator.records.value,
            self.pantry.records.value,
            self.shopping.records.value,
        )

    async def add_missing_to_shopping(self, recipe_id: str) -> int:
        """
        Put every missing ingredient of a recipe on the shopping list.

        Returns how many shopping items were created.
        """
        context = self._require_context()
        if context is None:
            return 0
        if await self.open_recipe(recipe_id) is None:
            return 0
        correlation_id = create_correlation_id()
        added = 0
        for name in self.missing_for_recipe(recipe_id):
            created = await self.shopping.create(
                {"text": name, "checked": False, "created_by": context.user_id},
                correlation_id=correlation_id,
            )
            if created is not None:
                added += 1
        logger.info("missing_ingredients_added", recipe_id=recipe_id, added=added)
        return added

    # -------------------------------------------------------------------------
    # Generic
    # -------------------------------------------------------------------------

    async def remove(self, collection: str, record_id: Union[RecordId, str]) -> bool:
        if collection == "expenses":
            return await self.remove_expense(record_id)
        if collection == "recipes":
            return await self.remove_recipe(record_id)
        if self._require_context() is None:
            return False
        return await self.collection(collection).remove(record_id)

    def compute_settlement(self) -> SettlementResult:
        """Settlement of the confirmed ledger against the current roster."""
        ledger = [
            e for e in self.expenses.records.value if not e.is_local
        ] if "expenses" in self.coordinators else []
        result = SettlementEngine.compute(
            ledger,
            self.members.value,
            self._app_settings.member_label_prefix_length,
        )
        self._audit.log(AuditEventBuilder.settlement_computed(
            result.total_minor,
            result.member_count,
            len(result.transfers),
            result.rounding_slack,
        ))
        return result

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _recompute_settlement(self) -> None:
        self.settlement.set(self.compute_settlement())

    def _require_context(self) -> Optional[HouseholdContext]:
        if self.context is not None:
            return self.context
        error = NotAuthenticatedError() if not self.user_id else NoHouseholdError()
        self._precondition_failed(str(error))
        return None

    def _precondition_failed(self, message: str) -> None:
        self.last_error.set(message)
        self._audit.log(AuditEventBuilder.precondition_failed(message))

    def _accept(self, result: ValidationResult, collection: str) -> bool:
        if result.is_valid:
            return True
        self.last_error.set(result.first_error)
        self._audit.log(AuditEventBuilder.input_rejected(
            collection,
            [issue.model_dump() for issue in result.issues],
        ))
        return False
