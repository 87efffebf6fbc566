"""Generic lifecycle reconciler.

One ``LifecycleReconciler`` drives create, read, update and delete for a
single ResourceKind. It holds no persisted state of its own: every entry
point receives the desired spec and the ResourceState handle owned by the
orchestrator, and writes back to that handle only after the remote side
has succeeded.

Edge cases:

| Situation                          | Resolver   | Action                          |
|------------------------------------|------------|---------------------------------|
| Deleted out-of-band, then read     | not found  | clear identity, report success  |
| Deleted out-of-band, then delete   | not found  | no-op, report success           |
| Network failure during read        | transport  | propagate, keep identity        |
| Create accepted, task fails        | -          | TaskFailedError, state untouched|
| Update touches a FORCE_NEW field   | -          | no-op, replacement reported     |
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from .context import ProviderContext
from .errors import ResourceValidationError, TransportError
from .identity import LocalIdentifier
from .kinds import AttributePolicy, ResourceKind
from .models import BaseResourceSpec
from .provenance import LifecycleProvenance, get_provenance_logger
from .state import ResourceState
from .tasks import TaskTracker

logger = logging.getLogger(__name__)


@dataclass
class CreateResult:
    """Outcome of a successful create."""

    identifier: LocalIdentifier
    href: str


@dataclass
class ReadResult:
    """Outcome of a read.

    ``found=False`` means the remote object is gone and the state was cleared.
    ``drift`` maps attribute -> (mirrored, observed) for values that changed
    remotely.
    """

    found: bool
    remote: Any = None
    drift: dict[str, tuple[Any, Any]] = field(default_factory=dict)


@dataclass
class UpdateResult:
    """Outcome of an update, classified per changed attribute."""

    requires_replacement: list[str] = field(default_factory=list)
    applied: list[str] = field(default_factory=list)
    local_only: list[str] = field(default_factory=list)
    found: bool = True

    @property
    def changed(self) -> list[str]:
        return sorted(self.requires_replacement + self.applied + self.local_only)

    @property
    def no_op(self) -> bool:
        return not self.changed


@dataclass
class DeleteResult:
    """Outcome of a delete. ``deleted=False`` means it was already gone."""

    deleted: bool


class LifecycleReconciler:
    """Create/read/update/delete for one resource kind."""

    def __init__(
        self,
        kind: ResourceKind,
        context: ProviderContext,
        *,
        tracker: TaskTracker | None = None,
    ) -> None:
        self._kind = kind
        self._context = context
        self._tracker = tracker if tracker is not None else TaskTracker.from_context(context)

    @property
    def kind(self) -> ResourceKind:
        return self._kind

    @property
    def tracker(self) -> TaskTracker:
        return self._tracker

    def address(self, spec: BaseResourceSpec) -> str:
        return f"{self._kind.name.lower()}.{spec.name}"

    # =========================================================================
    # Entry points
    # =========================================================================

    async def create(self, spec: BaseResourceSpec, state: ResourceState) -> CreateResult:
        """Create the remote object and commit its identity.

        On any error ``state`` is left exactly as it was.

        Raises:
            ResourceValidationError: Unknown scoping or already in state.
            SubmissionError: The create request was rejected.
            TaskFailedError: The create task failed remotely.
            TaskTimeoutError: The create task did not finish in time.
            TransportError: Communication failed.
        """
        address = self.address(spec)
        with self._provenance("create", address) as record:
            if state.exists:
                raise ResourceValidationError(
                    f"{address} is already recorded as {state.id}; refusing to create it again"
                )

            loop = asyncio.get_running_loop()
            target = await loop.run_in_executor(None, self._kind.prepare, self._context, spec)
            payload = self._kind.translate(spec, target)

            locator = await self._tracker.submit_and_await(
                lambda: self._kind.submit_create(self._context, target, payload),
                description=f"Create {address}",
            )
            if not locator:
                raise TransportError(f"Create {address}: task did not report the created object")

            identifier = LocalIdentifier.assign(
                self._kind.identity_mode(self._context),
                href=locator,
                name=spec.name,
                kind=self._kind.name,
            )
            state.commit(identifier, locator, self._desired_attributes(spec))

            record.identifier = identifier.value
            record.href = locator
            record.outcome = "created"
            logger.info(
                "Resource created",
                extra={"address": address, "id": identifier.value, "href": locator},
            )
            return CreateResult(identifier=identifier, href=locator)

    async def read(self, spec: BaseResourceSpec, state: ResourceState) -> ReadResult:
        """Refresh state from the remote object.

        A missing object clears the state and is reported as success. A
        transport failure propagates and leaves the state untouched.
        """
        address = self.address(spec)
        with self._provenance("read", address) as record:
            record.identifier = state.id
            record.href = state.href

            remote = await self._resolve(state.href)
            if remote is None:
                self._mark_absent(state, address)
                record.outcome = "absent"
                return ReadResult(found=False)

            # Unset optionals take server defaults; only tracked values are refreshed
            observed = {
                key: value
                for key, value in self._kind.observe(remote).items()
                if state.attributes.get(key) is not None
            }
            drift = {
                key: (state.attributes[key], value)
                for key, value in observed.items()
                if state.attributes[key] != value
            }
            if drift:
                logger.warning(
                    "Remote drift detected",
                    extra={"address": address, "attributes": sorted(drift)},
                )
            state.attributes = {**state.attributes, **observed}

            record.outcome = "found"
            record.changed_attributes = sorted(drift)
            return ReadResult(found=True, remote=remote, drift=drift)

    async def update(self, spec: BaseResourceSpec, state: ResourceState) -> UpdateResult:
        """Reconcile attribute changes against the last-applied mirror.

        FORCE_NEW changes are reported and nothing is applied: the
        orchestrator must destroy and recreate the resource. Otherwise
        IN_PLACE changes are sent to vCD and LOCAL_ONLY changes only touch
        the mirror.
        """
        address = self.address(spec)
        with self._provenance("update", address) as record:
            record.identifier = state.id
            record.href = state.href

            result = self.plan_update(spec, state)
            record.changed_attributes = result.changed

            if result.requires_replacement:
                record.outcome = "replacement_required"
                logger.warning(
                    "Update requires replacement",
                    extra={"address": address, "attributes": result.requires_replacement},
                )
                return result

            if result.no_op:
                record.outcome = "unchanged"
                return result

            desired = self._desired_attributes(spec)

            if result.applied:
                remote = await self._resolve(state.href)
                if remote is None:
                    self._mark_absent(state, address)
                    record.outcome = "absent"
                    return UpdateResult(found=False)

                changes = {key: desired[key] for key in result.applied}
                await self._tracker.submit_and_await(
                    lambda: self._kind.apply_in_place(self._context, remote, changes),
                    description=f"Update {address}",
                )

            state.attributes = {
                **state.attributes,
                **{key: desired[key] for key in result.applied + result.local_only},
            }
            record.outcome = "updated"
            return result

    async def delete(self, spec: BaseResourceSpec | None, state: ResourceState) -> DeleteResult:
        """Delete the remote object; a missing object is already deleted.

        On error ``state`` is left exactly as it was.
        """
        if spec is not None:
            address = self.address(spec)
        else:
            address = f"{self._kind.name.lower()}.{state.id}"
        with self._provenance("delete", address) as record:
            record.identifier = state.id
            record.href = state.href

            remote = await self._resolve(state.href)
            if remote is None:
                self._mark_absent(state, address)
                record.outcome = "absent"
                return DeleteResult(deleted=False)

            await self._tracker.submit_and_await(
                lambda: self._kind.submit_delete(self._context, remote, spec, state.attributes),
                description=f"Delete {address}",
            )
            state.clear()
            record.outcome = "deleted"
            logger.info("Resource deleted", extra={"address": address})
            return DeleteResult(deleted=True)

    # =========================================================================
    # Diffing
    # =========================================================================

    def diff(self, spec: BaseResourceSpec, state: ResourceState) -> dict[str, tuple[Any, Any]]:
        """Attributes whose desired value differs from the mirror."""
        desired = self._desired_attributes(spec)
        return {
            key: (state.attributes.get(key), value)
            for key, value in desired.items()
            if state.attributes.get(key) != value
        }

    def plan_update(self, spec: BaseResourceSpec, state: ResourceState) -> UpdateResult:
        """Classify changed attributes without any remote call."""
        result = UpdateResult()
        for key in sorted(self.diff(spec, state)):
            policy = self._kind.policy_for(key)
            if policy == AttributePolicy.FORCE_NEW:
                result.requires_replacement.append(key)
            elif policy == AttributePolicy.IN_PLACE:
                result.applied.append(key)
            else:
                result.local_only.append(key)
        return result

    # =========================================================================
    # Helpers
    # =========================================================================

    def _desired_attributes(self, spec: BaseResourceSpec) -> dict[str, Any]:
        attributes = spec.attribute_values()
        attributes["org"] = self._context.org_for(attributes.get("org"))
        if "vdc" in attributes:
            attributes["vdc"] = self._context.vdc_for(attributes.get("vdc"))
        return attributes

    async def _resolve(self, href: str) -> Any | None:
        if not href:
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._kind.resolve, self._context, href)

    def _mark_absent(self, state: ResourceState, address: str) -> None:
        if state.exists:
            logger.warning(
                "Remote object is gone; clearing local identity",
                extra={"address": address, "id": state.id, "href": state.href},
            )
        state.clear()

    @contextmanager
    def _provenance(self, operation: str, address: str) -> Iterator[LifecycleProvenance]:
        provenance_logger = get_provenance_logger()
        record = provenance_logger.create_provenance(operation, self._kind.name, address)
        start = time.monotonic()
        try:
            yield record
        except Exception as e:
            record.fail(e)
            raise
        finally:
            record.duration_seconds = round(time.monotonic() - start, 3)
            provenance_logger.log_provenance(record)
