"""Reconcile a group membership delta across every configured directory region.

One notification moves through VALIDATING -> TOKEN_ACQUISITION -> PARTITIONING ->
PROCESSING_REMOVALS -> PROCESSING_ADDITIONS -> COMPLETED. Pipeline-level failures
(client state, token) end in REJECTED / FAILED before any member is touched. Member- and
region-level failures are recorded as outcomes and processing moves on, so a notification
that got past token acquisition always ends COMPLETED.

Ordering guarantees, independent of the concurrency limit:
  * the token is acquired before any member is processed;
  * the removal phase finishes before the addition phase starts, so a member that was
    removed and re-added in one delta is deleted and then recreated;
  * within one (member, region) cell, the fresh listing precedes the create/delete.
Members within a phase, and regions within a member, are independent and fan out under
a shared semaphore. A failing task never cancels its siblings.
"""

import asyncio
from time import perf_counter
from typing import Any

from opentelemetry.trace import Status, StatusCode

from src.config import Region, SyncSettings
from src.directory.protocol import DirectoryClient
from src.errors import (
    AuthenticityError,
    CredentialAcquisitionError,
    IdentityResolutionError,
    RegionalDirectoryError,
)
from src.identity_provider.models import DirectoryUser
from src.identity_provider.protocol import TokenProvider, UserResolver
from src.sync.outcomes import (
    NotificationResult,
    ProcessingState,
    RegionResult,
    SkippedMember,
    SyncOutcome,
)
from src.utils.logger import bind_context, get_logger, unbind_context
from src.utils.tracing import get_tracer
from src.webhook.guard import verify_client_state
from src.webhook.models import ChangeNotification

logger = get_logger("membership_sync.sync.engine")


def partition_delta(notification: ChangeNotification) -> tuple[list[str], list[str]]:
    """Split the delta into (removed_ids, added_ids).

    Order inside each list follows the delta; repeated ids within one side collapse to
    their first occurrence. An id may appear on both sides (coalesced churn).
    """
    removed: dict[str, None] = {}
    added: dict[str, None] = {}
    for entry in notification.member_delta:
        (removed if entry.removed else added).setdefault(entry.member_id, None)
    return list(removed), list(added)


def account_names(user: DirectoryUser) -> tuple[str, str]:
    """First/last name for a new regional account. Falls back when Graph has no givenName."""
    first = (user.given_name or "").strip()
    last = (user.surname or "").strip()
    if not first:
        first = (user.display_name or "").strip() or user.email.split("@", 1)[0]
    return first, last


class ReconciliationEngine:
    """Applies one change notification to every configured region."""

    def __init__(
        self,
        settings: SyncSettings,
        token_provider: TokenProvider,
        user_resolver: UserResolver,
        directory: DirectoryClient,
        dry_run: bool = False,
    ):
        self._settings = settings
        self._token_provider = token_provider
        self._resolver = user_resolver
        self._directory = directory
        self._dry_run = dry_run

    @property
    def regions(self) -> list[Region]:
        return list(self._settings.regions)

    async def process(self, notification: ChangeNotification) -> NotificationResult:
        """Run the notification to a terminal state. Never raises for item-level failures."""
        tracer = get_tracer()
        start = perf_counter()
        bind_context(resource_id=notification.resource_id)
        log = logger.bind(delta_size=len(notification.member_delta), dry_run=self._dry_run)
        try:
            with tracer.start_as_current_span(
                "process_notification",
                attributes={
                    "sync.resource_id": notification.resource_id or "",
                    "sync.delta_size": len(notification.member_delta),
                    "sync.regions": ",".join(r.value for r in self._settings.regions),
                },
            ) as root_span:
                result = await self._run(notification, log)
                root_span.set_attribute("sync.state", result.state.value)
                if not result.ok:
                    root_span.set_status(Status(StatusCode.ERROR, result.error or result.state.value))
            log.info(
                "sync.notification.finished",
                state=result.state.value,
                duration_ms=round((perf_counter() - start) * 1000, 2),
                **result.counts(),
            )
            return result
        finally:
            unbind_context("resource_id")

    def _validate(self, notification: ChangeNotification) -> None:
        if not verify_client_state(notification.client_state, self._settings.client_state):
            if not notification.client_state:
                raise AuthenticityError("clientState missing from notification")
            raise AuthenticityError("clientState mismatch")

    async def _run(self, notification: ChangeNotification, log: Any) -> NotificationResult:
        def finish(state: ProcessingState, error: str | None = None, **kwargs: Any) -> NotificationResult:
            return NotificationResult(
                state=state,
                resource_id=notification.resource_id,
                error=error,
                dry_run=self._dry_run,
                **kwargs,
            )

        state = ProcessingState.VALIDATING
        log.debug("sync.state", state=state.value)
        try:
            self._validate(notification)
        except AuthenticityError as e:
            log.warning("sync.notification.client_state_mismatch", error=str(e))
            return finish(ProcessingState.REJECTED, error=str(e))
        if not notification.member_delta:
            log.info("sync.notification.empty_delta")
            return finish(ProcessingState.COMPLETED)

        state = ProcessingState.TOKEN_ACQUISITION
        log.debug("sync.state", state=state.value)
        try:
            token = await self._token_provider.acquire_token()
        except CredentialAcquisitionError as e:
            log.error("sync.notification.token_failed", error=str(e))
            return finish(ProcessingState.FAILED, error=str(e))

        state = ProcessingState.PARTITIONING
        removed_ids, added_ids = partition_delta(notification)
        log.info(
            "sync.notification.partitioned",
            state=state.value,
            removals=len(removed_ids),
            additions=len(added_ids),
        )

        semaphore = asyncio.Semaphore(max(1, self._settings.max_concurrency))
        results: list[RegionResult] = []
        skipped: list[SkippedMember] = []

        for state, member_ids, removed in (
            (ProcessingState.PROCESSING_REMOVALS, removed_ids, True),
            (ProcessingState.PROCESSING_ADDITIONS, added_ids, False),
        ):
            log.debug("sync.state", state=state.value, members=len(member_ids))
            phase_results, phase_skipped = await self._run_phase(token, member_ids, removed, semaphore)
            results.extend(phase_results)
            skipped.extend(phase_skipped)

        return finish(ProcessingState.COMPLETED, results=results, skipped=skipped)

    async def _run_phase(
        self,
        token: str,
        member_ids: list[str],
        removed: bool,
        semaphore: asyncio.Semaphore,
    ) -> tuple[list[RegionResult], list[SkippedMember]]:
        if not member_ids:
            return [], []
        tracer = get_tracer()
        phase = "removals" if removed else "additions"
        results: list[RegionResult] = []
        skipped: list[SkippedMember] = []
        with tracer.start_as_current_span(f"phase_{phase}", attributes={"sync.members": len(member_ids)}):
            gathered = await asyncio.gather(
                *(self._process_member(token, member_id, removed, semaphore) for member_id in member_ids),
                return_exceptions=True,
            )
        for member_id, outcome in zip(member_ids, gathered):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(
                    "sync.member.unexpected_error",
                    member_id=member_id,
                    removed=removed,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                skipped.append(
                    SkippedMember(member_id=member_id, removed=removed, reason=f"unexpected error: {outcome}")
                )
                continue
            member_results, member_skipped = outcome
            results.extend(member_results)
            if member_skipped is not None:
                skipped.append(member_skipped)
        return results, skipped

    async def _process_member(
        self,
        token: str,
        member_id: str,
        removed: bool,
        semaphore: asyncio.Semaphore,
    ) -> tuple[list[RegionResult], SkippedMember | None]:
        log = logger.bind(member_id=member_id, removed=removed)
        try:
            async with semaphore:
                user = await self._resolver.resolve_user(token, member_id)
        except IdentityResolutionError as e:
            log.warning("sync.member.resolve_failed", reason=e.reason)
            return [], SkippedMember(member_id=member_id, removed=removed, reason=e.reason)

        regions = self.regions
        gathered = await asyncio.gather(
            *(self._reconcile_region(user, member_id, region, removed, semaphore) for region in regions),
            return_exceptions=True,
        )
        results: list[RegionResult] = []
        for region, outcome in zip(regions, gathered):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                log.error(
                    "sync.region.unexpected_error",
                    region=region.value,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                outcome = RegionResult(
                    member_id=member_id,
                    email=user.email,
                    region=region.value,
                    removed=removed,
                    outcome=SyncOutcome.FAILED,
                    reason=f"unexpected error: {outcome}",
                )
            results.append(outcome)
        return results, None

    async def _reconcile_region(
        self,
        user: DirectoryUser,
        member_id: str,
        region: Region,
        removed: bool,
        semaphore: asyncio.Semaphore,
    ) -> RegionResult:
        email = user.email
        org_domain = self._settings.org_domain
        log = logger.bind(member_id=member_id, email=email, region=region.value, removed=removed)

        def cell(outcome: SyncOutcome, reason: str | None = None) -> RegionResult:
            return RegionResult(
                member_id=member_id,
                email=email,
                region=region.value,
                removed=removed,
                outcome=outcome,
                reason=reason,
            )

        async with semaphore:
            try:
                accounts = await self._directory.list_users(org_domain, region)
            except RegionalDirectoryError as e:
                log.warning("sync.region.list_failed", reason=e.reason)
                return cell(SyncOutcome.FAILED, str(e))

            match = next((account for account in accounts if account.matches(email)), None)
            present = match is not None

            if removed and not present:
                log.debug("sync.region.already_absent")
                return cell(SyncOutcome.ALREADY_ABSENT)
            if not removed and present:
                log.debug("sync.region.already_present")
                return cell(SyncOutcome.ALREADY_PRESENT)

            if self._dry_run:
                action = "delete" if removed else "create"
                log.info("sync.region.dry_run", action=action)
                return cell(SyncOutcome.DELETED if removed else SyncOutcome.CREATED, "dry run")

            try:
                if removed:
                    # the stored address, which may differ in case from the UPN
                    await self._directory.delete_user(org_domain, region, match.primary_email)
                else:
                    first_name, last_name = account_names(user)
                    await self._directory.create_user(
                        org_domain,
                        region,
                        first_name,
                        last_name,
                        email,
                        user_type=self._settings.account_type,
                    )
            except RegionalDirectoryError as e:
                log.warning("sync.region.mutation_failed", operation=e.operation, reason=e.reason)
                return cell(SyncOutcome.FAILED, str(e))

        if removed:
            log.info("sync.region.deleted")
            return cell(SyncOutcome.DELETED)
        log.info("sync.region.created")
        return cell(SyncOutcome.CREATED)
