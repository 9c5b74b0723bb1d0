"""Tests for the delta reconciliation engine: ordering, idempotence and failure isolation."""

import asyncio
import sys
import unittest
from pathlib import Path

# Allow importing src when running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.config import Region, SyncSettings
from src.directory.models import RegionalAccount
from src.errors import (
    AuthenticityError,
    CredentialAcquisitionError,
    IdentityResolutionError,
    MembershipSyncError,
    RegionalDirectoryError,
)
from src.identity_provider.models import DirectoryUser
from src.sync.engine import ReconciliationEngine, account_names, partition_delta
from src.sync.outcomes import ProcessingState, SyncOutcome
from src.webhook.models import ChangeNotification, MemberDeltaEntry

SECRET = "s3cret"


def make_settings(regions=(Region.US1, Region.EU1), max_concurrency=1, account_type="channel_admin"):
    return SyncSettings(
        tenant_id="tenant",
        client_id="client",
        client_secret="secret",
        org_domain="example.com",
        directory_user="admin@example.com",
        directory_password="pw",
        client_state=SECRET,
        regions=list(regions),
        account_type=account_type,
        max_concurrency=max_concurrency,
    )


def make_notification(*delta, client_state=SECRET) -> ChangeNotification:
    """delta items are (member_id, removed) tuples."""
    return ChangeNotification(
        client_state=client_state,
        resource_id="group-1",
        member_delta=tuple(MemberDeltaEntry(member_id=m, removed=r) for m, r in delta),
    )


class FakeTokenProvider:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    async def acquire_token(self) -> str:
        self.calls += 1
        if self.fail:
            raise CredentialAcquisitionError("invalid_client")
        return "tok"


class FakeResolver:
    def __init__(self, users: dict[str, DirectoryUser], failing: set[str] | None = None):
        self.users = users
        self.failing = failing or set()
        self.calls: list[tuple[str, str]] = []

    async def resolve_user(self, token: str, member_id: str) -> DirectoryUser:
        self.calls.append((token, member_id))
        if member_id in self.failing or member_id not in self.users:
            raise IdentityResolutionError(member_id, "user not found")
        return self.users[member_id]


class FakeDirectory:
    """In-memory regional directory recording every call as (operation, region, email)."""

    def __init__(self, regions=(Region.US1, Region.EU1)):
        self.accounts: dict[Region, dict[str, RegionalAccount]] = {r: {} for r in regions}
        self.calls: list[tuple[str, str, str | None]] = []
        self.failures: set[tuple[str, Region]] = set()
        self.crash: set[tuple[str, Region]] = set()
        self.in_flight = 0
        self.max_in_flight = 0

    def seed(self, region: Region, email: str) -> None:
        self.accounts[region][email] = RegionalAccount(primary_email=email, firstname="x", surname="y")

    async def _enter(self, operation: str, region: Region, email: str | None) -> None:
        self.calls.append((operation, region.value, email))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
        finally:
            self.in_flight -= 1
        if (operation, region) in self.crash:
            raise RuntimeError("unexpected bug")
        if (operation, region) in self.failures:
            raise RegionalDirectoryError(operation, region.value, email, "HTTP 503")

    async def list_users(self, org_domain: str, region: Region) -> list[RegionalAccount]:
        await self._enter("list_users", region, None)
        return list(self.accounts[region].values())

    async def create_user(self, org_domain, region, first_name, last_name, email, user_type="channel_admin"):
        await self._enter("create_user", region, email)
        self.accounts[region][email] = RegionalAccount(
            primary_email=email, firstname=first_name, surname=last_name, type=user_type
        )

    async def delete_user(self, org_domain, region, email):
        await self._enter("delete_user", region, email)
        del self.accounts[region][email]

    def ops(self, operation: str) -> list[tuple[str, str, str | None]]:
        return [c for c in self.calls if c[0] == operation]


ANN = DirectoryUser(
    id="u1",
    displayName="Ann Lee",
    userPrincipalName="u1@example.com",
    givenName="Ann",
    surname="Lee",
)
BOB = DirectoryUser(id="u2", displayName="Bob Kim", userPrincipalName="u2@example.com", givenName="Bob", surname="Kim")


class EngineTestCase(unittest.TestCase):
    def build(self, settings=None, users=None, failing_users=None, token_fail=False, dry_run=False):
        settings = settings or make_settings()
        self.token = FakeTokenProvider(fail=token_fail)
        self.resolver = FakeResolver(users if users is not None else {"u1": ANN, "u2": BOB}, failing_users)
        self.directory = FakeDirectory(settings.regions)
        self.engine = ReconciliationEngine(settings, self.token, self.resolver, self.directory, dry_run=dry_run)
        return self.engine

    def process(self, notification):
        return asyncio.run(self.engine.process(notification))


class TestPipelineFailures(EngineTestCase):
    def test_client_state_mismatch_touches_nothing(self):
        self.build()
        result = self.process(make_notification(("u1", False), client_state="wrong"))
        self.assertEqual(result.state, ProcessingState.REJECTED)
        self.assertEqual(self.token.calls, 0)
        self.assertEqual(self.resolver.calls, [])
        self.assertEqual(self.directory.calls, [])

    def test_missing_client_state_rejected(self):
        self.build()
        result = self.process(make_notification(("u1", False), client_state=None))
        self.assertEqual(result.state, ProcessingState.REJECTED)
        self.assertEqual(result.error, "clientState missing from notification")
        self.assertEqual(self.token.calls, 0)

    def test_validation_raises_authenticity_error(self):
        engine = self.build()
        with self.assertRaises(AuthenticityError) as ctx:
            engine._validate(make_notification(("u1", False), client_state="wrong"))
        self.assertIsInstance(ctx.exception, MembershipSyncError)

        result = self.process(make_notification(("u1", False), client_state="wrong"))
        self.assertEqual(result.state, ProcessingState.REJECTED)
        self.assertEqual(result.error, str(ctx.exception))
        self.assertEqual(result.error, "clientState mismatch")

    def test_empty_delta_makes_no_calls(self):
        self.build()
        result = self.process(make_notification())
        self.assertEqual(result.state, ProcessingState.COMPLETED)
        self.assertTrue(result.ok)
        self.assertEqual(self.token.calls, 0)
        self.assertEqual(self.resolver.calls, [])
        self.assertEqual(self.directory.calls, [])

    def test_token_failure_is_fatal(self):
        self.build(token_fail=True)
        result = self.process(make_notification(("u1", False), ("u2", True)))
        self.assertEqual(result.state, ProcessingState.FAILED)
        self.assertIn("invalid_client", result.error)
        self.assertEqual(self.token.calls, 1)
        self.assertEqual(self.resolver.calls, [])
        self.assertEqual(self.directory.calls, [])

    def test_token_acquired_once_per_notification(self):
        self.build()
        self.process(make_notification(("u1", False), ("u2", False), ("u1", True)))
        self.assertEqual(self.token.calls, 1)
        self.assertTrue(all(token == "tok" for token, _ in self.resolver.calls))


class TestReconciliation(EngineTestCase):
    def test_add_absent_user_in_two_regions(self):
        """One list + one create per region, four directory calls in total."""
        self.build()
        result = self.process(make_notification(("u1", False)))
        self.assertEqual(result.state, ProcessingState.COMPLETED)
        self.assertEqual(len(self.directory.calls), 4)
        self.assertEqual(len(self.directory.ops("list_users")), 2)
        self.assertEqual(
            sorted(self.directory.ops("create_user")),
            [("create_user", "eu1", "u1@example.com"), ("create_user", "us1", "u1@example.com")],
        )
        for region in ("us1", "eu1"):
            region_calls = [c[0] for c in self.directory.calls if c[1] == region]
            self.assertEqual(region_calls, ["list_users", "create_user"])
        created = self.directory.accounts[Region.US1]["u1@example.com"]
        self.assertEqual((created.firstname, created.surname, created.type), ("Ann", "Lee", "channel_admin"))
        self.assertEqual({r.outcome for r in result.results}, {SyncOutcome.CREATED})

    def test_add_is_idempotent(self):
        self.build()
        first = self.process(make_notification(("u1", False)))
        second = self.process(make_notification(("u1", False)))
        self.assertEqual(len(self.directory.ops("create_user")), 2)  # one per region, first run only
        self.assertEqual({r.outcome for r in first.results}, {SyncOutcome.CREATED})
        self.assertEqual({r.outcome for r in second.results}, {SyncOutcome.ALREADY_PRESENT})
        self.assertEqual(len(self.directory.ops("list_users")), 4)

    def test_remove_absent_user_is_noop(self):
        self.build()
        for _ in range(2):
            result = self.process(make_notification(("u1", True)))
            self.assertEqual({r.outcome for r in result.results}, {SyncOutcome.ALREADY_ABSENT})
        self.assertEqual(self.directory.ops("delete_user"), [])

    def test_remove_present_user(self):
        self.build()
        self.directory.seed(Region.US1, "u1@example.com")
        result = self.process(make_notification(("u1", True)))
        by_region = {r.region: r.outcome for r in result.results}
        self.assertEqual(by_region, {"us1": SyncOutcome.DELETED, "eu1": SyncOutcome.ALREADY_ABSENT})
        self.assertEqual(self.directory.ops("delete_user"), [("delete_user", "us1", "u1@example.com")])

    def test_presence_check_ignores_email_case(self):
        self.build()
        self.directory.seed(Region.US1, "U1@Example.COM")
        result = self.process(make_notification(("u1", False)))
        by_region = {r.region: r.outcome for r in result.results}
        self.assertEqual(by_region["us1"], SyncOutcome.ALREADY_PRESENT)
        self.assertEqual(by_region["eu1"], SyncOutcome.CREATED)

    def test_delete_uses_stored_address_casing(self):
        self.build()
        self.directory.seed(Region.US1, "U1@Example.COM")
        result = self.process(make_notification(("u1", True)))
        by_region = {r.region: r.outcome for r in result.results}
        self.assertEqual(by_region, {"us1": SyncOutcome.DELETED, "eu1": SyncOutcome.ALREADY_ABSENT})
        self.assertEqual(self.directory.ops("delete_user"), [("delete_user", "us1", "U1@Example.COM")])
        self.assertEqual(self.directory.accounts[Region.US1], {})

    def test_coalesced_churn_deletes_then_recreates(self):
        self.build()
        for region in (Region.US1, Region.EU1):
            self.directory.seed(region, "u1@example.com")
        # Added entry listed first: phases, not delta order, decide
        result = self.process(make_notification(("u1", False), ("u1", True)))
        self.assertEqual(result.state, ProcessingState.COMPLETED)
        for region in ("us1", "eu1"):
            mutations = [c[0] for c in self.directory.calls if c[1] == region and c[0] != "list_users"]
            self.assertEqual(mutations, ["delete_user", "create_user"])
        outcomes = [(r.removed, r.outcome) for r in result.results if r.region == "us1"]
        self.assertEqual(outcomes, [(True, SyncOutcome.DELETED), (False, SyncOutcome.CREATED)])

    def test_all_removals_finish_before_any_addition(self):
        self.build(settings=make_settings(max_concurrency=4))
        self.directory.seed(Region.US1, "u2@example.com")
        self.directory.seed(Region.EU1, "u2@example.com")
        self.process(make_notification(("u1", False), ("u2", True)))
        ops = [c[0] for c in self.directory.calls]
        last_delete = max(i for i, op in enumerate(ops) if op == "delete_user")
        first_create = min(i for i, op in enumerate(ops) if op == "create_user")
        self.assertLess(last_delete, first_create)

    def test_duplicate_entries_collapse(self):
        self.build(settings=make_settings(max_concurrency=4))
        result = self.process(make_notification(("u1", False), ("u1", False)))
        self.assertEqual(len(self.directory.ops("create_user")), 2)
        self.assertEqual(len(result.results), 2)
        self.assertEqual(len(self.resolver.calls), 1)

    def test_configured_account_type(self):
        self.build(settings=make_settings(regions=(Region.US1,), account_type="end_user"))
        self.process(make_notification(("u1", False)))
        self.assertEqual(self.directory.accounts[Region.US1]["u1@example.com"].type, "end_user")

    def test_dry_run_lists_but_never_mutates(self):
        self.build(dry_run=True)
        self.directory.seed(Region.US1, "u2@example.com")
        result = self.process(make_notification(("u1", False), ("u2", True)))
        self.assertTrue(result.dry_run)
        self.assertEqual(self.directory.ops("create_user"), [])
        self.assertEqual(self.directory.ops("delete_user"), [])
        self.assertEqual(len(self.directory.ops("list_users")), 4)
        counts = result.counts()
        self.assertEqual(counts["created"], 2)
        self.assertEqual(counts["deleted"], 1)


class TestFailureIsolation(EngineTestCase):
    def test_list_failure_in_one_region(self):
        self.build()
        self.directory.failures.add(("list_users", Region.US1))
        result = self.process(make_notification(("u1", False)))
        self.assertEqual(result.state, ProcessingState.COMPLETED)
        by_region = {r.region: r for r in result.results}
        self.assertEqual(by_region["us1"].outcome, SyncOutcome.FAILED)
        self.assertIn("us1", by_region["us1"].reason)
        self.assertEqual(by_region["eu1"].outcome, SyncOutcome.CREATED)
        self.assertIn("u1@example.com", self.directory.accounts[Region.EU1])
        self.assertEqual(self.directory.ops("create_user"), [("create_user", "eu1", "u1@example.com")])

    def test_create_failure_in_one_region(self):
        self.build()
        self.directory.failures.add(("create_user", Region.EU1))
        result = self.process(make_notification(("u1", False), ("u2", False)))
        self.assertEqual(result.state, ProcessingState.COMPLETED)
        failed = {(r.member_id, r.region) for r in result.failed_cells}
        self.assertEqual(failed, {("u1", "eu1"), ("u2", "eu1")})
        self.assertEqual(len(self.directory.accounts[Region.US1]), 2)

    def test_unresolvable_member_is_skipped(self):
        self.build(failing_users={"u1"})
        result = self.process(make_notification(("u1", False), ("u2", False)))
        self.assertEqual(result.state, ProcessingState.COMPLETED)
        self.assertEqual([s.member_id for s in result.skipped], ["u1"])
        self.assertEqual({r.member_id for r in result.results}, {"u2"})
        self.assertNotIn(("create_user", "us1", "u1@example.com"), self.directory.calls)
        self.assertEqual(result.counts()["skipped_members"], 1)

    def test_unexpected_error_is_contained(self):
        self.build()
        self.directory.crash.add(("list_users", Region.EU1))
        result = self.process(make_notification(("u1", False)))
        self.assertEqual(result.state, ProcessingState.COMPLETED)
        by_region = {r.region: r.outcome for r in result.results}
        self.assertEqual(by_region, {"us1": SyncOutcome.CREATED, "eu1": SyncOutcome.FAILED})

    def test_concurrency_is_bounded(self):
        self.build(settings=make_settings(max_concurrency=2))
        users = {f"m{i}": DirectoryUser(id=f"m{i}", userPrincipalName=f"m{i}@example.com") for i in range(6)}
        self.resolver.users = users
        result = self.process(make_notification(*((m, False) for m in users)))
        self.assertEqual(result.counts()["created"], 12)
        self.assertLessEqual(self.directory.max_in_flight, 2)


class TestHelpers(unittest.TestCase):
    def test_partition_delta(self):
        notification = make_notification(("a", False), ("b", True), ("a", False), ("c", False), ("b", True))
        removed, added = partition_delta(notification)
        self.assertEqual(removed, ["b"])
        self.assertEqual(added, ["a", "c"])

    def test_account_names_fallbacks(self):
        self.assertEqual(account_names(ANN), ("Ann", "Lee"))
        no_given = DirectoryUser(id="x", displayName="Service Desk", userPrincipalName="desk@example.com")
        self.assertEqual(account_names(no_given), ("Service Desk", ""))
        bare = DirectoryUser(id="y", userPrincipalName="bare@example.com")
        self.assertEqual(account_names(bare), ("bare", ""))


if __name__ == "__main__":
    unittest.main()
