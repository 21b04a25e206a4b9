"""SQLStore against an in-memory SQLite database (aiosqlite), including the service flows on top of it."""

import asyncio
import unittest
from datetime import timedelta

from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from factories import PASSWORD, FakeClock, add_user, build_services, identity
from studio.core.database import build_session_factory
from studio.core.exceptions import InvalidOrExpiredToken, InvalidToken
from studio.core.permissions import Role
from studio.models import Base
from studio.services.admin import Provider
from studio.services.cleanup import run_cleanup
from studio.storage.errors import ConstraintViolation
from studio.storage.sql import SQLStore, sql_store_provider


class SQLStoreTestCase(unittest.TestCase):
    """Each test body gets a fresh schema, a store and the session factory behind it."""

    def setUp(self) -> None:
        self.clock = FakeClock()

    def run_scenario(self, body) -> None:
        async def scenario() -> None:
            engine = create_async_engine(
                "sqlite+aiosqlite://",
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            factory = build_session_factory(engine)
            try:
                async with factory() as session:
                    await body(SQLStore(session, self.clock), factory)
            finally:
                await engine.dispose()

        asyncio.run(scenario())


class TestSQLUsers(SQLStoreTestCase):
    def test_create_and_fetch(self) -> None:
        async def body(store, _factory):
            user = await store.create_user("Alice@Example.com", "hash")
            await store.commit()
            self.assertEqual(user.email, "alice@example.com")
            self.assertEqual(user.role, Role.USER)
            self.assertIsNotNone(user.created_at.tzinfo)
            fetched = await store.get_user_by_email("ALICE@example.com")
            self.assertEqual(fetched.id, user.id)
            self.assertEqual(fetched.created_at, self.clock.now)

        self.run_scenario(body)

    def test_duplicate_email(self) -> None:
        async def body(store, _factory):
            await store.create_user("alice@example.com", "hash")
            await store.commit()
            with self.assertRaises(ConstraintViolation):
                await store.create_user("alice@example.com", "hash")
            # The session is usable again after the rollback.
            await store.create_user("bob@example.com", "hash")
            await store.commit()
            self.assertEqual(await store.count_users(), 2)

        self.run_scenario(body)

    def test_update_and_record_login(self) -> None:
        async def body(store, _factory):
            user = await store.create_user("alice@example.com", "hash")
            updated = await store.update_user(user.id, role=Role.ADMIN, is_banned=True)
            self.assertEqual(updated.role, Role.ADMIN)
            await store.record_login(user.id, self.clock.now)
            await store.record_login(user.id, self.clock.now)
            fetched = await store.get_user(user.id)
            self.assertEqual(fetched.login_count, 2)
            self.assertTrue(fetched.is_banned)
            self.assertIsNone(await store.update_user("missing", is_active=False))
            with self.assertRaises(ValueError):
                await store.update_user(user.id, login_count=10)

        self.run_scenario(body)

    def test_delete_cascades_and_keeps_audit_rows(self) -> None:
        async def body(store, _factory):
            user = await store.create_user("alice@example.com", "hash")
            await store.upsert_profile(user.id, first_name="Alice")
            await store.add_refresh_token(user.id, "h1", self.clock.now + timedelta(days=1))
            await store.add_secret_token(user.id, "PASSWORD_RESET", "s1", self.clock.now)
            await store.create_photo(user.id, "https://cdn.example/a.png")
            await store.create_api_key(user.id, "k", "openai", "enc", "prev")
            await store.add_audit_log("USER_UPDATE", user_id=user.id)
            await store.commit()

            self.assertTrue(await store.delete_user(user.id))
            await store.commit()
            self.assertIsNone(await store.get_user(user.id))
            self.assertIsNone(await store.get_profile(user.id))
            self.assertEqual(await store.count_refresh_tokens(user.id), 0)
            self.assertEqual(await store.count_photos(), 0)
            self.assertEqual(await store.list_api_keys(user.id), [])
            logs, total = await store.list_audit_logs()
            self.assertEqual(total, 1)
            self.assertIsNone(logs[0].user_id)
            self.assertFalse(await store.delete_user(user.id))

        self.run_scenario(body)

    def test_list_users_search_joins_profile(self) -> None:
        async def body(store, _factory):
            alice = await store.create_user("alice@example.com", "hash")
            self.clock.advance(seconds=1)
            bob = await store.create_user("bob@example.com", "hash", Role.ADMIN)
            await store.upsert_profile(bob.id, last_name="Zimmermann")
            await store.commit()

            users, total = await store.list_users()
            self.assertEqual([u.id for u in users], [bob.id, alice.id])
            self.assertEqual(total, 2)
            users, total = await store.list_users(search="zimmer")
            self.assertEqual(([u.id for u in users], total), ([bob.id], 1))
            _, total = await store.list_users(role=Role.USER)
            self.assertEqual(total, 1)

        self.run_scenario(body)

    def test_search_wildcards_match_literally(self) -> None:
        async def body(store, _factory):
            underscored = await store.create_user("a_c@example.com", "hash")
            await store.create_user("abc@example.com", "hash")
            await store.create_photo(underscored.id, "https://cdn.example/1.png", title="100% done")
            await store.create_photo(underscored.id, "https://cdn.example/2.png", title="1000 done")
            await store.commit()

            users, total = await store.list_users(search="a_c")
            self.assertEqual(([u.id for u in users], total), ([underscored.id], 1))
            _, total = await store.list_users(search="%")
            self.assertEqual(total, 0)
            photos, total = await store.list_photos(underscored.id, search="100%")
            self.assertEqual(([p.title for p in photos], total), (["100% done"], 1))

        self.run_scenario(body)


class TestSQLTokens(SQLStoreTestCase):
    def test_refresh_token_consumed_once(self) -> None:
        async def body(store, factory):
            user = await store.create_user("alice@example.com", "hash")
            await store.add_refresh_token(
                user.id, "h1", self.clock.now + timedelta(days=1), ip_address="10.0.0.1"
            )
            await store.commit()

            record = await store.consume_refresh_token("h1", self.clock.now)
            await store.commit()
            self.assertEqual(record.user_id, user.id)
            self.assertEqual(record.ip_address, "10.0.0.1")

            async with factory() as other_session:
                self.assertIsNone(
                    await SQLStore(other_session, self.clock).consume_refresh_token("h1", self.clock.now)
                )

        self.run_scenario(body)

    def test_expired_refresh_token_is_removed_but_not_returned(self) -> None:
        async def body(store, _factory):
            user = await store.create_user("alice@example.com", "hash")
            await store.add_refresh_token(user.id, "h1", self.clock.now + timedelta(seconds=5))
            await store.commit()
            self.assertIsNone(
                await store.consume_refresh_token("h1", self.clock.now + timedelta(seconds=10))
            )
            self.assertEqual(await store.count_refresh_tokens(user.id), 0)

        self.run_scenario(body)

    def test_duplicate_refresh_hash(self) -> None:
        async def body(store, _factory):
            user = await store.create_user("alice@example.com", "hash")
            await store.add_refresh_token(user.id, "h1", self.clock.now)
            await store.commit()
            with self.assertRaises(ConstraintViolation):
                await store.add_refresh_token(user.id, "h1", self.clock.now)

        self.run_scenario(body)

    def test_secret_token_conditions(self) -> None:
        async def body(store, _factory):
            user = await store.create_user("alice@example.com", "hash")
            later = self.clock.now + timedelta(hours=1)
            await store.add_secret_token(user.id, "PASSWORD_RESET", "s1", later)
            await store.commit()

            self.assertIsNone(await store.consume_secret_token("s1", "EMAIL_VERIFICATION", self.clock.now))
            self.assertIsNone(await store.consume_secret_token("s1", "PASSWORD_RESET", later))
            self.assertEqual(
                await store.consume_secret_token("s1", "PASSWORD_RESET", self.clock.now), user.id
            )
            self.assertIsNone(await store.consume_secret_token("s1", "PASSWORD_RESET", self.clock.now))
            await store.commit()
            self.assertEqual(await store.purge_secret_tokens(self.clock.now), 1)

        self.run_scenario(body)


class TestSQLPhotosAndKeys(SQLStoreTestCase):
    def test_photo_search_by_title_or_tag(self) -> None:
        async def body(store, _factory):
            user = await store.create_user("alice@example.com", "hash")
            await store.create_photo(user.id, "https://cdn.example/1.png", title="Sunset", tags=("beach",))
            self.clock.advance(seconds=1)
            await store.create_photo(user.id, "https://cdn.example/2.png", title="Portrait", is_favorite=True)
            await store.commit()

            photos, total = await store.list_photos(user.id)
            self.assertEqual(total, 2)
            self.assertEqual(photos[0].title, "Portrait")
            self.assertEqual(photos[1].tags, ("beach",))
            _, total = await store.list_photos(user.id, search="SUN")
            self.assertEqual(total, 1)
            photos, _ = await store.list_photos(user.id, search="beach")
            self.assertEqual([p.title for p in photos], ["Sunset"])
            _, total = await store.list_photos(user.id, search="bea")
            self.assertEqual(total, 0)
            _, total = await store.list_photos(user.id, favorite=True)
            self.assertEqual(total, 1)

        self.run_scenario(body)

    def test_active_key_selection(self) -> None:
        async def body(store, _factory):
            owner = await store.create_user("admin@example.com", "hash", Role.ADMIN)
            first = await store.create_api_key(owner.id, "a", "openai", "enc-a", "p", is_default=True)
            self.clock.advance(seconds=1)
            second = await store.create_api_key(owner.id, "b", "openai", "enc-b", "p")
            await store.commit()

            self.assertEqual((await store.find_active_api_key("openai")).id, first.id)
            self.assertEqual(await store.clear_default_api_keys(owner.id, "openai"), 1)
            self.assertEqual((await store.find_active_api_key("openai")).id, second.id)
            await store.update_api_key(second.id, is_active=False)
            self.assertEqual((await store.find_active_api_key("openai", owner.id)).id, first.id)

            await store.record_api_key_usage(first.id, self.clock.now)
            key = await store.get_api_key(first.id, owner.id)
            self.assertEqual(key.usage_count, 1)
            self.assertEqual(key.last_used_at, self.clock.now)
            self.assertIsNone(await store.get_api_key(first.id, "someone-else"))

        self.run_scenario(body)

    def test_ping(self) -> None:
        async def body(store, _factory):
            self.assertTrue(await store.ping())

        self.run_scenario(body)


class TestServicesOverSQL(SQLStoreTestCase):
    def test_login_refresh_reset_flow(self) -> None:
        async def body(store, _factory):
            svc = build_services(store=store, clock=self.clock)
            await add_user(store)
            tokens = (await svc.sessions.login("alice@example.com", PASSWORD)).tokens
            rotated = await svc.sessions.refresh(tokens.refresh_token)
            with self.assertRaises(InvalidToken):
                await svc.sessions.refresh(tokens.refresh_token)

            await svc.auth.forgot_password("alice@example.com")
            reset = svc.mailer.password_reset[-1][1]
            await svc.auth.reset_password(reset, "N3wPassword")
            with self.assertRaises(InvalidToken):
                await svc.sessions.refresh(rotated.refresh_token)
            with self.assertRaises(InvalidOrExpiredToken):
                await svc.auth.reset_password(reset, "An0therPass")
            await svc.sessions.login("alice@example.com", "N3wPassword")

        self.run_scenario(body)

    def test_signup_verify_and_cleanup(self) -> None:
        async def body(store, _factory):
            svc = build_services(store=store, clock=self.clock)
            result = await svc.auth.signup("ada@example.com", PASSWORD, "Ada", None)
            user = await svc.auth.verify_email(svc.mailer.verification[-1][1])
            self.assertTrue(user.email_verified)
            self.assertEqual((await store.get_profile(result.user.id)).display_name, "Ada")

            self.clock.advance(days=8)
            self.assertEqual(await run_cleanup(store, self.clock), (1, 1))

        self.run_scenario(body)

    def test_api_key_round_trip(self) -> None:
        async def body(store, _factory):
            svc = build_services(store=store, clock=self.clock)
            admin = await add_user(store, "admin@example.com", Role.ADMIN)
            await svc.admin.create_api_key(identity(admin), "main", Provider.HUGGINGFACE, "hf_abcdefghijk")
            self.assertEqual(await svc.admin.resolve_api_key(Provider.HUGGINGFACE), "hf_abcdefghijk")

        self.run_scenario(body)

    def test_store_provider_yields_sql_store(self) -> None:
        async def body(_store, factory):
            provide = sql_store_provider(factory, self.clock)
            async with provide() as store:
                self.assertIsInstance(store, SQLStore)
                self.assertTrue(await store.ping())

        self.run_scenario(body)


if __name__ == "__main__":
    unittest.main()
