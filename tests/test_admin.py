"""
Unit tests for the admin gate and game settings.
"""
import pytest

from qrhunt.admin import check_secret, hash_secret
from qrhunt.errors import InvalidConfiguration, NotFound, Unauthorized
from tests.conftest import ADMIN_SECRET


class TestSecretHashing:
    """Tests for hash_secret / check_secret."""

    def test_hash_is_salted_and_not_plaintext(self):
        first = hash_secret("open sesame", 1000)
        second = hash_secret("open sesame", 1000)

        assert "open sesame" not in first
        assert first != second
        assert first.startswith("pbkdf2_sha256$1000$")

    def test_check_is_exact(self):
        encoded = hash_secret("Open Sesame", 1000)

        assert check_secret("Open Sesame", encoded) is True
        assert check_secret("open sesame", encoded) is False
        assert check_secret("Open Sesame ", encoded) is False

    def test_unreadable_hash_never_matches(self):
        assert check_secret("anything", "garbage") is False
        assert check_secret("anything", "md5$1$00$00") is False


class TestVerifySecret:
    """Tests for verify_admin_secret."""

    @pytest.mark.asyncio
    async def test_false_before_settings_exist(self, service):
        assert await service.verify_admin_secret("") is False
        assert await service.verify_admin_secret(ADMIN_SECRET) is False

    @pytest.mark.asyncio
    async def test_after_initialize(self, service):
        await service.initialize_settings(5, 100, ADMIN_SECRET)

        assert await service.verify_admin_secret(ADMIN_SECRET) is True
        assert await service.verify_admin_secret(ADMIN_SECRET.upper()) is False
        assert await service.verify_admin_secret(None) is False

    @pytest.mark.asyncio
    async def test_settings_never_expose_secret(self, service, db):
        await service.initialize_settings(5, 100, ADMIN_SECRET)

        public = await service.get_settings()

        assert public == {"total_nodes": 5, "game_active": True, "points_per_node": 100}
        async with db.read() as conn:
            stored = await db.fetch_settings(conn)
        assert ADMIN_SECRET not in stored.admin_secret_hash


class TestSettings:
    """Tests for initialize/update/toggle."""

    @pytest.mark.asyncio
    async def test_get_settings_before_init(self, service):
        assert await service.get_settings() is None

    @pytest.mark.asyncio
    async def test_reinitialize_requires_current_secret(self, service):
        await service.initialize_settings(5, 100, ADMIN_SECRET)

        with pytest.raises(Unauthorized):
            await service.initialize_settings(8, 50, "hijack")
        with pytest.raises(Unauthorized):
            await service.initialize_settings(8, 50, "hijack", current_secret="wrong")

        assert await service.verify_admin_secret(ADMIN_SECRET) is True

        await service.initialize_settings(8, 50, "rotated", current_secret=ADMIN_SECRET)
        assert await service.verify_admin_secret("rotated") is True
        assert (await service.get_settings())["total_nodes"] == 8

    @pytest.mark.asyncio
    async def test_reinitialize_reactivates_game(self, service):
        await service.initialize_settings(5, 100, ADMIN_SECRET)
        await service.toggle_active(ADMIN_SECRET, False)

        await service.initialize_settings(5, 100, ADMIN_SECRET, current_secret=ADMIN_SECRET)

        assert (await service.get_settings())["game_active"] is True

    @pytest.mark.parametrize("total_nodes, points", [(0, 100), (-1, 100), (5, -1), ("5", 100), (True, 100)])
    @pytest.mark.asyncio
    async def test_invalid_values(self, service, total_nodes, points):
        with pytest.raises(InvalidConfiguration):
            await service.initialize_settings(total_nodes, points, ADMIN_SECRET)

    @pytest.mark.asyncio
    async def test_blank_secret_rejected(self, service):
        with pytest.raises(InvalidConfiguration):
            await service.initialize_settings(5, 100, "   ")

    @pytest.mark.asyncio
    async def test_update_overwrites_fields_and_keeps_secret(self, service):
        await service.initialize_settings(5, 100, ADMIN_SECRET)

        updated = await service.update_settings(ADMIN_SECRET, 7, False, 20)

        assert updated == {"total_nodes": 7, "game_active": False, "points_per_node": 20}
        assert await service.verify_admin_secret(ADMIN_SECRET) is True

    @pytest.mark.asyncio
    async def test_update_can_rotate_secret(self, service):
        await service.initialize_settings(5, 100, ADMIN_SECRET)

        await service.update_settings(ADMIN_SECRET, 5, True, 100, new_admin_secret="next")

        assert await service.verify_admin_secret(ADMIN_SECRET) is False
        assert await service.verify_admin_secret("next") is True

    @pytest.mark.asyncio
    async def test_update_is_all_or_nothing(self, service):
        await service.initialize_settings(5, 100, ADMIN_SECRET)

        with pytest.raises(InvalidConfiguration):
            await service.update_settings(ADMIN_SECRET, 9, False, -5)

        assert await service.get_settings() == {
            "total_nodes": 5, "game_active": True, "points_per_node": 100,
        }

    @pytest.mark.asyncio
    async def test_update_requires_secret(self, service):
        await service.initialize_settings(5, 100, ADMIN_SECRET)
        with pytest.raises(Unauthorized):
            await service.update_settings("nope", 9, True, 100)

    @pytest.mark.asyncio
    async def test_toggle_only_touches_active_flag(self, service):
        await service.initialize_settings(5, 100, ADMIN_SECRET)

        paused = await service.toggle_active(ADMIN_SECRET, False)
        assert paused == {"total_nodes": 5, "game_active": False, "points_per_node": 100}

        resumed = await service.toggle_active(ADMIN_SECRET, True)
        assert resumed["game_active"] is True

    @pytest.mark.asyncio
    async def test_toggle_without_settings(self, service):
        with pytest.raises(NotFound):
            await service.admin.toggle_active(False)
