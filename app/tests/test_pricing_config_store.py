import pytest
from decimal import Decimal
from sqlalchemy import func, update
from sqlalchemy.future import select

from app.core.exceptions import (
    ActiveConfigMissingError,
    ConcurrentUpdateError,
    NotFoundError,
    ValidationError,
)
from app.models.pricing_config import PricingConfig
from app.models.pricing_config_history import PricingConfigHistory
from app.schemas.pricing_config import DEFAULT_PRICING_VALUES
from app.services import pricing_config as store


async def history_count(db, config_id):
    res = await db.execute(
        select(func.count()).select_from(PricingConfigHistory)
        .where(PricingConfigHistory.config_id == config_id)
    )
    return res.scalar_one()


async def active_count(db):
    res = await db.execute(
        select(func.count()).select_from(PricingConfig).where(PricingConfig.is_active.is_(True))
    )
    return res.scalar_one()


class TestActiveConfig:

    @pytest.mark.asyncio
    async def test_get_active_config(self, db_session, active_config):
        config = await store.get_active_config(db_session)

        assert config.id == active_config.id
        assert config.is_active is True
        assert config.version == 1
        assert config.base_rate_per_mile == Decimal("0.95")
        assert Decimal(config.vehicle_type_multipliers["heavy"]) == Decimal("2.35")

    @pytest.mark.asyncio
    async def test_missing_active_config(self, db_session):
        with pytest.raises(ActiveConfigMissingError) as exc:
            await store.get_active_config(db_session)
        assert exc.value.code == "PRICING_CONFIG_MISSING"
        assert exc.value.status_code == 500

    @pytest.mark.asyncio
    async def test_get_unknown_config(self, db_session):
        with pytest.raises(NotFoundError):
            await store.get_config(db_session, 999)


@pytest.mark.audit
class TestUpdateConfig:

    @pytest.mark.asyncio
    async def test_update_bumps_version_and_records_history(self, db_session, active_config):
        config_id = active_config.id
        updated = await store.update_config(
            db_session,
            config_id,
            {"current_fuel_price": Decimal("4.25"), "surge_enabled": True, "surge_multiplier": Decimal("1.15")},
            reason="Diesel spike",
            changed_by="admin_1",
        )

        assert updated.version == 2
        assert updated.current_fuel_price == Decimal("4.25")
        assert updated.surge_multiplier == Decimal("1.15")
        assert updated.updated_by == "admin_1"

        history = await store.get_config_history(db_session, config_id)
        assert len(history) == 1
        entry = history[0]
        assert entry.changed_fields == ["current_fuel_price", "surge_enabled", "surge_multiplier"]
        assert entry.change_reason == "Diesel spike"
        assert entry.changed_by == "admin_1"
        assert Decimal(entry.previous_values["current_fuel_price"]) == Decimal("3.70")
        assert Decimal(entry.new_values["current_fuel_price"]) == Decimal("4.25")
        assert entry.previous_values["surge_enabled"] is False
        assert entry.new_values["surge_enabled"] is True

    @pytest.mark.asyncio
    async def test_changed_fields_exclude_unchanged_values(self, db_session, active_config):
        config_id = active_config.id
        await store.update_config(
            db_session,
            config_id,
            {"min_quote": Decimal("150.00"), "base_rate_per_mile": Decimal("1.05")},
            reason="Rate review",
        )

        history = await store.get_config_history(db_session, config_id)
        assert history[0].changed_fields == ["base_rate_per_mile"]
        assert "min_quote" not in history[0].new_values

    @pytest.mark.asyncio
    async def test_update_multiplier_map(self, db_session, active_config):
        config_id = active_config.id
        multipliers = dict(DEFAULT_PRICING_VALUES["vehicle_type_multipliers"])
        multipliers["luxury"] = Decimal("2.10")

        updated = await store.update_config(
            db_session, config_id, {"vehicle_type_multipliers": multipliers}, reason="Luxury demand"
        )

        assert Decimal(updated.vehicle_type_multipliers["luxury"]) == Decimal("2.10")
        history = await store.get_config_history(db_session, config_id)
        assert history[0].new_values["vehicle_type_multipliers"]["luxury"] == "2.10"

    @pytest.mark.asyncio
    async def test_no_op_update_writes_nothing(self, db_session, active_config):
        config_id = active_config.id
        result = await store.update_config(
            db_session, config_id, {"min_quote": Decimal("150")}, reason="No change"
        )

        assert result.version == 1
        assert await history_count(db_session, config_id) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("changes", [
        {"surge_multiplier": Decimal("0.5")},
        {"surge_multiplier": Decimal("11")},
        {"min_quote": Decimal("-1")},
        {"base_rate_per_mile": Decimal("0")},
        {"current_fuel_price": "NaN"},
        {"surge_enabled": "yes"},
        {"vehicle_type_multipliers": {}},
        {"vehicle_type_multipliers": {"sedan": Decimal("0")}},
        {"delivery_type_multipliers": {"overnight": Decimal("2")}},
        {"delivery_type_multipliers": {"expedited": Decimal("6")}},
        {"vehicle_type_multipliers": {"sedan": Decimal("11")}},
        {"surge_multiplier": Decimal("1.15555")},
        {"min_quote": Decimal("150.001")},
        {"min_quote": Decimal("10000000000")},
        {"base_rate_per_mile": Decimal("1000000")},
        {"fuel_adjustment_per_dollar": Decimal("30")},
        {"base_fuel_price": Decimal("40.00")},
        {"version": 10},
        {"is_active": False},
    ])
    async def test_invalid_update_leaves_store_unchanged(self, db_session, active_config, changes):
        config_id = active_config.id
        with pytest.raises(ValidationError):
            await store.update_config(db_session, config_id, changes, reason="Bad edit")

        config = await store.get_config(db_session, config_id)
        assert config.version == 1
        assert config.surge_multiplier == Decimal("1.00")
        assert config.min_quote == Decimal("150.00")
        assert config.is_active is True
        assert await history_count(db_session, config_id) == 0

    @pytest.mark.asyncio
    async def test_extra_precision_rejected_before_write(self, db_session, active_config):
        config_id = active_config.id
        for reason in ("Holiday surge", "Holiday surge again"):
            with pytest.raises(ValidationError) as exc:
                await store.update_config(
                    db_session, config_id, {"surge_multiplier": Decimal("1.15555")}, reason=reason
                )
            assert exc.value.field == "surge_multiplier"

        config = await store.get_config(db_session, config_id)
        assert config.version == 1
        assert await history_count(db_session, config_id) == 0

    @pytest.mark.asyncio
    async def test_repeated_update_is_recorded_once(self, db_session, active_config):
        config_id = active_config.id
        for reason in ("Holiday surge", "Holiday surge again"):
            await store.update_config(
                db_session, config_id, {"surge_multiplier": Decimal("1.155000")}, reason=reason
            )

        config = await store.get_config(db_session, config_id)
        assert config.version == 2
        assert config.surge_multiplier == Decimal("1.155")
        history = await store.get_config_history(db_session, config_id)
        assert [h.change_reason for h in history] == ["Holiday surge"]
        assert history[0].new_values["surge_multiplier"] == "1.1550"

    @pytest.mark.asyncio
    async def test_fuel_settings_checked_against_stored_values(self, db_session, active_config):
        config_id = active_config.id
        await store.update_config(
            db_session, config_id, {"fuel_adjustment_per_dollar": Decimal("25")}, reason="Max sensitivity"
        )

        # 25%/$ with fuel $4.00 under base would take the quote below zero
        with pytest.raises(ValidationError) as exc:
            await store.update_config(
                db_session, config_id, {"base_fuel_price": Decimal("7.70")}, reason="New reference"
            )
        assert exc.value.field == "fuel_adjustment_per_dollar"
        assert (await store.get_config(db_session, config_id)).base_fuel_price == Decimal("3.70")

    @pytest.mark.asyncio
    async def test_update_unknown_config(self, db_session, active_config):
        with pytest.raises(NotFoundError):
            await store.update_config(db_session, 999, {"min_quote": Decimal("10")}, reason="Missing")

    @pytest.mark.asyncio
    async def test_each_update_adds_one_history_row(self, db_session, active_config):
        config_id = active_config.id
        for i in range(1, 4):
            await store.update_config(
                db_session,
                config_id,
                {"current_fuel_price": Decimal("3.70") + Decimal(i) / 10},
                reason=f"change {i}",
            )

        config = await store.get_config(db_session, config_id)
        assert config.version == 4
        history = await store.get_config_history(db_session, config_id)
        assert [h.change_reason for h in history] == ["change 3", "change 2", "change 1"]

    @pytest.mark.asyncio
    async def test_history_limit(self, db_session, active_config):
        config_id = active_config.id
        for i in range(1, 4):
            await store.update_config(
                db_session, config_id, {"min_quote": Decimal(100 + i)}, reason=f"change {i}"
            )

        history = await store.get_config_history(db_session, config_id, limit=2)
        assert [h.change_reason for h in history] == ["change 3", "change 2"]

    @pytest.mark.asyncio
    async def test_history_for_unknown_config(self, db_session):
        with pytest.raises(NotFoundError):
            await store.get_config_history(db_session, 999)


class TestConcurrentUpdates:

    @pytest.mark.asyncio
    async def test_retries_after_version_conflict(self, db_session, session_factory, active_config, monkeypatch):
        config_id = active_config.id
        original = store._compare_and_swap
        attempts = []

        async def racing_compare_and_swap(db, cid, expected_version, values):
            attempts.append(expected_version)
            if len(attempts) == 1:
                # another instance commits between our read and our write
                async with session_factory() as other:
                    await other.execute(
                        update(PricingConfig)
                        .where(PricingConfig.id == cid)
                        .values(notes="edited elsewhere", version=PricingConfig.version + 1)
                    )
                    await other.commit()
            return await original(db, cid, expected_version, values)

        monkeypatch.setattr(store, "_compare_and_swap", racing_compare_and_swap)

        updated = await store.update_config(
            db_session, config_id, {"surge_enabled": True}, reason="Weekend surge"
        )

        assert attempts == [1, 2]
        assert updated.version == 3
        assert updated.surge_enabled is True
        assert updated.notes == "edited elsewhere"

        history = await store.get_config_history(db_session, config_id)
        assert [h.change_reason for h in history] == ["Weekend surge"]
        assert history[0].changed_fields == ["surge_enabled"]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, db_session, active_config, monkeypatch):
        config_id = active_config.id
        attempts = []

        async def always_conflicts(db, cid, expected_version, values):
            attempts.append(expected_version)
            return False

        monkeypatch.setattr(store, "_compare_and_swap", always_conflicts)
        monkeypatch.setattr(store.settings, "PRICING_UPDATE_MAX_RETRIES", 3)

        with pytest.raises(ConcurrentUpdateError):
            await store.update_config(
                db_session, config_id, {"min_quote": Decimal("99")}, reason="Lost race"
            )

        assert len(attempts) == 3
        config = await store.get_config(db_session, config_id)
        assert config.version == 1
        assert config.min_quote == Decimal("150.00")
        assert await history_count(db_session, config_id) == 0


class TestCreateAndActivate:

    @pytest.mark.asyncio
    async def test_create_inactive_config(self, db_session, active_config):
        draft = await store.create_config(
            db_session, {"min_quote": Decimal("200.00"), "notes": "Winter draft"}, created_by="admin_1"
        )

        assert draft.is_active is False
        assert draft.version == 1
        assert draft.created_by == "admin_1"

        active = await store.get_active_config(db_session)
        assert active.id == active_config.id

    @pytest.mark.asyncio
    async def test_create_as_active_replaces_current(self, db_session, active_config):
        old_id = active_config.id
        fields = dict(DEFAULT_PRICING_VALUES)
        fields["min_quote"] = Decimal("175.00")

        new = await store.create_config(db_session, fields, created_by="admin_1", set_as_active=True)

        assert await active_count(db_session) == 1
        active = await store.get_active_config(db_session)
        assert active.id == new.id
        assert active.min_quote == Decimal("175.00")

        old = await store.get_config(db_session, old_id)
        assert old.is_active is False
        assert old.version == 2

    @pytest.mark.asyncio
    async def test_create_rejects_invalid_values(self, db_session, active_config):
        with pytest.raises(ValidationError):
            await store.create_config(
                db_session, {"surge_multiplier": Decimal("0.8")}, set_as_active=True
            )

        assert await active_count(db_session) == 1
        configs = await store.list_configs(db_session)
        assert len(configs) == 1

    @pytest.mark.asyncio
    async def test_create_rejects_non_positive_fuel_multiplier(self, db_session, active_config):
        with pytest.raises(ValidationError):
            await store.create_config(
                db_session,
                {"current_fuel_price": Decimal("1.00"), "base_fuel_price": Decimal("6.00"),
                 "fuel_adjustment_per_dollar": Decimal("20")},
            )

        configs = await store.list_configs(db_session)
        assert len(configs) == 1

    @pytest.mark.asyncio
    async def test_activate_switches_active_row(self, db_session, active_config):
        old_id = active_config.id
        draft = await store.create_config(db_session, {"min_quote": Decimal("200.00")})
        draft_id = draft.id

        activated = await store.activate_config(db_session, draft_id, changed_by="admin_1")

        assert activated.is_active is True
        assert activated.version == 2
        assert await active_count(db_session) == 1
        assert (await store.get_active_config(db_session)).id == draft_id
        assert (await store.get_config(db_session, old_id)).is_active is False

        history = await store.get_config_history(db_session, draft_id)
        assert len(history) == 1
        assert history[0].changed_fields == ["is_active"]
        assert history[0].changed_by == "admin_1"

    @pytest.mark.asyncio
    async def test_activate_already_active_is_noop(self, db_session, active_config):
        config_id = active_config.id
        config = await store.activate_config(db_session, config_id)

        assert config.version == 1
        assert await history_count(db_session, config_id) == 0

    @pytest.mark.asyncio
    async def test_activate_unknown_config(self, db_session, active_config):
        with pytest.raises(NotFoundError):
            await store.activate_config(db_session, 999)

    @pytest.mark.asyncio
    async def test_list_configs(self, db_session, active_config):
        await store.create_config(db_session, {"notes": "draft"})

        configs = await store.list_configs(db_session)
        assert len(configs) == 2
        assert sum(1 for c in configs if c.is_active) == 1
