"""
Tests for the arq jobs. Jobs are plain coroutines; the worker context carries
the services under test.
"""
import asyncio

import redis

from standing.engine.onboarding import SupplierAccountStatus
from standing.workers.jobs import recompute_standing, refresh_all_standings, refresh_supplier_tier
from standing.workers.worker_settings import WorkerSettings

from conftest import drive_below_floor, seed_counters


class TestJobs:

    def test_recompute_job(self, services):
        result = asyncio.run(recompute_standing({"services": services}, "client-1"))
        assert result == {"user_id": "client-1", "safety_status": "safe", "safety_score": 100.0}

    def test_tier_job(self, services, active_supplier):
        result = asyncio.run(refresh_supplier_tier({"services": services}, active_supplier))
        assert result == {"supplier_id": active_supplier, "tier": "basic"}


class TestSweep:

    def test_sweep_skips_admins_and_refreshes_supplier_tiers(self, services, active_supplier):
        result = asyncio.run(refresh_all_standings({"services": services}))
        # three clients, two suppliers; only supplier-1 has a supplier record
        assert result == {"recomputed": 5, "tiers_refreshed": 1, "failed": 0}

    def test_sweep_lifts_expired_suspension(self, services, active_supplier, clock):
        services.standing.force_suspend(active_supplier, "admin-1", "Cooling off", duration_days=2)
        assert services.onboarding.get(active_supplier).account_status == SupplierAccountStatus.SUSPENDED

        clock.advance(days=3)
        asyncio.run(refresh_all_standings({"services": services}))
        assert services.standing.get_standing(active_supplier).safety_status.value == "safe"
        assert services.onboarding.get(active_supplier).account_status == SupplierAccountStatus.ACTIVE

    def test_sweep_suspends_users_whose_numbers_moved(self, services):
        drive_below_floor(services, "supplier-2")
        asyncio.run(refresh_all_standings({"services": services}))
        assert services.standing.get_standing("supplier-2").safety_status.value == "suspended"

    def test_sweep_survives_a_failing_user(self, services, store):
        store.put("users", "broken", {"user_id": "broken", "role": "client"})
        seed_counters(store, "broken", total_reviews=-1)
        result = asyncio.run(refresh_all_standings({"services": services}))
        assert result["failed"] == 1
        assert result["recomputed"] == 5

    def test_sweep_survives_store_errors(self, services, monkeypatch):
        recompute = services.standing.recompute

        def flaky(user_id, *args, **kwargs):
            if user_id == "client-2":
                raise redis.ConnectionError("connection reset")
            return recompute(user_id, *args, **kwargs)

        monkeypatch.setattr(services.standing, "recompute", flaky)
        result = asyncio.run(refresh_all_standings({"services": services}))
        assert result == {"recomputed": 4, "tiers_refreshed": 0, "failed": 1}

    def test_sweep_survives_malformed_documents(self, services, store):
        # Supplier record without its status fields
        store.put("suppliers", "supplier-2", {"supplier_id": "supplier-2"})
        result = asyncio.run(refresh_all_standings({"services": services}))
        assert result == {"recomputed": 4, "tiers_refreshed": 0, "failed": 1}


class TestWorkerSettings:

    def test_hourly_sweep_registered(self):
        cron = WorkerSettings.cron_jobs[0]
        assert cron.name.endswith("refresh_all_standings")
        assert cron.minute == {0}
        assert cron.unique is True
        assert recompute_standing in WorkerSettings.functions
