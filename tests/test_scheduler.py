"""Tests for BudgetSync.core.scheduler."""
from BudgetSync.core.scheduler import DEFAULT_INTERVAL_MS, SyncScheduler
from BudgetSync.core.sync import SyncOrchestrator
from BudgetSync.settings import lib
from tests.base import BaseTestCase, FakeCalendarClient, make_event, make_mapping, pump_events


class SyncSchedulerTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.set_mappings(make_mapping())
        self.client = FakeCalendarClient(ready=True, authenticated=False)
        self.client.events = [make_event('ev1')]
        self.orchestrator = SyncOrchestrator(self.store, self.settings_service, self.client)
        self.scheduler = SyncScheduler(self.orchestrator, self.client)

        self.addCleanup(self.orchestrator.teardown)
        self.addCleanup(self.scheduler.stop)
        self.addCleanup(self.client.release)

    def test_default_interval(self):
        self.assertEqual(self.scheduler.interval_ms, DEFAULT_INTERVAL_MS)
        self.assertEqual(DEFAULT_INTERVAL_MS, 5 * 60 * 1000)

    def test_trigger_runs_one_cycle_in_background(self):
        self.client.set_authenticated(True)
        self.assertTrue(self.scheduler.trigger())
        self.scheduler.stop()

        self.assertEqual(len(self.client.calls), 1)
        self.assertEqual(len(self.store.get_all_transactions()), 1)
        worker = self.scheduler.workers[0]
        self.assertEqual(worker.result.created, 1)

    def test_trigger_while_in_flight_is_dropped(self):
        self.client.set_authenticated(True)
        self.client.block_fetches()

        self.assertTrue(self.scheduler.trigger())
        self.assertTrue(self.client.fetch_started.wait(5))
        self.assertFalse(self.scheduler.trigger())
        self.assertFalse(self.scheduler.trigger())

        self.client.release()
        self.scheduler.stop()
        self.assertEqual(len(self.client.calls), 1)

    def test_manual_run_while_in_flight_is_dropped(self):
        self.client.set_authenticated(True)
        self.client.block_fetches()

        self.scheduler.trigger()
        self.assertTrue(self.client.fetch_started.wait(5))
        result = self.scheduler.run_now()
        self.assertTrue(result.dropped)

        self.client.release()
        self.scheduler.stop()
        self.assertEqual(len(self.client.calls), 1)

    def test_start_without_auth_waits(self):
        self.scheduler.start()
        self.assertTrue(self.scheduler.timer.isActive())
        self.assertEqual(self.scheduler.workers, [])
        self.scheduler.stop()
        self.assertFalse(self.scheduler.timer.isActive())
        self.assertEqual(self.client.calls, [])

    def test_start_when_signed_in_runs_immediately(self):
        self.client.set_authenticated(True)
        self.scheduler.start()
        self.scheduler.stop()
        self.assertEqual(len(self.client.calls), 1)

    def test_sign_in_triggers_a_cycle(self):
        self.scheduler.start()
        self.client.set_authenticated(True)
        self.scheduler.stop()
        self.assertEqual(len(self.client.calls), 1)

    def test_restart_after_running_cycle(self):
        self.client.set_authenticated(True)
        self.scheduler.start()
        self.scheduler.stop()
        self.scheduler.start()
        self.scheduler.workers[-1].wait()
        self.client.set_authenticated(False)
        self.scheduler.stop()
        self.assertEqual(len(self.client.calls), 2)

    def test_sign_out_does_not_trigger(self):
        self.client.set_authenticated(True)
        self.scheduler.trigger()
        self.scheduler.workers[-1].wait()

        self.scheduler.start()
        self.scheduler.workers[-1].wait()
        workers = len(self.scheduler.workers)

        self.client.set_authenticated(False)
        self.assertEqual(len(self.scheduler.workers), workers)
        self.scheduler.stop()
        self.assertEqual(len(self.client.calls), 2)

    def test_timer_runs_cycles_periodically(self):
        self.client.set_authenticated(True)
        self.scheduler.set_interval(50)
        self.scheduler.start()
        pump_events(1000)
        self.scheduler.stop()

        calls = len(self.client.calls)
        self.assertGreater(calls, 1)
        self.assertEqual(len(self.store.get_all_transactions()), 1)

        pump_events(200)
        self.assertEqual(len(self.client.calls), calls)

    def test_stop_unsubscribes(self):
        self.scheduler.start()
        self.scheduler.stop()
        self.client.set_authenticated(True)
        self.assertEqual(self.scheduler.workers, [])
        self.assertEqual(self.client.calls, [])

    def test_stop_lets_running_cycle_finish(self):
        self.client.set_authenticated(True)
        self.client.block_fetches()
        self.scheduler.trigger()
        self.assertTrue(self.client.fetch_started.wait(5))

        self.client.release()
        self.scheduler.stop()
        self.assertFalse(self.orchestrator.in_flight)
        self.assertIsNotNone(self.settings_service.snapshot().last_sync)
        self.assertEqual(len(self.store.get_all_transactions()), 1)

    def test_set_interval(self):
        self.scheduler.set_interval(1000)
        self.assertEqual(self.scheduler.interval_ms, 1000)
        with self.assertRaises(ValueError):
            self.scheduler.set_interval(0)

    def test_config_change_updates_interval(self):
        config = lib.AppConfig(self.paths)
        scheduler = SyncScheduler(self.orchestrator, self.client, config.sync_interval_ms, config=config)
        scheduler.start()
        try:
            config.set_section('sync', {'interval_minutes': 15, 'initial_window_days': 30, 'fetch_retries': 2})
            self.assertEqual(scheduler.interval_ms, 15 * 60 * 1000)
        finally:
            scheduler.stop()
