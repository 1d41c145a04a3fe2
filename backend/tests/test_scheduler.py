"""Tests for the periodic ingestion job registration."""
from licitaradar.agents import scheduler


class TestScheduler:
    def test_start_registers_single_instance_job(self, set_env):
        set_env(INGESTION_INTERVAL_HOURS="12")
        started = scheduler.start_scheduler()
        try:
            job = started.get_job(scheduler.JOB_ID)
            assert started.running
            assert job.max_instances == 1
            assert job.trigger.interval.total_seconds() == 12 * 3600
            assert job.next_run_time is not None
            assert scheduler.get_scheduler() is started
        finally:
            scheduler.stop_scheduler()
        assert scheduler.get_scheduler() is None

    def test_stop_without_start_is_a_noop(self):
        scheduler.stop_scheduler()
        assert scheduler.get_scheduler() is None
