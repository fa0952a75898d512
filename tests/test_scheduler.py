"""
Tests for the completion scheduler (timers, sweep and recovery).
"""

from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError

from handyhire import db
from handyhire.models import Job, JobStatus, SchedulerLease, Transaction, User
from handyhire.services import escrow
from handyhire.services import release as release_module
from handyhire.services.scheduler import CompletionScheduler

from conftest import expire_escrow


class TestArm:
    """Arming a release for a job in escrow."""

    def test_arm_past_end_date_releases_now(self, escrowed_job, scheduler, provider):
        past = datetime.utcnow() - timedelta(minutes=5)

        result = scheduler.arm(escrowed_job['job_id'], past)

        assert result.released is True
        assert db.session.get(User, provider).available_balance == 9000

    def test_arm_future_end_date_without_running_scheduler(self, escrowed_job, scheduler, provider):
        future = datetime.utcnow() + timedelta(days=90)

        assert scheduler.arm(escrowed_job['job_id'], future) is None
        assert db.session.get(Job, escrowed_job['job_id']).status == JobStatus.IN_PROGRESS

    def test_running_scheduler_arms_long_escrow(self, app, escrowed_job):
        scheduler = CompletionScheduler(app)
        scheduler.start()
        try:
            scheduler.arm(escrowed_job['job_id'], datetime.utcnow() + timedelta(days=90))

            assert scheduler.timer_id(escrowed_job['job_id']) in scheduler.pending_timer_ids()

            scheduler.disarm(escrowed_job['job_id'])
            assert scheduler.timer_id(escrowed_job['job_id']) not in scheduler.pending_timer_ids()
        finally:
            scheduler.shutdown()

    def test_start_recovers_pending_escrows(self, app, escrowed_job):
        scheduler = CompletionScheduler(app)
        scheduler.start()
        try:
            assert scheduler.timer_id(escrowed_job['job_id']) in scheduler.pending_timer_ids()
        finally:
            scheduler.shutdown()


class TestSweep:
    """Periodic release of escrows whose end date has passed."""

    def test_sweep_releases_due_job(self, escrowed_job, scheduler, provider):
        expire_escrow(escrowed_job['job_id'])

        summary = scheduler.sweep()

        assert summary['skipped'] is False
        assert summary['released'] == [escrowed_job['job_id']]
        assert summary['failed'] == []
        assert db.session.get(User, provider).available_balance == 9000

    def test_sweep_leaves_future_escrows(self, escrowed_job, scheduler, provider):
        summary = scheduler.sweep()

        assert summary['released'] == []
        assert db.session.get(Job, escrowed_job['job_id']).status == JobStatus.IN_PROGRESS
        assert db.session.get(User, provider).available_balance == 0

    def test_sweep_twice_releases_once(self, escrowed_job, scheduler, provider):
        expire_escrow(escrowed_job['job_id'])

        scheduler.sweep()
        second = scheduler.sweep()

        assert second['released'] == []
        assert db.session.get(User, provider).available_balance == 9000

    def test_sweep_reports_inconsistent_job(self, escrowed_job, scheduler):
        job = db.session.get(Job, escrowed_job['job_id'])
        job.transaction_id = None
        db.session.commit()
        expire_escrow(escrowed_job['job_id'])

        summary = scheduler.sweep()

        assert summary['failed'] == [escrowed_job['job_id']]

    def test_storage_error_on_one_job_does_not_stop_sweep(
        self, make_job, escrowed_job, buyer, provider, gateway, scheduler, monkeypatch,
    ):
        second_id = make_job(buyer, price_cents=5000)
        transaction, _ = escrow.hire_provider(db.session.get(Job, second_id), buyer, provider, gateway)
        escrow.start_escrow(db.session.get(Job, second_id), db.session.get(Transaction, transaction.id))
        broken_id = escrowed_job['job_id']
        expire_escrow(broken_id, minutes_ago=2)
        expire_escrow(second_id)

        real_release = release_module.release

        def flaky_release(job_id, now=None):
            if job_id == broken_id:
                raise OperationalError('SELECT', {}, Exception('connection reset'))
            return real_release(job_id, now=now)

        monkeypatch.setattr(release_module, 'release', flaky_release)

        summary = scheduler.sweep()

        assert summary['failed'] == [broken_id]
        assert summary['released'] == [second_id]
        assert db.session.get(Job, broken_id).status == JobStatus.IN_PROGRESS
        assert db.session.get(User, provider).available_balance == 4500

    def test_sweep_skipped_while_lease_held_elsewhere(self, escrowed_job, scheduler, provider):
        expire_escrow(escrowed_job['job_id'])
        now = datetime.utcnow()
        db.session.add(SchedulerLease(
            name=CompletionScheduler.LEASE_NAME, holder='other-instance',
            expires_at=now + timedelta(minutes=5), acquired_at=now,
        ))
        db.session.commit()

        assert scheduler.sweep(now=now) == {'skipped': True}
        assert db.session.get(User, provider).available_balance == 0

    def test_sweep_takes_over_expired_lease(self, escrowed_job, scheduler, provider):
        expire_escrow(escrowed_job['job_id'])
        now = datetime.utcnow()
        db.session.add(SchedulerLease(
            name=CompletionScheduler.LEASE_NAME, holder='crashed-instance',
            expires_at=now - timedelta(minutes=5), acquired_at=now - timedelta(minutes=7),
        ))
        db.session.commit()

        summary = scheduler.sweep(now=now)

        assert summary['released'] == [escrowed_job['job_id']]


class TestRecover:
    """Startup recovery of escrows armed before a restart."""

    def test_recover_releases_overdue_escrows(self, escrowed_job, scheduler, provider):
        expire_escrow(escrowed_job['job_id'])

        assert scheduler.recover() == 1
        assert db.session.get(Job, escrowed_job['job_id']).status == JobStatus.COMPLETED
        assert db.session.get(User, provider).available_balance == 9000

    def test_recover_ignores_finished_jobs(self, escrowed_job, scheduler):
        scheduler.arm(escrowed_job['job_id'], datetime.utcnow() - timedelta(seconds=1))

        assert scheduler.recover() == 0
