"""Completion scheduler: releases escrow automatically once it elapses.

The persisted ``Job.escrow_end_date`` is the durable due record. Two things
act on it:

- a one-shot APScheduler timer per job, armed when escrow starts and re-armed
  for every pending job at startup, for on-time releases;
- a periodic sweep that releases every job whose end date has passed, which
  covers missed timers, restarts and any escrow length.

Timers live in memory and may be lost; the sweep never is. Both paths go
through ``release()``, whose gate makes duplicate firing harmless.
"""

import atexit
import logging
import os
import socket
import uuid
from datetime import datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from flask import has_app_context
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from handyhire import db
from handyhire.models import Job, JobStatus, PaymentStatus, SchedulerLease
from handyhire.services.errors import EscrowError

logger = logging.getLogger(__name__)


class CompletionScheduler:
    """Arms release timers and runs the escrow sweep for one Flask app."""

    SWEEP_JOB_ID = 'escrow-sweep'
    LEASE_NAME = 'escrow-sweep'

    def __init__(self, app):
        self.app = app
        self.instance_id = f'{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}'
        self.sweep_interval = app.config.get('ESCROW_SWEEP_INTERVAL_SECONDS', 300)
        self.lease_seconds = app.config.get('SCHEDULER_LEASE_SECONDS', 120)
        self._scheduler = BackgroundScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': None,  # Late is fine, skipped is not
            },
        )

    @property
    def running(self):
        return self._scheduler.running

    def start(self):
        """Start the background scheduler and recover pending escrows."""
        if self.running:
            logger.warning('Completion scheduler already running')
            return

        self._scheduler.add_job(
            self._run_sweep,
            trigger=IntervalTrigger(seconds=self.sweep_interval, timezone='UTC'),
            id=self.SWEEP_JOB_ID,
            name='Escrow auto-release sweep',
            replace_existing=True,
        )
        self._scheduler.start()
        atexit.register(self.shutdown)
        logger.info(f'Completion scheduler started ({self.instance_id}, sweep every {self.sweep_interval}s)')

        with self.app.app_context():
            self.recover()

    def shutdown(self):
        if self.running:
            self._scheduler.shutdown(wait=False)
            logger.info('Completion scheduler stopped')

    def timer_id(self, job_id):
        return f'release-job-{job_id}'

    def arm(self, job_id, escrow_end_date, now=None):
        """Ensure ``release(job_id)`` runs at ``escrow_end_date``.

        An end date that is already due releases immediately.

        Returns:
            ReleaseResult when released immediately, otherwise None
        """
        now = now or datetime.utcnow()

        if escrow_end_date <= now:
            logger.info(f'Job {job_id}: escrow end {escrow_end_date.isoformat()} already passed, releasing now')
            return self._release(job_id, now)

        if not self.running:
            logger.debug(f'Job {job_id}: scheduler not running, sweep will release at {escrow_end_date.isoformat()}')
            return None

        self._scheduler.add_job(
            self._release,
            trigger=DateTrigger(run_date=escrow_end_date, timezone='UTC'),
            args=[job_id],
            id=self.timer_id(job_id),
            name=f'Release escrow for job {job_id}',
            replace_existing=True,
        )
        logger.info(f'Job {job_id}: release scheduled for {escrow_end_date.isoformat()}')
        return None

    def disarm(self, job_id):
        """Drop a pending timer; a timer that still fires is a no-op anyway."""
        if self.running and self._scheduler.get_job(self.timer_id(job_id)):
            self._scheduler.remove_job(self.timer_id(job_id))

    def pending_timer_ids(self):
        return [job.id for job in self._scheduler.get_jobs() if job.id != self.SWEEP_JOB_ID]

    def recover(self, now=None):
        """Re-arm every job still in escrow (used at startup)."""
        now = now or datetime.utcnow()
        pending = (
            db.session.query(Job.id, Job.escrow_end_date)
            .filter(
                Job.status == JobStatus.IN_PROGRESS,
                Job.payment_status == PaymentStatus.IN_ESCROW,
                Job.escrow_end_date.isnot(None),
            )
            .order_by(Job.escrow_end_date)
            .all()
        )
        for job_id, escrow_end_date in pending:
            self.arm(job_id, escrow_end_date, now=now)
        logger.info(f'Completion scheduler recovered {len(pending)} escrowed jobs')
        return len(pending)

    def sweep(self, now=None):
        """Release every escrow whose end date has passed.

        Returns:
            dict: ids of released, skipped and failed jobs, or
            ``{'skipped': True}`` when another instance holds the lease
        """
        now = now or datetime.utcnow()

        if not self._acquire_lease(now):
            logger.debug('Escrow sweep skipped: lease held by another instance')
            return {'skipped': True}

        summary = {'skipped': False, 'released': [], 'not_eligible': [], 'failed': []}
        try:
            due = (
                db.session.query(Job.id)
                .filter(
                    Job.status == JobStatus.IN_PROGRESS,
                    Job.payment_status == PaymentStatus.IN_ESCROW,
                    Job.escrow_end_date <= now,
                )
                .order_by(Job.escrow_end_date)
                .all()
            )
            for (job_id,) in due:
                result = self._release(job_id, now)
                if result is None:
                    summary['failed'].append(job_id)
                elif result.released:
                    summary['released'].append(job_id)
                else:
                    summary['not_eligible'].append(job_id)
        finally:
            self._release_lease(now)

        if due:
            logger.info(
                f'Escrow sweep: {len(summary["released"])} released, '
                f'{len(summary["failed"])} failed, {len(summary["not_eligible"])} not eligible'
            )
        return summary

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _release(self, job_id, now=None):
        """Run the release engine; failures are logged and left to the sweep."""
        if not has_app_context():
            with self.app.app_context():
                return self._release(job_id, now)

        from handyhire.services.release import release

        try:
            result = release(job_id, now=now)
        except EscrowError as e:
            logger.error(f'Auto-release failed for job {job_id}: {e.message}; will retry on next sweep')
            return None
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f'Auto-release failed for job {job_id}: {e}; will retry on next sweep', exc_info=True)
            return None

        if result.released:
            logger.info(f'Job {job_id} auto-completed, {result.provider_amount} cents released')
        return result

    def _run_sweep(self):
        with self.app.app_context():
            try:
                self.sweep()
            except Exception:
                db.session.rollback()
                logger.exception('Escrow sweep crashed; retrying on next interval')
            finally:
                db.session.remove()

    def _acquire_lease(self, now):
        expires_at = now + timedelta(seconds=self.lease_seconds)

        if db.session.get(SchedulerLease, self.LEASE_NAME) is None:
            db.session.add(SchedulerLease(
                name=self.LEASE_NAME, holder=self.instance_id,
                expires_at=expires_at, acquired_at=now,
            ))
            try:
                db.session.commit()
                return True
            except IntegrityError:
                db.session.rollback()

        taken = db.session.execute(
            update(SchedulerLease)
            .where(
                SchedulerLease.name == self.LEASE_NAME,
                or_(SchedulerLease.expires_at <= now, SchedulerLease.holder == self.instance_id),
            )
            .values(holder=self.instance_id, expires_at=expires_at, acquired_at=now)
        ).rowcount
        db.session.commit()
        return taken == 1

    def _release_lease(self, now):
        db.session.execute(
            update(SchedulerLease)
            .where(SchedulerLease.name == self.LEASE_NAME, SchedulerLease.holder == self.instance_id)
            .values(expires_at=now)
        )
        db.session.commit()
