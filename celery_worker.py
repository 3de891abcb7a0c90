#!/usr/bin/env python3
"""
Celery entry point for reconciliation and nightly chart maintenance.

    celery -A celery_worker.celery worker --loglevel=info
    celery -A celery_worker.celery beat --loglevel=info

Or for development: python celery_worker.py [worker|beat]
"""
import os
import sys

# Workers only publish changes; they have no stream subscribers to feed
os.environ['CHANGE_RELAY_LISTEN'] = 'false'

from dentalsync import create_app  # noqa: E402
from dentalsync.extensions import celery  # noqa: E402

# Binds the shared Celery instance to the app config and context
app = create_app()

from tasks import reconcile_tasks  # noqa: E402,F401

if __name__ == '__main__':
    mode = sys.argv[1] if len(sys.argv) > 1 else 'worker'
    if mode == 'beat':
        celery.start(['celery', 'beat', '--loglevel=info'])
    else:
        celery.worker_main([
            'worker',
            '--loglevel=info',
            '--concurrency=4',
            '--queues=celery',
        ])
