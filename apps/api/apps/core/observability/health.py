"""
Health and metrics endpoints.

/healthz  liveness, no dependency checks
/readyz   readiness, checks the database and domain settings
/metrics  prometheus exposition
"""
import logging

from django.conf import settings
from django.db import DatabaseError, connection
from django.http import HttpResponse, JsonResponse
from django.views import View
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from apps.core.conf import cura_setting

logger = logging.getLogger(__name__)


class HealthzView(View):
    """Return 200 while the process is up."""

    def get(self, request):
        health_data = {
            'status': 'ok',
            'service': 'cura-api',
            'version': getattr(settings, 'VERSION', 'unknown'),
        }
        commit_hash = getattr(settings, 'COMMIT_HASH', None)
        if commit_hash:
            health_data['commit'] = commit_hash
        return JsonResponse(health_data, status=200)


class ReadyzView(View):
    """Return 200 when dependencies are reachable, 503 otherwise."""

    def get(self, request):
        checks = {
            'database': self._check_database(),
            'settings': self._check_settings(),
        }
        all_healthy = all(checks.values())
        return JsonResponse(
            {'status': 'ready' if all_healthy else 'not_ready', 'checks': checks},
            status=200 if all_healthy else 503,
        )

    def _check_database(self):
        try:
            with connection.cursor() as cursor:
                cursor.execute('SELECT 1')
            return True
        except DatabaseError as e:
            logger.error(
                'Database health check failed',
                extra={'event': 'health_check_failed', 'check': 'database', 'error': str(e)}
            )
            return False

    def _check_settings(self):
        return bool(cura_setting('CURRENCY'))


class MetricsView(View):
    def get(self, request):
        return HttpResponse(generate_latest(), content_type=CONTENT_TYPE_LATEST)
