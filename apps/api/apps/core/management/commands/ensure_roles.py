"""
Management command to ensure one auth group exists per actor role.

Usage:
    python manage.py ensure_roles
    python manage.py ensure_roles --superuser

Idempotent and safe to run on every container start. ``--superuser``
also creates the superuser named by DJANGO_SUPERUSER_USERNAME /
DJANGO_SUPERUSER_PASSWORD when it does not exist yet.
"""
import os

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.core.management.base import BaseCommand

from apps.core.actors import ActorRole


class Command(BaseCommand):
    help = 'Create the auth groups that map users to actor roles'

    def add_arguments(self, parser):
        parser.add_argument(
            '--superuser',
            action='store_true',
            help='Also create the bootstrap superuser from environment variables',
        )

    def handle(self, *args, **options):
        self.stdout.write('Ensuring role groups exist...')
        for role in ActorRole.values:
            # The system actor is never a logged-in user
            if role == ActorRole.SYSTEM:
                continue
            _, created = Group.objects.get_or_create(name=role)
            if created:
                self.stdout.write(self.style.SUCCESS(f'  Created group: {role}'))
            else:
                self.stdout.write(f'  - Group exists: {role}')

        if options['superuser']:
            self._ensure_superuser()

    def _ensure_superuser(self):
        User = get_user_model()
        username = os.environ.get('DJANGO_SUPERUSER_USERNAME', 'admin')
        password = os.environ.get('DJANGO_SUPERUSER_PASSWORD', 'admin123dev')

        if User.objects.filter(username=username).exists():
            self.stdout.write(self.style.WARNING(f'Superuser "{username}" already exists'))
            return

        User.objects.create_superuser(username=username, password=password)
        self.stdout.write(self.style.SUCCESS(f'Superuser "{username}" created successfully'))
