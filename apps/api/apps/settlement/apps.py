from django.apps import AppConfig


class SettlementConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.settlement'
    verbose_name = 'Settlement ledger'
