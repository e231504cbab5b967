"""Access to the CURA domain settings dict."""
from django.conf import settings

DEFAULTS = {
    'CURRENCY': 'EGP',
    'DEFAULT_PHARMACY_COMMISSION_RATE': '0.10',
    'DEFAULT_VENDOR_COMMISSION_RATE': '0.15',
    'DEFAULT_DOCTOR_COMMISSION_RATE': '0.05',
    'DEFAULT_COLLECTION_FREQUENCY': 'monthly',
    'DEFAULT_PAYOUT_MINIMUM': '100.00',
    'MAX_ESCALATION_LEVEL': 2,
}


def cura_setting(name):
    """
    Read one domain setting, falling back to the built-in default.

    Raises:
        KeyError: If ``name`` is not a known setting
    """
    if name not in DEFAULTS:
        raise KeyError(f'Unknown CURA setting: {name}')
    return getattr(settings, 'CURA', {}).get(name, DEFAULTS[name])
