"""
Actor context used for audit attribution.

Every mutating engine call receives an Actor. Authentication is out of
scope here: the API layer derives the actor from ``request.user``.
"""
from dataclasses import dataclass

from django.db import models
from django.utils.translation import gettext_lazy as _


class ActorRole(models.TextChoices):
    CUSTOMER = 'customer', _('Customer')
    PRESCRIPTION_READER = 'prescription-reader', _('Prescription reader')
    PHARMACY = 'pharmacy', _('Pharmacy')
    VENDOR = 'vendor', _('Vendor')
    DOCTOR = 'doctor', _('Doctor')
    DELIVERY = 'delivery', _('Delivery')
    APP_SERVICES = 'app-services', _('App services')
    ADMIN = 'admin', _('Admin')
    SYSTEM = 'system', _('System')


@dataclass(frozen=True)
class Actor:
    actor_id: str
    role: str
    name: str = ''

    @property
    def is_admin(self) -> bool:
        return self.role in (ActorRole.ADMIN, ActorRole.SYSTEM)

    def to_dict(self):
        return {'actor_id': self.actor_id, 'role': self.role, 'name': self.name}


SYSTEM_ACTOR = Actor(actor_id='system', role=ActorRole.SYSTEM, name='System')


def actor_from_user(user) -> Actor:
    """
    Build an Actor from a Django user.

    The role is the first auth group whose name is a known ActorRole.
    Superusers and staff without such a group act as admin; everybody
    else acts as a customer.
    """
    known_roles = set(ActorRole.values)
    role = next(
        (name for name in user.groups.values_list('name', flat=True) if name in known_roles),
        None,
    )
    if role is None:
        role = ActorRole.ADMIN if (user.is_superuser or user.is_staff) else ActorRole.CUSTOMER
    name = user.get_full_name() or user.get_username()
    return Actor(actor_id=str(user.pk), role=role, name=name)
