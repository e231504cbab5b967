"""
Role based permissions for settlement and suspended order endpoints.
"""
from rest_framework import permissions

from apps.core.actors import ActorRole, actor_from_user

BACK_OFFICE_ROLES = {ActorRole.ADMIN, ActorRole.SYSTEM, ActorRole.APP_SERVICES}


class SettlementPermission(permissions.BasePermission):
    """
    Permission for settlement endpoints based on role.

    - Admin, App services: Full access
    - Pharmacy, Vendor, Doctor: Read-only
    - Customer: only the actions a view lists in ``customer_actions``
    """

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        role = actor_from_user(request.user).role
        if role in BACK_OFFICE_ROLES:
            return True

        if role == ActorRole.CUSTOMER:
            return getattr(view, 'action', None) in getattr(view, 'customer_actions', ())

        if request.method in permissions.SAFE_METHODS:
            return role in {ActorRole.PHARMACY, ActorRole.VENDOR, ActorRole.DOCTOR}

        return False


class SuspendedOrderPermission(permissions.BasePermission):
    """
    Permission for suspended order endpoints based on role.

    - Admin, App services: Full access
    - Pharmacy: list, suspend, retrieve, modify, restore-item and approve,
      on orders carrying its own pharmacy_id
    - Customer: retrieve and cancel, on orders carrying its own customer_id
    - Everyone else: No access
    """

    PHARMACY_ACTIONS = frozenset({'list', 'create', 'retrieve', 'modify', 'restore_item', 'approve'})
    CUSTOMER_ACTIONS = frozenset({'retrieve', 'cancel'})

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        role = actor_from_user(request.user).role
        if role in BACK_OFFICE_ROLES:
            return True

        action = getattr(view, 'action', None)
        if role == ActorRole.PHARMACY:
            return action in self.PHARMACY_ACTIONS
        if role == ActorRole.CUSTOMER:
            return action in self.CUSTOMER_ACTIONS
        return False

    def has_object_permission(self, request, view, obj):
        actor = actor_from_user(request.user)
        if actor.role in BACK_OFFICE_ROLES:
            return True
        if actor.role == ActorRole.PHARMACY:
            return obj.pharmacy_id == actor.actor_id
        if actor.role == ActorRole.CUSTOMER:
            return obj.customer_id == actor.actor_id
        return False
