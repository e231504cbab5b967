"""Suspended order serializers."""
from rest_framework import serializers

from .domain import IssueType, Priority, ResolutionAction, UnitType


class OrderItemSerializer(serializers.Serializer):
    item_id = serializers.CharField(max_length=64)
    product_id = serializers.CharField(max_length=64)
    product_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    unit_type = serializers.ChoiceField(choices=UnitType.choices, default=UnitType.BOX)
    prescription = serializers.BooleanField(default=False)
    status = serializers.CharField(read_only=True)
    total_price = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)


class ItemChangeSerializer(serializers.Serializer):
    kind = serializers.CharField()
    item_id = serializers.CharField()
    active_item = OrderItemSerializer(allow_null=True)


class AgentNoteSerializer(serializers.Serializer):
    sequence = serializers.IntegerField()
    timestamp = serializers.DateTimeField()
    kind = serializers.CharField()
    text = serializers.CharField()
    author_id = serializers.CharField()
    author_role = serializers.CharField()


class ResolutionSerializer(serializers.Serializer):
    action = serializers.CharField()
    notes = serializers.CharField()
    resolved_by = serializers.CharField()
    resolved_by_role = serializers.CharField()
    resolved_at = serializers.DateTimeField()


class SuspendedOrderSerializer(serializers.Serializer):
    """Read-only representation of a SuspendedOrder."""
    order_id = serializers.CharField()
    order_number = serializers.CharField()
    pharmacy_id = serializers.CharField()
    customer_id = serializers.CharField()
    customer_name = serializers.CharField()
    customer_phone = serializers.CharField()
    original_items = OrderItemSerializer(many=True)
    changes = ItemChangeSerializer(many=True)
    modified_items = OrderItemSerializer(many=True, allow_null=True)
    issue_type = serializers.CharField()
    issue_notes = serializers.CharField()
    priority = serializers.CharField()
    status = serializers.CharField()
    original_total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    escalation_level = serializers.IntegerField()
    customer_contacted = serializers.BooleanField()
    pharmacy_contacted = serializers.BooleanField()
    agent_notes = AgentNoteSerializer(many=True)
    resolution = ResolutionSerializer(allow_null=True)
    suspended_at = serializers.DateTimeField()
    updated_at = serializers.DateTimeField()


class SuspendedOrderStatisticsSerializer(serializers.Serializer):
    total = serializers.IntegerField()
    by_status = serializers.DictField(child=serializers.IntegerField())
    by_priority = serializers.DictField(child=serializers.IntegerField())
    by_issue_type = serializers.DictField(child=serializers.IntegerField())
    escalated = serializers.IntegerField()
    average_resolution_hours = serializers.FloatField(allow_null=True)


# ----------------------------------------------------------------------
# Input
# ----------------------------------------------------------------------

class SuspendOrderSerializer(serializers.Serializer):
    order_number = serializers.CharField(max_length=64)
    pharmacy_id = serializers.CharField(max_length=64)
    customer_id = serializers.CharField(max_length=64)
    customer_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    customer_phone = serializers.CharField(max_length=32, required=False, allow_blank=True, default='')
    items = OrderItemSerializer(many=True, allow_empty=False)
    issue_type = serializers.ChoiceField(choices=IssueType.choices)
    issue_notes = serializers.CharField(required=False, allow_blank=True, default='')
    priority = serializers.ChoiceField(choices=Priority.choices, default=Priority.NORMAL)


class NewItemSerializer(serializers.Serializer):
    product_id = serializers.CharField(max_length=64)
    quantity = serializers.IntegerField()
    unit_price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False, default=None)
    product_name = serializers.CharField(max_length=255, required=False, default=None)
    unit_type = serializers.ChoiceField(choices=UnitType.choices, required=False, default=None)
    prescription = serializers.BooleanField(required=False, allow_null=True, default=None)


class ItemModificationSerializer(serializers.Serializer):
    item_id = serializers.CharField(max_length=64)
    new_quantity = serializers.IntegerField(required=False, default=None)
    new_unit_type = serializers.ChoiceField(choices=UnitType.choices, required=False, default=None)
    substitute_product_id = serializers.CharField(max_length=64, required=False, default=None)


class OrderModificationSerializer(serializers.Serializer):
    """
    POST /suspended-orders/{id}/modify/

    Quantities below 1 are accepted and clamped by the engine.
    """
    notes = serializers.CharField(allow_blank=True)
    items_to_remove = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    items_to_add = NewItemSerializer(many=True, required=False, default=list)
    items_to_modify = ItemModificationSerializer(many=True, required=False, default=list)


class ItemRefSerializer(serializers.Serializer):
    item_id = serializers.CharField(max_length=64)


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(allow_blank=True)


class ContactSerializer(serializers.Serializer):
    party = serializers.ChoiceField(choices=['customer', 'pharmacy'])
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class ResolveSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=ResolutionAction.choices)
    notes = serializers.CharField(allow_blank=True)


class ApproveSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default='')
