"""
Domain events logging helpers.

Every engine operation emits one structured event so that the log
stream alone can reconstruct what happened to an aggregate.
"""
from typing import Dict, Iterable, Optional

from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    actor=None,
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g. 'prescription_transition')
        entity_type: Type of the primary aggregate (e.g. 'Prescription')
        entity_id: ID of the primary aggregate
        entity_ids: Related aggregate IDs
        result: success, noop, blocked, failure...
        actor: Optional Actor performing the operation
        **extra_fields: Additional fields (sanitized before logging)

    Example:
        log_domain_event(
            'commission_collected',
            entity_type='CommissionAccount',
            entity_id='pharmacy:ph-1',
            result='success',
            amount='20.00',
        )
    """
    event_data = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type
    if entity_id:
        event_data['entity_id'] = entity_id
    if entity_ids:
        event_data.update(entity_ids)
    if actor is not None:
        event_data['actor_id'] = actor.actor_id
        event_data['actor_role'] = str(actor.role)

    event_data.update(sanitize_dict(extra_fields))

    if result in ['failure', 'error']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['warning', 'blocked']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_consistency_checkpoint(
    checkpoint_name: str,
    entity_ids: Dict[str, str],
    checks_passed: Dict[str, bool],
    **extra_fields
):
    """
    Log the outcome of an invariant check at a critical point.

    Example:
        log_consistency_checkpoint(
            'suspended_order_total',
            entity_ids={'order_id': order.order_id},
            checks_passed={'total_matches_active_items': True},
        )
    """
    all_passed = all(checks_passed.values())

    event_data = {
        'event': 'consistency_checkpoint',
        'checkpoint': checkpoint_name,
        'status': 'passed' if all_passed else 'failed',
        'checks': checks_passed,
    }
    event_data.update(entity_ids)
    event_data.update(sanitize_dict(extra_fields))

    if all_passed:
        logger.info(f'Checkpoint passed: {checkpoint_name}', extra=event_data)
    else:
        logger.error(f'Checkpoint FAILED: {checkpoint_name}', extra=event_data)


def log_prescription_transition(prescription_id, from_status, to_status, actor, result='success', **extra):
    log_domain_event(
        'prescription_transition',
        entity_type='Prescription',
        entity_id=prescription_id,
        result=result,
        actor=actor,
        from_status=str(from_status),
        to_status=str(to_status),
        **extra
    )


def log_quality_gate_blocked(prescription_id, failed_checks: Iterable[str], actor):
    log_domain_event(
        'prescription_quality_gate_blocked',
        entity_type='Prescription',
        entity_id=prescription_id,
        result='blocked',
        actor=actor,
        failed_checks=list(failed_checks),
    )


def log_order_modified(order_id, actor, removed=0, added=0, modified=0, total_amount=None):
    log_domain_event(
        'suspended_order_modified',
        entity_type='SuspendedOrder',
        entity_id=order_id,
        result='success',
        actor=actor,
        removed_count=removed,
        added_count=added,
        modified_count=modified,
        total_amount=str(total_amount),
    )


def log_commission_collected(account_key, amount, actor=None, result='success'):
    log_domain_event(
        'commission_collected',
        entity_type='CommissionAccount',
        entity_id=account_key,
        result=result,
        actor=actor,
        amount=str(amount),
    )


def log_refund_resolved(refund_id, action, actor=None, amount=None):
    log_domain_event(
        'refund_resolved',
        entity_type='RefundRequest',
        entity_id=refund_id,
        result='success',
        actor=actor,
        action=str(action),
        amount=str(amount),
    )
