"""Unit tests for merchant access rules"""

import uuid
from merchant_crm.domain.access import can_access
from merchant_crm.domain.models import Actor, UserRole


def test_admin_accesses_everything():
    """Admins pass regardless of assignment"""
    admin_id = uuid.uuid4()
    assert can_access(admin_id, UserRole.ADMIN, None) is True
    assert can_access(admin_id, UserRole.ADMIN, uuid.uuid4()) is True


def test_rep_accesses_only_assigned():
    rep_id = uuid.uuid4()
    assert can_access(rep_id, UserRole.REP, rep_id) is True
    assert can_access(rep_id, UserRole.REP, uuid.uuid4()) is False


def test_unassigned_merchant_hidden_from_non_admins():
    """No assignment means only admins can see the merchant"""
    assert can_access(uuid.uuid4(), UserRole.REP, None) is False
    assert can_access(uuid.uuid4(), UserRole.READ_ONLY, None) is False


def test_read_only_reads_assigned():
    viewer_id = uuid.uuid4()
    assert can_access(viewer_id, UserRole.READ_ONLY, viewer_id) is True


def test_actor_write_permissions():
    """Admins and reps write; read-only users do not"""
    assert Actor(id=uuid.uuid4(), role=UserRole.ADMIN).can_write is True
    assert Actor(id=uuid.uuid4(), role=UserRole.REP).can_write is True
    assert Actor(id=uuid.uuid4(), role=UserRole.READ_ONLY).can_write is False
    assert Actor(id=uuid.uuid4(), role=UserRole.READ_ONLY).is_admin is False
