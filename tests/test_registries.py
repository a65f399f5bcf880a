"""Tests for the action and job handler registries."""

import pytest

from clinic_automation.actions import registry as action_registry
from clinic_automation.core.exceptions import UnknownActionTypeError, UnknownJobTypeError
from clinic_automation.db.enums import ActionType, JobType
from clinic_automation.jobs import registry as job_registry


def test_every_action_type_has_a_handler():
    for action_type in ActionType:
        assert action_registry.is_registered(action_type.value)
        assert callable(action_registry.resolve_action_handler(action_type.value))


def test_unknown_action_type_raises():
    with pytest.raises(UnknownActionTypeError) as exc_info:
        action_registry.resolve_action_handler("send_postcard")

    assert str(exc_info.value) == "Unknown action type: send_postcard"
    assert isinstance(exc_info.value, ValueError)
    assert not action_registry.is_registered("send_postcard")


def test_register_action_handler_adds_type(monkeypatch):
    handlers = dict(action_registry.ACTION_HANDLERS)
    monkeypatch.setattr(action_registry, "ACTION_HANDLERS", handlers)

    async def process_send_postcard(db, action, context):
        return {"sent": True}

    action_registry.register_action_handler("send_postcard", process_send_postcard)

    assert action_registry.resolve_action_handler("send_postcard") is process_send_postcard


def test_every_job_type_has_a_handler():
    for job_type in JobType:
        assert callable(job_registry.resolve_job_handler(job_type.value))


def test_unknown_job_type_raises():
    with pytest.raises(UnknownJobTypeError) as exc_info:
        job_registry.resolve_job_handler("fax")

    assert str(exc_info.value) == "Unknown job type: fax"
    assert isinstance(exc_info.value, ValueError)
