import logging
from datetime import timedelta

import pytest

from relayflow.clock import ManualClock
from relayflow.errors import AlreadyCompleted, Expired
from relayflow.models import ValidationStatus
from relayflow.validations import ClientValidationBroker


def _issue(broker: ClientValidationBroker, clock: ManualClock):
    return broker.issue(
        instance_id="inst-1",
        step_id="step-1",
        execution_id="exec-1",
        client_email="client@example.com",
        now=clock.now(),
    )


def test_issue_sets_window_and_unique_tokens():
    clock = ManualClock()
    broker = ClientValidationBroker(ttl=timedelta(days=3))

    first = _issue(broker, clock)
    second = _issue(broker, clock)

    assert first.status == ValidationStatus.PENDING
    assert first.expires_at == clock.now() + timedelta(days=3)
    assert len(first.secure_token) >= 43
    assert first.secure_token != second.secure_token


def test_issue_never_logs_token(caplog):
    caplog.set_level(logging.INFO, logger="relayflow.validations")
    validation = _issue(ClientValidationBroker(), ManualClock())
    assert validation.id in caplog.text
    assert validation.secure_token not in caplog.text


def test_secure_link():
    clock = ManualClock()
    validation = _issue(ClientValidationBroker(), clock)
    assert ClientValidationBroker().secure_link(validation) is None

    broker = ClientValidationBroker(public_base_url="https://app.example.com/")
    assert broker.secure_link(validation) == (
        f"https://app.example.com/client-validation/{validation.secure_token}"
    )


def test_ensure_resolvable_checks_completion_before_expiry():
    clock = ManualClock()
    broker = ClientValidationBroker()
    validation = _issue(broker, clock)

    broker.ensure_resolvable(validation, clock.now())

    with pytest.raises(Expired):
        broker.ensure_resolvable(validation, validation.expires_at)

    completed = broker.mark_completed(validation, clock.now(), ["memory://a/b.pdf"])
    assert completed.uploaded_file_refs == ["memory://a/b.pdf"]
    with pytest.raises(AlreadyCompleted):
        broker.ensure_resolvable(completed, clock.advance(days=30))


def test_mark_expired_is_a_copy():
    clock = ManualClock()
    broker = ClientValidationBroker()
    validation = _issue(broker, clock)

    expired = broker.mark_expired(validation)
    assert expired.status == ValidationStatus.EXPIRED
    assert validation.status == ValidationStatus.PENDING
    with pytest.raises(Expired):
        broker.ensure_resolvable(expired, clock.now())
