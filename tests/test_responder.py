"""Unit tests for the outbound responder."""

import pytest

from skindoc.core.errors import ReactionTransmissionError
from skindoc.core.models import OutboundReply
from skindoc.processing.responder import OutboundResponder

from conftest import FakeCall


def test_broadcasts_wire_envelope(call: FakeCall) -> None:
    sent = []
    responder = OutboundResponder(call, on_sent=sent.append)
    reply = OutboundReply(conversation_id="conv-42", text="Use sunscreen.")

    responder.send(reply)

    payload, recipient = call.sent[0]
    assert recipient == "*"
    assert payload["conversation_id"] == "conv-42"
    assert payload["event_type"] == "conversation.echo"
    assert payload["properties"] == {"text": "Use sunscreen."}
    assert sent == [reply]
    assert responder.sent == 1


def test_transport_failure_raises_and_counts(call: FakeCall) -> None:
    """Failures surface as ReactionTransmissionError; nothing is retried."""
    call.send_error = RuntimeError("data channel closed")
    sent = []
    responder = OutboundResponder(call, on_sent=sent.append)

    with pytest.raises(ReactionTransmissionError):
        responder.send(OutboundReply(conversation_id="c", text="x"))

    assert responder.failed == 1
    assert sent == []
    assert call.sent == []
