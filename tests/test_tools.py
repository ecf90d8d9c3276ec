"""Unit tests for the tool dispatcher."""

import json

import pytest

from skindoc.core.errors import MalformedEventError
from skindoc.core.models import PerceptionToolCallEvent, ToolCallEvent
from skindoc.processing.tools import (
    FALLBACK_REMEDY,
    REMEDIES,
    ToolDispatcher,
    normalize_condition,
    parse_arguments,
)


@pytest.fixture
def dispatcher() -> ToolDispatcher:
    return ToolDispatcher()


def cure_call(arguments, conversation_id: str = "conv-9") -> ToolCallEvent:
    return ToolCallEvent(name="get_skin_cures", raw_arguments=arguments, conversation_id=conversation_id)


class TestSkinCures:
    @pytest.mark.parametrize("key", sorted(REMEDIES))
    def test_known_conditions(self, dispatcher: ToolDispatcher, key: str) -> None:
        """Each known condition produces the exact reply text."""
        reply = dispatcher.dispatch(cure_call(json.dumps({"disease": key})))

        assert reply is not None
        assert reply.text == f"If you're getting {key} I suggest to {REMEDIES[key]}."

    def test_normalizes_case_and_whitespace(self, dispatcher: ToolDispatcher) -> None:
        """'PIMPLES ' matches 'pimples' but the reply echoes the raw value."""
        reply = dispatcher.dispatch(cure_call('{"disease": "PIMPLES "}'))

        assert reply is not None
        assert reply.text == f"If you're getting PIMPLES  I suggest to {REMEDIES['pimples']}."

    def test_reply_keeps_conversation_id(self, dispatcher: ToolDispatcher) -> None:
        reply = dispatcher.dispatch(cure_call('{"disease": "sunburn"}', conversation_id="abc"))

        assert reply is not None
        assert reply.conversation_id == "abc"
        assert reply.to_wire()["conversation_id"] == "abc"

    def test_unknown_condition_uses_fallback(self, dispatcher: ToolDispatcher) -> None:
        """An unknown condition never yields an undefined remedy."""
        reply = dispatcher.dispatch(cure_call('{"disease": "eczema"}'))

        assert reply is not None
        assert reply.text == f"If you're getting eczema I suggest to {FALLBACK_REMEDY}."
        assert "None" not in reply.text
        assert "undefined" not in reply.text

    def test_accepts_decoded_arguments(self, dispatcher: ToolDispatcher) -> None:
        reply = dispatcher.dispatch(cure_call({"disease": "dryskin"}))

        assert reply is not None
        assert REMEDIES["dryskin"] in reply.text

    @pytest.mark.parametrize(
        "arguments",
        ["not json", "[1, 2]", '{"condition": "pimples"}', '{"disease": 42}', '{"disease": "  "}', None],
    )
    def test_malformed_arguments_produce_no_reply(self, dispatcher: ToolDispatcher, arguments) -> None:
        assert dispatcher.dispatch(cure_call(arguments)) is None


class TestDispatch:
    def test_unknown_tool(self, dispatcher: ToolDispatcher) -> None:
        event = ToolCallEvent(name="get_weather", raw_arguments="{}", conversation_id="c")
        assert dispatcher.dispatch(event) is None

    def test_registered_tool(self, dispatcher: ToolDispatcher) -> None:
        dispatcher.register("echo", lambda args: args["text"])

        reply = dispatcher.dispatch(ToolCallEvent(name="echo", raw_arguments='{"text": "hi"}', conversation_id="c"))

        assert dispatcher.handles("echo")
        assert reply is not None
        assert reply.text == "hi"

    def test_perception_reply(self, dispatcher: ToolDispatcher) -> None:
        reply = dispatcher.perceive(PerceptionToolCallEvent(name="acne_detected", conversation_id="c7"))

        assert reply is not None
        assert reply.conversation_id == "c7"
        assert reply.text.startswith("I notice that you have acne on your face.")

    def test_unknown_perception_tool(self, dispatcher: ToolDispatcher) -> None:
        assert dispatcher.perceive(PerceptionToolCallEvent(name="frown_detected")) is None
        assert not dispatcher.handles_perception("frown_detected")


class TestHelpers:
    def test_normalize_condition(self) -> None:
        assert normalize_condition("  OilySkin\n") == "oilyskin"

    def test_parse_arguments_rejects_non_objects(self) -> None:
        with pytest.raises(MalformedEventError):
            parse_arguments('"pimples"')

    def test_parse_arguments_rejects_non_strings(self) -> None:
        with pytest.raises(MalformedEventError):
            parse_arguments(12)
