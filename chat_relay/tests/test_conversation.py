import pytest

from chat_relay.domain.conversation import AssembledMessage, MessageRecord
from chat_relay.domain.models import ChatAnswer, ChatRequest, StreamEvent


def test_models_exist():
    req = ChatRequest(query="hi")
    assert req.response_mode == "blocking"
    assert not req.streaming
    mr = MessageRecord(id="m1", role="user", content="x")
    assert mr.streaming is False
    assert mr.created_at.tzinfo is not None


def test_assembled_message_finalize_once():
    msg = AssembledMessage(id="m1")
    msg.append("Hel")
    msg.append("lo")
    assert msg.content == "Hello"
    assert msg.finalize() is True
    assert msg.finalize() is False
    with pytest.raises(RuntimeError):
        msg.append("!")


def test_stream_event_from_payload_ignores_non_text_answer():
    ev = StreamEvent.from_payload({"event": "message", "answer": 3, "conversation_id": ""})
    assert ev.event == "message"
    assert ev.answer is None
    assert ev.conversation_id is None


def test_chat_answer_canned_modes():
    upstream = ChatAnswer.from_payload({"answer": "a", "conversation_id": "c1", "id": "m1", "created_at": 5})
    assert upstream.message_id == "m1"
    assert not upstream.canned
    demo = ChatAnswer.from_payload({"answer": "a", "mode": "demo"})
    assert demo.canned
    assert demo.to_payload()["mode"] == "demo"
