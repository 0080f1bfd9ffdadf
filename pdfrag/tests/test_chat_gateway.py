import pytest

from pdfrag.config.settings import ChatConfig
from pdfrag.core.billing.gate import BillingGate
from pdfrag.core.chat.gateway import TurnState, format_sse
from pdfrag.core.exceptions import AuthorizationError, NotFoundError
from pdfrag.models.chat import Author, ChatRequest

from conftest import FakeBillingProvider, ScriptedLLM, subscription, text, usage

def _request(message="What is attention?", thread_id="thread_1", document_id="doc_1"):
    return ChatRequest(message=message, document_id=document_id, thread_id=thread_id)

def test_format_sse_splits_lines():
    assert format_sse("Hel") == "data: Hel\n\n"
    assert format_sse("a\nb") == "data: a\ndata: b\n\n"
    assert format_sse("oops", event="error") == "event: error\ndata: oops\n\n"

def test_fragments_relayed_in_arrival_order(make_gateway, records, meter):
    llm = ScriptedLLM(script=[text("Hel"), text("lo, "), text("world"), usage(40, 3)])
    gateway = make_gateway(llm)

    turn = gateway.open_turn("acct_1", _request())
    events = list(turn.events())

    assert events == [format_sse("Hel"), format_sse("lo, "), format_sse("world")]
    assert turn.state == TurnState.DONE
    assert turn.answer == "Hello, world"

    turns = records.list_turns("thread_1")
    assert [(t.author, t.text) for t in turns] == [(Author.user, "What is attention?"),
                                                  (Author.agent, "Hello, world")]
    assert meter.get("acct_1", turn.period) == 43

def test_two_usage_records_charge_once(records, meter, billing_config, make_gateway):
    provider = FakeBillingProvider(subscriptions=[subscription("sub_1", 1000, "si_1")])
    gateway = make_gateway(ScriptedLLM(script=[text("Answer"), usage(10, 5), usage(20, 10)]))
    gateway.gate = BillingGate(records, provider, meter, billing_config)

    turn = gateway.open_turn("acct_1", _request())
    list(turn.events())

    # The last usage record is authoritative
    assert meter.get("acct_1", turn.period) == 30
    assert turn.new_total == 30
    assert turn.metered
    assert provider.usage_reports == [("si_1", 30, f"turn-{turn.turn_id}")]

def test_cancellation_mid_stream_charges_nothing(make_gateway, records, meter):
    llm = ScriptedLLM(script=[text("one "), text("two "), text("three "), text("four "), text("five"),
                              usage(50, 5)])
    gateway = make_gateway(llm)

    turn = gateway.open_turn("acct_1", _request())
    stream = turn.events()
    received = [next(stream), next(stream)]
    stream.close()  # client went away

    assert received == [format_sse("one "), format_sse("two ")]
    assert turn.state == TurnState.CANCELLED
    assert llm.closed
    assert meter.get("acct_1", turn.period) == 0
    assert [t.author for t in records.list_turns("thread_1")] == [Author.user]

def test_blocked_turn_never_streams(make_gateway, meter, provider):
    llm = ScriptedLLM(script=[text("should not be seen")])
    gateway = make_gateway(llm)
    meter.increment("acct_1", meter.current_period(), 100)

    turn = gateway.open_turn("acct_1", _request())

    assert turn.blocked
    assert turn.state == TurnState.BLOCKED
    assert turn.decision.checkout_url == "https://checkout.example/acct_1"
    with pytest.raises(RuntimeError):
        turn.events()
    assert llm.stream_calls == 0

def test_upstream_failure_ends_turn_without_charge(make_gateway, records, meter):
    llm = ScriptedLLM(script=[text("partial "), text("never"), usage(10, 10)], fail_after=1)
    gateway = make_gateway(llm)

    turn = gateway.open_turn("acct_1", _request())
    events = list(turn.events())

    assert events[0] == format_sse("partial ")
    assert events[-1].startswith("event: error\n")
    assert turn.state == TurnState.FAILED
    assert meter.get("acct_1", turn.period) == 0
    assert [t.author for t in records.list_turns("thread_1")] == [Author.user]

def test_deadline_exceeded_fails_turn(make_gateway, meter):
    llm = ScriptedLLM(script=[text("slow"), usage(1, 1)])
    gateway = make_gateway(llm, ChatConfig(stream_deadline_seconds=-1))

    turn = gateway.open_turn("acct_1", _request())
    events = list(turn.events())

    assert turn.state == TurnState.FAILED
    assert "deadline" in turn.error
    assert events == [format_sse("The answer could not be completed.", event="error")]
    assert meter.get("acct_1", turn.period) == 0

def test_missing_usage_persists_answer_without_charge(make_gateway, records, meter):
    gateway = make_gateway(ScriptedLLM(script=[text("No usage here")]))

    turn = gateway.open_turn("acct_1", _request())
    list(turn.events())

    assert turn.state == TurnState.DONE
    assert turn.usage is None
    assert meter.get("acct_1", turn.period) == 0
    assert records.list_turns("thread_1")[-1].text == "No usage here"

def test_history_window_feeds_prompt(make_gateway, records):
    captured = {}

    class CapturingLLM(ScriptedLLM):
        def stream_records(self, messages):
            captured["messages"] = messages
            return super().stream_records(messages)

    gateway = make_gateway(CapturingLLM(script=[text("ok")]), ChatConfig(history_turns=2))
    for i in range(3):
        list(gateway.open_turn("acct_1", _request(message=f"question {i}")).events())

    # Third turn sees the previous user/agent pair only
    roles = [m["role"] for m in captured["messages"]]
    assert roles == ["system", "user", "assistant", "user"]
    assert captured["messages"][1]["content"] == "question 1"

def test_non_owner_is_rejected_before_side_effects(make_gateway, provider, records):
    gateway = make_gateway(ScriptedLLM(script=[text("x")]))

    with pytest.raises(AuthorizationError) as exc:
        gateway.open_turn("acct_2", _request())
    assert exc.value.status_code == 403
    assert provider.customers_created == 0

    with pytest.raises(AuthorizationError):
        gateway.open_turn("acct_1", _request(document_id="doc_other"))
    with pytest.raises(NotFoundError):
        gateway.open_turn("acct_1", _request(thread_id="thread_missing"))
    assert records.list_turns("thread_1") == []

if __name__ == "__main__":
    test_format_sse_splits_lines()
    print("Chat gateway tests PASSED")
