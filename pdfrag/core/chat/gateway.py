"""
Streaming chat gateway.

Per request: GATE_CHECK -> STREAMING -> FINALIZING -> DONE, or
GATE_CHECK -> BLOCKED. A failed upstream ends in FAILED, a closed client
connection in CANCELLED; neither is charged.
"""

import logging
import time
import uuid
from enum import Enum
from typing import Iterator, List, Optional

from pdfrag.config.settings import ChatConfig
from pdfrag.core.auth import ensure_thread_owner
from pdfrag.core.billing.gate import BillingGate
from pdfrag.core.billing.usage_meter import UsageMeter
from pdfrag.core.embed.embedder import Embedder
from pdfrag.core.exceptions import StreamDeadlineExceeded, UpstreamError
from pdfrag.core.generate.llm_client import LLMClient
from pdfrag.core.generate.prompt_builder import PromptBuilder
from pdfrag.core.generate.stream_parser import RecordKind, StreamRecord, Usage, last_usage
from pdfrag.models.billing import GateDecision
from pdfrag.models.chat import Author, ChatRequest, ChatThread, ChatTurn
from pdfrag.storage.base import RecordStore, VectorStore

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    GATE_CHECK = "gate_check"
    BLOCKED = "blocked"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


def format_sse(text: str, event: Optional[str] = None) -> str:
    """One server-sent event; embedded newlines become additional data lines."""
    prefix = f"event: {event}\n" if event else ""
    return prefix + "".join(f"data: {line}\n" for line in text.split("\n")) + "\n"


def _now_ms() -> int:
    return int(time.time() * 1000)


class ChatTurnStream:
    """State of one chat turn. Iterate `events()` to run it."""

    def __init__(self, gateway: "ChatGateway", account_id: str, request: ChatRequest,
                 thread: ChatThread, decision: GateDecision, period: str):
        self.gateway = gateway
        self.account_id = account_id
        self.request = request
        self.thread = thread
        self.decision = decision
        self.period = period
        self.turn_id = uuid.uuid4().hex
        self.state = TurnState.GATE_CHECK if decision.allowed else TurnState.BLOCKED
        self.fragments: List[str] = []
        self.records: List[StreamRecord] = []
        self.usage: Optional[Usage] = None
        self.new_total: Optional[int] = None
        self.metered = False
        self.error: Optional[str] = None

    @property
    def blocked(self) -> bool:
        return self.state == TurnState.BLOCKED

    @property
    def answer(self) -> str:
        return "".join(self.fragments)

    def events(self) -> Iterator[str]:
        if self.state != TurnState.GATE_CHECK:
            raise RuntimeError(f"Turn {self.turn_id} cannot stream from state {self.state.value}")
        return self.gateway._run(self)


class ChatGateway:
    def __init__(self,
                 llm: LLMClient,
                 embedder: Embedder,
                 vector_store: VectorStore,
                 records: RecordStore,
                 meter: UsageMeter,
                 gate: BillingGate,
                 config: ChatConfig):
        self.llm = llm
        self.embedder = embedder
        self.vector_store = vector_store
        self.records = records
        self.usage_meter = meter
        self.gate = gate
        self.config = config

    def open_turn(self, account_id: str, request: ChatRequest) -> ChatTurnStream:
        """
        Ownership check and gate-check. Raises AuthorizationError / NotFoundError
        before any side effect, UpstreamError if billing is unreachable.
        """
        thread = ensure_thread_owner(self.records, account_id, request.thread_id, request.document_id)
        period = self.usage_meter.current_period()
        decision = self.gate.authorize(account_id, period)
        turn = ChatTurnStream(self, account_id, request, thread, decision, period)
        if turn.blocked:
            logger.info(f"Turn {turn.turn_id} blocked for account {account_id}")
        return turn

    def _build_messages(self, turn: ChatTurnStream) -> List[dict]:
        question = turn.request.message
        hits = self.vector_store.search(
            self.embedder.embed_query(question),
            top_k=self.config.top_k,
            filters={"doc_id": turn.request.document_id}
        )
        history = self.records.list_turns(turn.thread.thread_id, limit=self.config.history_turns)
        return PromptBuilder.build_chat_messages(question, hits, history)

    def _run(self, turn: ChatTurnStream) -> Iterator[str]:
        turn.state = TurnState.STREAMING
        upstream = None
        try:
            messages = self._build_messages(turn)
            self.records.append_turn(ChatTurn(thread_id=turn.thread.thread_id, author=Author.user,
                                              text=turn.request.message, created_at=_now_ms()))

            deadline = time.monotonic() + self.config.stream_deadline_seconds
            upstream = self.llm.stream_records(messages)
            for record in upstream:
                if time.monotonic() > deadline:
                    raise StreamDeadlineExceeded(self.config.stream_deadline_seconds)
                # Accumulate and relay on the same sequence: arrival order is preserved
                turn.records.append(record)
                if record.kind == RecordKind.TEXT and record.text:
                    turn.fragments.append(record.text)
                    yield format_sse(record.text)
        except GeneratorExit:
            turn.state = TurnState.CANCELLED
            logger.info(f"Turn {turn.turn_id} cancelled by client after {len(turn.fragments)} fragments")
            raise
        except Exception as e:
            turn.state = TurnState.FAILED
            turn.error = str(e)
            if isinstance(e, UpstreamError):
                logger.error(f"Turn {turn.turn_id} failed upstream: {e}")
            else:
                logger.exception(f"Turn {turn.turn_id} failed")
            yield format_sse("The answer could not be completed.", event="error")
            return
        finally:
            if upstream is not None:
                upstream.close()

        turn.state = TurnState.FINALIZING
        try:
            self._finalize(turn)
        except Exception as e:
            turn.state = TurnState.FAILED
            turn.error = str(e)
            logger.exception(f"Turn {turn.turn_id} finalization failed")
            yield format_sse("Usage accounting failed for this answer.", event="error")
            return
        turn.state = TurnState.DONE

    def _finalize(self, turn: ChatTurnStream) -> None:
        """Persists the answer and charges the turn once, from the last usage record."""
        self.records.append_turn(ChatTurn(thread_id=turn.thread.thread_id, author=Author.agent,
                                          text=turn.answer, created_at=_now_ms()))

        usage = last_usage(turn.records)
        if usage is None:
            logger.warning(f"Turn {turn.turn_id} finished without a usage record; nothing charged")
            return

        turn.usage = usage
        turn.new_total = self.usage_meter.increment(turn.account_id, turn.period, usage.total)
        logger.info(f"Account {turn.account_id} usage {turn.new_total} units in {turn.period}")

        try:
            turn.metered = self.gate.report_usage(turn.decision, usage.total, idempotency_key=f"turn-{turn.turn_id}")
        except UpstreamError as e:
            # Local counter already holds the units; the provider call is not retried here
            logger.error(f"Turn {turn.turn_id} metered event failed: {e}")
