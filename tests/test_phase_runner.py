import asyncio
import json
import logging

import pytest

from traycer_agent.capabilities import CapabilityProvider, CapabilityRegistry, CapabilityTool
from traycer_agent.error_handling import AuthError, ErrorReporter, ErrorType
from traycer_agent.monitoring import TelemetryLogger
from traycer_agent.phases import PhaseRunner, max_iterations_notice
from traycer_agent.phases.prompts import SYSTEM_PROMPTS
from traycer_agent.provider_ir import ChatResponse, ExecutionContext, LoopStatus, StreamDelta, ToolCall
from traycer_agent.provider_runtime import LLMGateway


class _ScriptedGateway:
    """Replays a list of ChatResponse objects (or exceptions), one per model turn."""

    def __init__(self, replies, repeat_last=False):
        self.replies = list(replies)
        self.repeat_last = repeat_last
        self.requests = []

    def _next(self, messages, tools):
        self.requests.append({"messages": list(messages), "tools": list(tools)})
        if self.repeat_last and len(self.replies) == 1:
            reply = self.replies[0]
        else:
            reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def chat(self, messages, tools=None):
        return self._next(messages, tools or [])

    async def chat_stream(self, messages, tools=None):
        reply = self._next(messages, tools or [])
        for piece in (reply.content or "").split("|"):
            if piece:
                yield StreamDelta(content=piece)
        yield StreamDelta(tool_calls=reply.tool_calls, done=True, finish_reason=reply.finish_reason)


class _FakeFileSystem(CapabilityProvider):
    name = "filesystem"
    provides_tools = True

    def __init__(self):
        self.executed = []

    async def provide_context(self, ctx):
        return {"rootPath": ctx.workspace_root}

    def list_tools(self):
        async def read_file(args):
            self.executed.append(("read_file", args))
            return {"success": True, "content": "x"}

        async def explode(args):
            self.executed.append(("explode", args))
            raise OSError("disk on fire")

        return [
            CapabilityTool(name="read_file", description="read", execute=read_file),
            CapabilityTool(name="explode", description="fails", execute=explode),
        ]


def _call(call_id, name="filesystem__read_file", arguments='{"path": "a.ts"}'):
    return ToolCall(id=call_id, name=name, arguments=arguments)


def _runner(gateway, max_iterations=10, telemetry=None):
    reporter = ErrorReporter(logging.getLogger("test.runner"))
    provider = _FakeFileSystem()
    registry = CapabilityRegistry(builtin_providers=[provider], reporter=reporter)
    runner = PhaseRunner(registry, gateway, reporter=reporter, max_iterations=max_iterations, telemetry=telemetry)
    return runner, provider, reporter


def _ctx():
    return ExecutionContext(workspace_root="/work")


def test_review_without_tool_calls_finishes_in_one_iteration():
    gateway = _ScriptedGateway([ChatResponse(content="Looks good.")])
    runner, _, _ = _runner(gateway)

    result = asyncio.run(runner.execute_phase("review", _ctx()))

    assert result.status == LoopStatus.DONE
    assert result.output == "Looks good."
    assert result.iterations == 1
    assert result.phase == "review"
    first = gateway.requests[0]["messages"]
    assert first[0].role == "system" and first[0].content == SYSTEM_PROMPTS["review"]
    assert first[1].role == "user"
    assert first[1].content.startswith('Context: {"filesystem": {"rootPath": "/work"}}')
    assert first[1].content.endswith("Review the current workspace state.")
    assert [t.name for t in gateway.requests[0]["tools"]] == ["filesystem__read_file", "filesystem__explode"]


def test_plan_with_one_tool_call_reaches_done_in_iteration_two():
    gateway = _ScriptedGateway(
        [
            ChatResponse(content=None, tool_calls=[_call("call_1")], finish_reason="tool_calls"),
            ChatResponse(content="Plan: edit a.ts"),
        ]
    )
    runner, provider, _ = _runner(gateway)

    result = asyncio.run(runner.execute_phase("plan", _ctx()))

    assert result.status == LoopStatus.DONE
    assert result.iterations == 2
    assert result.output == "Plan: edit a.ts"
    assert provider.executed == [("read_file", {"path": "a.ts"})]

    sent = gateway.requests[1]["messages"]
    assert [m.role for m in sent] == ["system", "user", "assistant", "tool"]
    assert sent[2].tool_calls[0].id == "call_1"
    assert sent[3].tool_call_id == "call_1"
    assert json.loads(sent[3].content) == {"success": True, "content": "x"}
    assert [m.role for m in result.messages] == ["system", "user", "assistant", "tool", "assistant"]
    assert result.messages[-1].content == "Plan: edit a.ts"


def test_tool_calls_run_sequentially_in_model_order():
    calls = [
        _call("c1", arguments='{"path": "1"}'),
        _call("c2", arguments='{"path": "2"}'),
        _call("c3", arguments='{"path": "3"}'),
    ]
    gateway = _ScriptedGateway([ChatResponse(content="", tool_calls=calls), ChatResponse(content="done")])
    runner, provider, _ = _runner(gateway)

    asyncio.run(runner.execute_phase("plan", _ctx()))

    assert [args["path"] for _, args in provider.executed] == ["1", "2", "3"]
    tool_messages = [m for m in gateway.requests[1]["messages"] if m.role == "tool"]
    assert [m.tool_call_id for m in tool_messages] == ["c1", "c2", "c3"]


def test_failing_tool_is_folded_into_conversation():
    gateway = _ScriptedGateway(
        [
            ChatResponse(content="", tool_calls=[_call("bad", name="filesystem__explode", arguments="{}"), _call("good")]),
            ChatResponse(content="Recovered."),
        ]
    )
    runner, provider, reporter = _runner(gateway)

    result = asyncio.run(runner.execute_phase("plan", _ctx()))

    assert result.status == LoopStatus.DONE
    assert result.output == "Recovered."
    assert [name for name, _ in provider.executed] == ["explode", "read_file"]
    tool_messages = [m for m in gateway.requests[1]["messages"] if m.role == "tool"]
    assert json.loads(tool_messages[0].content) == {"error": "disk on fire"}
    assert json.loads(tool_messages[1].content) == {"success": True, "content": "x"}
    assert reporter.history()[-1].type == ErrorType.TOOL_ERROR


def test_unknown_tool_and_bad_arguments_do_not_abort():
    gateway = _ScriptedGateway(
        [
            ChatResponse(content="", tool_calls=[_call("a", name="nope__tool"), _call("b", arguments="{not json")]),
            ChatResponse(content="ok"),
        ]
    )
    runner, _, _ = _runner(gateway)

    result = asyncio.run(runner.execute_phase("plan", _ctx()))

    assert result.status == LoopStatus.DONE
    tool_messages = [m for m in gateway.requests[1]["messages"] if m.role == "tool"]
    assert json.loads(tool_messages[0].content) == {"error": "Tool nope__tool not found"}
    assert "error" in json.loads(tool_messages[1].content)


def test_iteration_cap_stops_without_an_eleventh_model_call():
    endless = ChatResponse(content="thinking ", tool_calls=[_call("loop")])
    gateway = _ScriptedGateway([endless], repeat_last=True)
    runner, provider, _ = _runner(gateway)

    result = asyncio.run(runner.execute_phase("plan", _ctx()))

    assert result.status == LoopStatus.MAX_ITERATIONS
    assert result.iterations == 10
    assert len(gateway.requests) == 10
    assert len(provider.executed) == 9
    assert result.output == "thinking " * 10 + max_iterations_notice(10)


def test_iteration_cap_is_configurable():
    gateway = _ScriptedGateway([ChatResponse(content="", tool_calls=[_call("loop")])], repeat_last=True)
    runner, _, _ = _runner(gateway, max_iterations=3)

    result = asyncio.run(runner.execute_phase("plan", _ctx()))

    assert result.status == LoopStatus.MAX_ITERATIONS
    assert len(gateway.requests) == 3
    assert result.output == max_iterations_notice(3)


def test_invalid_max_iterations_rejected():
    with pytest.raises(ValueError):
        _runner(_ScriptedGateway([]), max_iterations=0)


def test_gateway_error_is_fatal_and_not_retried():
    gateway = _ScriptedGateway([AuthError("401 Unauthorized")])
    runner, _, reporter = _runner(gateway)

    result = asyncio.run(runner.execute_phase("review", _ctx()))

    assert result.status == LoopStatus.FATAL
    assert result.output == "Error: Authentication failed. Please check your API key in settings."
    assert result.error_type == "AUTH_ERROR"
    assert len(gateway.requests) == 1
    assert reporter.history()[-1].type == ErrorType.AUTH_ERROR


def test_missing_configuration_is_fatal_with_verbatim_message():
    runner, _, _ = _runner(LLMGateway())

    result = asyncio.run(runner.execute_phase("plan", _ctx()))

    assert result.status == LoopStatus.FATAL
    assert result.error_type == "CONFIG_ERROR"
    assert result.output.startswith("Error: Configuration not set")


def test_every_invocation_appends_exactly_one_history_entry():
    gateway = _ScriptedGateway(
        [
            ChatResponse(content="one"),
            AuthError("nope"),
            ChatResponse(content="", tool_calls=[_call("x")]),
        ]
    )
    runner, _, _ = _runner(gateway, max_iterations=1)

    async def scenario():
        await runner.execute_phase("plan", _ctx())
        await runner.execute_phase("review", _ctx())
        await runner.execute_phase("phases", _ctx())

    asyncio.run(scenario())
    history = runner.get_history()

    assert [r.status for r in history] == [LoopStatus.DONE, LoopStatus.FATAL, LoopStatus.MAX_ITERATIONS]
    history.clear()
    assert len(runner.get_history()) == 3

    runner.clear_history()
    assert runner.get_history() == []


def test_unknown_mode_ends_fatal_with_a_history_entry():
    gateway = _ScriptedGateway([ChatResponse(content="unused")])
    runner, _, reporter = _runner(gateway)

    result = asyncio.run(runner.execute_phase("chat", _ctx()))

    assert result.status == LoopStatus.FATAL
    assert result.output == "Error: Unknown mode: chat"
    assert result.iterations == 0
    assert gateway.requests == []
    assert runner.get_history() == [result]
    assert reporter.history()[-1].details == {"phase": "chat", "iteration": 0}


class _BrokenCatalog(CapabilityProvider):
    name = "catalog"
    provides_tools = True

    async def provide_context(self, ctx):
        return {}

    def list_tools(self):
        raise RuntimeError("catalog unavailable")


def test_failing_tool_listing_ends_fatal_and_streams_error():
    reporter = ErrorReporter(logging.getLogger("test.runner"))
    registry = CapabilityRegistry(builtin_providers=[_BrokenCatalog()], reporter=reporter)
    gateway = _ScriptedGateway([ChatResponse(content="unused")])
    runner = PhaseRunner(registry, gateway, reporter=reporter)
    chunks, completed = [], []

    result = asyncio.run(runner.execute_phase_stream("plan", _ctx(), chunks.append, completed.append))

    assert result.status == LoopStatus.FATAL
    assert result.output == "Error: catalog unavailable"
    assert chunks == []
    assert completed == ["Error: catalog unavailable"]
    assert len(runner.get_history()) == 1
    assert gateway.requests == []


def test_request_text_is_embedded_in_user_turn():
    gateway = _ScriptedGateway([ChatResponse(content="ok")])
    runner, _, _ = _runner(gateway)

    asyncio.run(runner.execute_phase("phases", _ctx(), request="split the auth refactor"))

    user_turn = gateway.requests[0]["messages"][1].content
    assert "\nRequest: split the auth refactor\n" in user_turn
    assert user_turn.endswith("Break the work into implementation phases.")


# ---------------------------------------------------------------------------
# streaming
# ---------------------------------------------------------------------------


def test_stream_forwards_chunks_in_order_then_completes():
    gateway = _ScriptedGateway(
        [
            ChatResponse(content="Let me |look.", tool_calls=[_call("s1")]),
            ChatResponse(content="Found |it|."),
        ]
    )
    runner, provider, _ = _runner(gateway)
    events = []

    result = asyncio.run(
        runner.execute_phase_stream(
            "plan",
            _ctx(),
            lambda chunk: events.append(("chunk", chunk)),
            lambda text: events.append(("complete", text)),
        )
    )

    assert events == [
        ("chunk", "Let me "),
        ("chunk", "look."),
        ("chunk", "Found "),
        ("chunk", "it"),
        ("chunk", "."),
        ("complete", "Let me look.Found it."),
    ]
    assert result.status == LoopStatus.DONE
    assert result.output == "Found it."
    assert provider.executed == [("read_file", {"path": "a.ts"})]
    assert [m.role for m in gateway.requests[1]["messages"]] == ["system", "user", "assistant", "tool"]


def test_stream_emits_cap_notice_as_final_chunk():
    gateway = _ScriptedGateway([ChatResponse(content="again", tool_calls=[_call("l")])], repeat_last=True)
    runner, _, _ = _runner(gateway, max_iterations=2)
    chunks, completed = [], []

    result = asyncio.run(runner.execute_phase_stream("plan", _ctx(), chunks.append, completed.append))

    assert chunks == ["again", "again", max_iterations_notice(2)]
    assert completed == ["againagain" + max_iterations_notice(2)]
    assert result.output == completed[0]


def test_stream_fatal_reports_error_on_complete():
    gateway = _ScriptedGateway([AuthError("denied")])
    runner, _, _ = _runner(gateway)
    chunks, completed = [], []

    result = asyncio.run(runner.execute_phase_stream("review", _ctx(), chunks.append, completed.append))

    assert result.status == LoopStatus.FATAL
    assert chunks == []
    assert completed == [result.output]


def test_telemetry_records_iterations_and_terminal_state(tmp_path):
    path = tmp_path / "events.jsonl"
    telemetry = TelemetryLogger(str(path))
    gateway = _ScriptedGateway([ChatResponse(content="", tool_calls=[_call("t")]), ChatResponse(content="fin")])
    runner, _, _ = _runner(gateway, telemetry=telemetry)

    asyncio.run(runner.execute_phase("plan", _ctx()))
    telemetry.close()

    events = [json.loads(line) for line in path.read_text().splitlines()]
    assert [e["event"] for e in events] == ["iteration", "iteration", "terminal"]
    assert events[0]["tool_calls"] == ["filesystem__read_file"]
    assert events[-1]["status"] == "done"
