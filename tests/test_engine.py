"""
Tests for the Workflow Engine core components.
"""

import asyncio
import re
import pytest
from typing import Any, Dict, List

from promptflow.config import Settings
from promptflow.engine.errors import (
    InvocationError,
    PayloadParseError,
    UnresolvedVariable,
)
from promptflow.engine.executor import ExecutionStatus, WorkflowEngine, run_workflow
from promptflow.engine.extractor import extract_outputs
from promptflow.engine.graph import (
    Edge,
    Node,
    NodeData,
    NodeInput,
    NodeStatus,
    NodeType,
    WorkflowGraph,
)
from promptflow.engine.handlers import dispatch, parse_json_payload
from promptflow.engine.sanitizer import (
    IMAGE_FIELD_OMITTED,
    IMAGE_OMITTED,
    TRUNCATED_SUFFIX,
    sanitize_context,
)
from promptflow.engine.state import RunContext
from promptflow.engine.templates import TemplateResolver
from promptflow.engine.variables import VariableEnvironment


FAST = Settings(API_CALL_DELAY=0)


class StubAIService:
    """Records every call and answers with a fixed value."""

    def __init__(self, answer: Any = "10", fail_with: str = ""):
        self.answer = answer
        self.fail_with = fail_with
        self.calls: List[Dict[str, Any]] = []

    async def invoke(self, data: NodeData, context_text: str) -> Any:
        self.calls.append({"data": data, "context": context_text})
        if self.fail_with:
            raise InvocationError(self.fail_with)
        return self.answer


def make_node(node_id: str, node_type: str, **data: Any) -> Dict[str, Any]:
    return {"id": node_id, "type": node_type, "data": {"label": node_id, **data}}


def make_edge(source: str, target: str) -> Dict[str, str]:
    return {"source": source, "target": target}


def make_context(**kwargs: Any) -> RunContext:
    return RunContext(graph=WorkflowGraph([], []), settings=FAST, **kwargs)


def make_engine(nodes, edges, ai_service=None, **kwargs) -> WorkflowEngine:
    return WorkflowEngine(
        {"nodes": nodes, "edges": edges},
        ai_service=ai_service or StubAIService(),
        settings=FAST,
        **kwargs,
    )


# ============================================================
# Variable Environment Tests
# ============================================================

class TestVariableEnvironment:
    """Tests for VariableEnvironment."""

    def test_set_and_get(self):
        env = VariableEnvironment()
        env.set("topic", "rivers")
        env.set("data", {"a": 1})

        assert env.get("topic") == "rivers"
        assert env.get("data") == {"a": 1}
        assert env.has("topic")
        assert "data" in env

    def test_last_writer_wins(self):
        env = VariableEnvironment()
        env.set("x", 1)
        env.set("x", 2)
        assert env.get("x") == 2
        assert len(env) == 1

    def test_missing_variable(self):
        """Missing names fail with the sorted list of known names."""
        env = VariableEnvironment()
        env.set("zeta", 1)
        env.set("alpha", 2)

        with pytest.raises(UnresolvedVariable) as exc_info:
            env.get("missing")

        assert exc_info.value.name == "missing"
        assert exc_info.value.known == ["alpha", "zeta"]
        assert "Variable 'missing' not found. Available: alpha, zeta" == str(exc_info.value)

    def test_names_are_case_sensitive(self):
        env = VariableEnvironment()
        env.set("Name", "x")
        assert not env.has("name")

    def test_reset(self):
        env = VariableEnvironment()
        env.set("a", 1)
        env.reset()
        assert not env.has("a")
        assert env.names() == []

    def test_snapshot_is_a_copy(self):
        env = VariableEnvironment()
        env.set("obj", {"list": [1]})
        snapshot = env.snapshot()
        snapshot["obj"]["list"].append(2)
        assert env.get("obj") == {"list": [1]}


# ============================================================
# Template Resolver Tests
# ============================================================

class TestTemplateResolver:
    """Tests for TemplateResolver."""

    def setup_method(self):
        self.env = VariableEnvironment()
        self.warnings: List[str] = []
        self.resolver = TemplateResolver(self.env, warn=self.warnings.append)

    def test_text_without_placeholders_is_unchanged(self):
        text = "Plain text with {single} braces and }} stray ones"
        assert self.resolver.resolve_text(text) == text

    def test_empty_text(self):
        assert self.resolver.resolve_text("") == ""
        assert self.resolver.resolve_text(None) == ""

    def test_substitution(self):
        self.env.set("name", "Ada")
        self.env.set("my-var_2", 42)
        result = self.resolver.resolve_text("Hi {{name}}, {{ my-var_2 }}!")
        assert result == "Hi Ada, 42!"

    def test_object_is_serialized(self):
        self.env.set("obj", {"a": 1, "b": [1, 2]})
        assert self.resolver.resolve_text("data={{obj}}") == 'data={"a":1,"b":[1,2]}'

    def test_scalar_text_forms(self):
        self.env.set("flag", True)
        self.env.set("nothing", None)
        self.env.set("whole", 10.0)
        self.env.set("part", 2.5)
        result = self.resolver.resolve_text("{{flag}} {{nothing}} {{whole}} {{part}}")
        assert result == "true null 10 2.5"

    def test_unresolved_fails_whole_string(self):
        self.env.set("a", "x")
        with pytest.raises(UnresolvedVariable) as exc_info:
            self.resolver.resolve_text("{{a}} and {{b}}")
        assert exc_info.value.name == "b"

    def test_unresolved_names_variable(self):
        with pytest.raises(UnresolvedVariable, match="'a'"):
            self.resolver.resolve_text("{{a}}")

    def test_single_reference(self):
        self.env.set("photo", "data:image/png;base64,AAAA")
        assert self.resolver.resolve_single_reference("photo") == "data:image/png;base64,AAAA"
        assert self.resolver.resolve_single_reference(" {{ photo }} ") == "data:image/png;base64,AAAA"

    def test_single_reference_keeps_raw_value(self):
        self.env.set("obj", {"k": "v"})
        assert self.resolver.resolve_single_reference("{{obj}}") == {"k": "v"}

    def test_single_reference_missing(self):
        with pytest.raises(UnresolvedVariable):
            self.resolver.resolve_single_reference("{{ghost}}")

    def test_input_list_tolerates_missing(self):
        self.env.set("img", "data:image/png;base64,BBBB")
        inputs = [
            NodeInput(type="variable", value="img"),
            NodeInput(type="variable", value="ghost"),
            NodeInput(type="file", value="data:image/jpeg;base64,CCCC"),
        ]

        resolved = self.resolver.resolve_input_list(inputs)

        assert [i.value for i in resolved] == [
            "data:image/png;base64,BBBB",
            "ghost",
            "data:image/jpeg;base64,CCCC",
        ]
        assert len(self.warnings) == 1
        assert "ghost" in self.warnings[0]
        # The configured list itself is untouched
        assert inputs[0].value == "img"

    def test_input_list_empty(self):
        assert self.resolver.resolve_input_list(None) == []

    def test_legacy_input_image_variable_is_required(self):
        data = NodeData(input_image_variable="ghost")
        with pytest.raises(UnresolvedVariable):
            self.resolver.resolve_input_image(data)

    def test_legacy_inline_image(self):
        data = NodeData(input_image="data:image/png;base64,AAAA")
        assert self.resolver.resolve_input_image(data) == "data:image/png;base64,AAAA"

    def test_resolve_node_data(self):
        self.env.set("topic", "rivers")
        self.env.set("host", "example.com")
        data = NodeData(prompt="About {{topic}}", api_url="https://{{host}}/x")

        resolved = self.resolver.resolve_node_data(data)

        assert resolved.prompt == "About rivers"
        assert resolved.api_url == "https://example.com/x"
        assert data.prompt == "About {{topic}}"


# ============================================================
# Context Sanitizer Tests
# ============================================================

class TestContextSanitizer:
    """Tests for sanitize_context."""

    def test_plain_string(self):
        assert sanitize_context("hello") == "hello"

    def test_data_url_is_redacted(self):
        assert sanitize_context("data:") == IMAGE_OMITTED
        assert sanitize_context("data:image/png;base64," + "A" * 100000) == IMAGE_OMITTED

    def test_long_string_is_truncated(self):
        result = sanitize_context("x" * 50001)
        assert result == "x" * 50000 + TRUNCATED_SUFFIX

    def test_string_at_limit_is_kept(self):
        assert sanitize_context("x" * 50000) == "x" * 50000

    def test_object_fields(self):
        value = {
            "image": "data:image/png;base64," + "A" * 600,
            "thumb": "data:image/png;base64,AAAA",
            "nested": {"text": "y" * 6000},
            "items": ["data:image/png;base64," + "B" * 600, 3],
        }

        result = sanitize_context(value)

        assert f'"image": "{IMAGE_FIELD_OMITTED}"' in result
        assert '"thumb": "data:image/png;base64,AAAA"' in result
        assert "y" * 5000 + TRUNCATED_SUFFIX in result
        assert "y" * 5001 not in result
        assert result.count(IMAGE_FIELD_OMITTED) == 2
        # Indented serialization
        assert "\n  " in result

    def test_object_does_not_mutate_input(self):
        value = {"text": "z" * 6000}
        sanitize_context(value)
        assert len(value["text"]) == 6000

    def test_scalars(self):
        assert sanitize_context(5) == "5"
        assert sanitize_context(None) == "null"

    def test_custom_thresholds(self):
        assert sanitize_context("abcdef", max_chars=3) == "abc" + TRUNCATED_SUFFIX


# ============================================================
# Handler Tests
# ============================================================

class TestHandlers:
    """Tests for the node type handlers."""

    @pytest.mark.asyncio
    async def test_trigger_json_payload(self):
        ctx = make_context()
        data = NodeData(webhook_payload='{"n": 5}')
        assert await dispatch(ctx, NodeType.TRIGGER, data, "ignored") == {"n": 5}

    @pytest.mark.asyncio
    async def test_trigger_invalid_json(self):
        ctx = make_context()
        data = NodeData(webhook_payload="{not json")

        result = await dispatch(ctx, NodeType.TRIGGER, data, None)

        assert result == {"error": "Invalid JSON Payload", "raw": "{not json"}
        assert any("Error parsing trigger payload" in line for line in ctx.logs)

    @pytest.mark.asyncio
    async def test_trigger_form_data(self):
        ctx = make_context()
        data = NodeData.model_validate({
            "webhookContentType": "form-data",
            "webhookPayload": '{"ignored": true}',
            "webhookFormData": [
                {"key": "name", "value": "Ada"},
                {"key": "", "value": "dropped"},
                {"key": "city", "value": "London"},
            ],
        })

        result = await dispatch(ctx, NodeType.TRIGGER, data, None)

        assert result == {"name": "Ada", "city": "London"}

    @pytest.mark.asyncio
    async def test_trigger_default_marker(self):
        ctx = make_context()
        result = await dispatch(ctx, NodeType.TRIGGER, NodeData(), None)
        assert result["trigger"] == "manual"
        assert isinstance(result["timestamp"], int)

    def test_parse_json_payload_error(self):
        with pytest.raises(PayloadParseError) as exc_info:
            parse_json_payload("[1,")
        assert exc_info.value.raw == "[1,"

    @pytest.mark.asyncio
    async def test_condition_passes_payload(self):
        ctx = make_context()
        payload = {"score": 3}
        result = await dispatch(ctx, NodeType.CONDITION, NodeData(condition="score > 2"), payload)
        assert result is payload
        assert any("Checking condition: score > 2" in line for line in ctx.logs)

    @pytest.mark.asyncio
    async def test_api_call_stub(self):
        ctx = make_context()
        result = await dispatch(ctx, NodeType.API_CALL, NodeData(api_url="https://x.test"), None)
        assert result == {"status": 200, "data": {"mock": "result"}}
        assert any("Calling API: https://x.test" in line for line in ctx.logs)

    @pytest.mark.asyncio
    async def test_passthrough(self):
        ctx = make_context()
        assert await dispatch(ctx, NodeType.PASSTHROUGH, NodeData(), [1, 2]) == [1, 2]

    @pytest.mark.asyncio
    async def test_generate_text_uses_default_model_and_context(self):
        service = StubAIService(answer="ok")
        ctx = make_context(ai_service=service)

        result = await dispatch(
            ctx, NodeType.GENERATE_TEXT, NodeData(prompt="Go"), "data:image/png;base64,AAAA"
        )

        assert result == "ok"
        call = service.calls[0]
        assert call["data"].model == "gemini-2.5-flash"
        assert call["data"].prompt == "Go"
        assert call["context"] == IMAGE_OMITTED

    @pytest.mark.asyncio
    async def test_generate_image_default_model(self):
        service = StubAIService(answer="data:image/png;base64,ZZZ")
        ctx = make_context(ai_service=service)

        result = await dispatch(ctx, NodeType.GENERATE_IMAGE, NodeData(), {"a": 1})

        assert result == "data:image/png;base64,ZZZ"
        assert service.calls[0]["data"].model == "gemini-2.5-flash-image"
        assert service.calls[0]["context"] == '{\n  "a": 1\n}'

    @pytest.mark.asyncio
    async def test_configured_model_is_kept(self):
        service = StubAIService()
        ctx = make_context(ai_service=service)
        await dispatch(ctx, NodeType.GENERATE_TEXT, NodeData(model="gemini-2.5-pro"), "")
        assert service.calls[0]["data"].model == "gemini-2.5-pro"


# ============================================================
# Output Extractor Tests
# ============================================================

class TestOutputExtractor:
    """Tests for extract_outputs."""

    def _node(self, **data: Any) -> Node:
        return Node.model_validate(make_node("n1", "passthrough", **data))

    def test_output_variable(self):
        ctx = make_context()
        node = self._node(outputVariableName="  result  ")
        written = extract_outputs(ctx, node, "value")
        assert written == ["result"]
        assert ctx.variables.get("result") == "value"

    def test_field_mapping(self):
        ctx = make_context()
        node = self._node(outputMappings=[{"field": "x", "variable": "n"}])
        extract_outputs(ctx, node, {"x": 1, "y": 2})
        assert ctx.variables.get("n") == 1
        assert not ctx.variables.has("y")

    def test_missing_field_is_skipped(self):
        ctx = make_context()
        node = self._node(outputMappings=[
            {"field": "absent", "variable": "a"},
            {"field": "y", "variable": "b"},
        ])

        extract_outputs(ctx, node, {"y": 2})

        assert not ctx.variables.has("a")
        assert ctx.variables.get("b") == 2
        assert any("Field 'absent' not found in output." in line for line in ctx.logs)

    def test_non_object_result(self):
        ctx = make_context()
        node = self._node(outputMappings=[
            {"field": "x", "variable": "a"},
            {"field": "y", "variable": "b"},
        ])

        extract_outputs(ctx, node, "just text")

        assert len(ctx.variables) == 0
        warnings = [line for line in ctx.logs if "not an object" in line]
        assert len(warnings) == 1

    def test_both_paths(self):
        ctx = make_context()
        node = self._node(
            outputVariableName="whole",
            outputMappings=[{"field": "x", "variable": "part"}],
        )
        extract_outputs(ctx, node, {"x": 1})
        assert ctx.variables.get("whole") == {"x": 1}
        assert ctx.variables.get("part") == 1

    def test_blank_mapping_is_ignored(self):
        ctx = make_context()
        node = self._node(outputMappings=[{"field": "", "variable": "a"}])
        assert extract_outputs(ctx, node, {"": 1}) == []


# ============================================================
# Graph Tests
# ============================================================

class TestGraph:
    """Tests for the node arena."""

    def test_legacy_type_names(self):
        graph = WorkflowGraph.from_definition(
            [
                make_node("w", "webhook"),
                make_node("t", "ai-text"),
                make_node("i", "ai-image"),
                make_node("a", "api"),
                make_node("v", "variable"),
            ],
            [],
        )
        assert [n.type for n in graph] == [
            NodeType.TRIGGER,
            NodeType.GENERATE_TEXT,
            NodeType.GENERATE_IMAGE,
            NodeType.API_CALL,
            NodeType.PASSTHROUGH,
        ]

    def test_loop_node_is_passthrough(self):
        node = Node.model_validate(make_node("l", "loop", loopArray="{{items}}"))
        assert node.type == NodeType.PASSTHROUGH

    def test_duplicate_ids(self):
        with pytest.raises(ValueError, match="already exists"):
            WorkflowGraph.from_definition([make_node("a", "trigger"), make_node("a", "passthrough")], [])

    def test_camel_case_fields(self):
        node = Node.model_validate(make_node(
            "g", "generate-text",
            outputVariableName="out",
            maxOutputTokens=256,
            topP=0.9,
            inputImageVariable="img",
        ))
        assert node.data.output_variable_name == "out"
        assert node.data.max_output_tokens == 256
        assert node.data.top_p == 0.9
        assert node.data.input_image_variable == "img"

    def test_status_updates_bump_version(self):
        graph = WorkflowGraph.from_definition([make_node("a", "trigger")], [])
        graph.set_status("a", NodeStatus.RUNNING)
        node = graph.set_status("a", NodeStatus.SUCCESS, {"ok": True})
        assert node.version == 2
        assert node.data.output_value == {"ok": True}

    def test_outgoing_preserves_order(self):
        graph = WorkflowGraph.from_definition(
            [make_node("a", "trigger"), make_node("b", "passthrough"), make_node("c", "passthrough")],
            [make_edge("a", "c"), make_edge("b", "c"), make_edge("a", "b")],
        )
        assert [e.target for e in graph.outgoing("a")] == ["c", "b"]


# ============================================================
# Executor Tests
# ============================================================

class TestExecutor:
    """Tests for the WorkflowEngine traversal."""

    @pytest.mark.asyncio
    async def test_end_to_end(self):
        """Trigger payload feeds a prompt template; the model answer is stored."""
        service = StubAIService(answer="10")
        engine = make_engine(
            [
                make_node("trigger", "trigger",
                          webhookPayload='{"n": 5}',
                          outputMappings=[{"field": "n", "variable": "n"}]),
                make_node("double", "generate-text",
                          prompt="double {{n}}",
                          outputVariableName="result"),
            ],
            [make_edge("trigger", "double")],
            ai_service=service,
        )

        await engine.run()

        assert engine.variables.get("result") == "10"
        assert engine.graph.get("trigger").data.status == NodeStatus.SUCCESS
        assert engine.graph.get("double").data.status == NodeStatus.SUCCESS
        assert engine.graph.get("double").data.output_value == "10"
        assert service.calls[0]["data"].prompt == "double 5"
        assert service.calls[0]["context"] == '{\n  "n": 5\n}'
        assert engine.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_sibling_isolation(self):
        """A failing branch does not stop its siblings."""
        engine = make_engine(
            [
                make_node("trigger", "trigger"),
                make_node("a", "generate-text", prompt="{{missing}}"),
                make_node("a_child", "passthrough"),
                make_node("b", "passthrough", outputVariableName="b_out"),
            ],
            [make_edge("trigger", "a"), make_edge("a", "a_child"), make_edge("trigger", "b")],
        )

        await engine.run()

        a = engine.graph.get("a")
        assert a.data.status == NodeStatus.ERROR
        assert "Variable 'missing' not found" in a.data.error_message
        assert engine.graph.get("a_child").data.status == NodeStatus.IDLE
        assert engine.graph.get("b").data.status == NodeStatus.SUCCESS
        assert engine.variables.has("b_out")

    @pytest.mark.asyncio
    async def test_invocation_error_is_attached_to_node(self):
        service = StubAIService(fail_with="Token Limit Exceeded: too large")
        engine = make_engine(
            [make_node("trigger", "trigger"), make_node("gen", "generate-text")],
            [make_edge("trigger", "gen")],
            ai_service=service,
        )

        await engine.run()

        gen = engine.graph.get("gen")
        assert gen.data.status == NodeStatus.ERROR
        assert gen.data.error_message == "Token Limit Exceeded: too large"
        assert any("Error in node gen: Token Limit Exceeded" in line for line in engine.logs)

    @pytest.mark.asyncio
    async def test_no_trigger(self):
        """A graph without a trigger is logged, not raised."""
        logs: List[List[str]] = []
        nodes = [make_node("a", "passthrough")]
        await run_workflow({"nodes": nodes, "edges": []}, on_log=logs.append, settings=FAST,
                           ai_service=StubAIService())

        assert logs[-1][-1].endswith("Error: No trigger node found.")

    @pytest.mark.asyncio
    async def test_no_trigger_status(self):
        engine = make_engine([make_node("a", "passthrough")], [])
        await engine.run()
        assert engine.status == ExecutionStatus.FAILED
        assert engine.graph.get("a").data.status == NodeStatus.IDLE

    @pytest.mark.asyncio
    async def test_depth_first_edge_order(self):
        engine = make_engine(
            [
                make_node("trigger", "trigger"),
                make_node("a", "passthrough"),
                make_node("b", "passthrough"),
                make_node("c", "passthrough"),
            ],
            [make_edge("trigger", "a"), make_edge("trigger", "b"), make_edge("a", "c")],
        )

        await engine.run()

        order = [step.node_id for step in engine.context.history]
        assert order == ["trigger", "a", "c", "b"]

    @pytest.mark.asyncio
    async def test_payload_flows_along_edges(self):
        engine = make_engine(
            [
                make_node("trigger", "trigger", webhookPayload='{"k": "v"}'),
                make_node("p", "passthrough"),
                make_node("q", "passthrough", outputVariableName="final"),
            ],
            [make_edge("trigger", "p"), make_edge("p", "q")],
        )

        await engine.run()

        assert engine.variables.get("final") == {"k": "v"}

    @pytest.mark.asyncio
    async def test_cycle_detected(self):
        engine = make_engine(
            [
                make_node("trigger", "trigger"),
                make_node("a", "passthrough"),
                make_node("b", "passthrough"),
            ],
            [make_edge("trigger", "a"), make_edge("a", "b"), make_edge("b", "a")],
        )

        await engine.run()

        assert engine.graph.get("a").data.status == NodeStatus.SUCCESS
        assert engine.graph.get("b").data.status == NodeStatus.SUCCESS
        assert [step.node_id for step in engine.context.history] == ["trigger", "a", "b"]
        assert any("Cycle detected: a -> b -> a. Edge b -> a skipped." in line for line in engine.logs)
        assert engine.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_self_loop(self):
        engine = make_engine(
            [make_node("trigger", "trigger"), make_node("a", "passthrough")],
            [make_edge("trigger", "a"), make_edge("a", "a")],
        )
        await engine.run()

        a = engine.graph.get("a")
        assert a.data.status == NodeStatus.SUCCESS
        assert a.data.error_message is None
        assert any("Cycle detected: a -> a" in line for line in engine.logs)

    @pytest.mark.asyncio
    async def test_cycle_back_to_trigger_keeps_statuses(self):
        """Node status and history agree when an edge leads back to the trigger."""
        engine = make_engine(
            [make_node("t", "trigger"), make_node("a", "passthrough")],
            [make_edge("t", "a"), make_edge("a", "t")],
        )

        await engine.run()

        history = [(step.node_id, step.result) for step in engine.context.history]
        assert history == [("t", "success"), ("a", "success")]
        for node_id, result in history:
            assert engine.graph.get(node_id).data.status.value == result
        assert any("Cycle detected: t -> a -> t" in line for line in engine.logs)

    @pytest.mark.asyncio
    async def test_diamond_runs_join_once_per_path(self):
        engine = make_engine(
            [
                make_node("trigger", "trigger"),
                make_node("b", "passthrough"),
                make_node("c", "passthrough"),
                make_node("d", "passthrough"),
            ],
            [
                make_edge("trigger", "b"),
                make_edge("trigger", "c"),
                make_edge("b", "d"),
                make_edge("c", "d"),
            ],
        )

        await engine.run()

        visits = [step.node_id for step in engine.context.history if step.node_id == "d"]
        assert len(visits) == 2
        assert engine.graph.get("d").data.status == NodeStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_missing_edge_target(self):
        engine = make_engine(
            [make_node("trigger", "trigger")],
            [make_edge("trigger", "ghost")],
        )
        await engine.run()
        assert engine.graph.get("trigger").data.status == NodeStatus.SUCCESS
        assert any("Edge target 'ghost' not found" in line for line in engine.logs)

    @pytest.mark.asyncio
    async def test_caller_graph_is_not_mutated(self):
        nodes = [Node.model_validate(make_node("trigger", "trigger"))]
        edges = [Edge(source="trigger", target="trigger2")]

        engine = WorkflowEngine({"nodes": nodes, "edges": edges}, ai_service=StubAIService(), settings=FAST)
        await engine.run()

        assert nodes[0].data.status == NodeStatus.IDLE
        assert nodes[0].data.output_value is None
        assert engine.graph.get("trigger").data.status == NodeStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_previous_run_state_is_reset(self):
        node = Node.model_validate(make_node("trigger", "trigger"))
        node.data.status = NodeStatus.ERROR
        node.data.error_message = "old failure"

        engine = WorkflowEngine({"nodes": [node], "edges": []}, ai_service=StubAIService(), settings=FAST)
        await engine.run()

        trigger = engine.graph.get("trigger")
        assert trigger.data.status == NodeStatus.SUCCESS
        assert trigger.data.error_message is None

    @pytest.mark.asyncio
    async def test_status_sink_sees_each_transition(self):
        seen: List[str] = []

        def on_nodes_changed(nodes: List[Node]):
            seen.append(nodes[0].data.status.value)

        engine = make_engine([make_node("trigger", "trigger")], [], on_nodes_changed=on_nodes_changed)
        await engine.run()

        assert seen == ["idle", "running", "success"]

    @pytest.mark.asyncio
    async def test_log_sink_receives_full_log(self):
        calls: List[List[str]] = []
        engine = make_engine([make_node("trigger", "trigger")], [], on_log=calls.append)

        await engine.run()

        assert [len(c) for c in calls] == list(range(1, len(calls) + 1))
        final = calls[-1]
        assert all(re.match(r"^\[\d{2}:\d{2}:\d{2}\] ", line) for line in final)
        assert final[0].endswith("Starting workflow execution...")
        assert final[-2].endswith("Workflow execution finished.")
        assert final[-1].endswith("Final Global Variables: []")

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_abort_run(self):
        def broken(_):
            raise RuntimeError("render failed")

        engine = make_engine(
            [make_node("trigger", "trigger", outputVariableName="t")],
            [],
            on_nodes_changed=broken,
            on_log=broken,
        )
        await engine.run()

        assert engine.graph.get("trigger").data.status == NodeStatus.SUCCESS
        assert engine.variables.has("t")

    @pytest.mark.asyncio
    async def test_async_sinks_are_awaited(self):
        lines: List[str] = []

        async def on_log(logs: List[str]):
            lines.append(logs[-1])

        engine = make_engine([make_node("trigger", "trigger")], [], on_log=on_log)
        await engine.run()

        assert lines == engine.logs
        assert not engine.context.sink_tasks

    @pytest.mark.asyncio
    async def test_failing_async_sink_is_released(self):
        async def broken(_):
            await asyncio.sleep(0)
            raise RuntimeError("socket closed")

        engine = make_engine([make_node("trigger", "trigger")], [], on_nodes_changed=broken)
        await engine.run()

        assert engine.graph.get("trigger").data.status == NodeStatus.SUCCESS
        assert not engine.context.sink_tasks

    @pytest.mark.asyncio
    async def test_editor_loop_node_forwards_payload(self):
        engine = make_engine(
            [
                make_node("hook", "webhook", webhookPayload='{"items": [1, 2]}'),
                make_node("each", "loop", loopArray="items", outputVariableName="looped"),
            ],
            [make_edge("hook", "each")],
        )

        await engine.run()

        assert engine.graph.get("each").data.status == NodeStatus.SUCCESS
        assert engine.variables.get("looped") == {"items": [1, 2]}

    @pytest.mark.asyncio
    async def test_variables_reset_between_runs(self):
        engine = make_engine([make_node("trigger", "trigger", outputVariableName="t")], [])
        await engine.run()
        engine.variables.set("stale", 1)

        await engine.run()

        assert not engine.variables.has("stale")
        assert engine.variables.has("t")

    @pytest.mark.asyncio
    async def test_image_inputs_resolved_from_variables(self):
        service = StubAIService(answer="data:image/png;base64,OUT")
        engine = make_engine(
            [
                make_node("trigger", "trigger",
                          webhookPayload='{"img": "data:image/png;base64,IN"}',
                          outputMappings=[{"field": "img", "variable": "source"}]),
                make_node("edit", "ai-image",
                          prompt="Make it blue",
                          inputs=[{"type": "variable", "value": "{{source}}"},
                                  {"type": "variable", "value": "ghost"}],
                          outputVariableName="edited"),
            ],
            [make_edge("trigger", "edit")],
            ai_service=service,
        )

        await engine.run()

        sent = service.calls[0]["data"]
        assert [i.value for i in sent.inputs] == ["data:image/png;base64,IN", "ghost"]
        assert engine.variables.get("edited") == "data:image/png;base64,OUT"
        assert engine.graph.get("edit").data.status == NodeStatus.SUCCESS
        assert any("Warning: Variable 'ghost' not found" in line for line in engine.logs)

    @pytest.mark.asyncio
    async def test_legacy_image_variable_failure_fails_node(self):
        engine = make_engine(
            [
                make_node("trigger", "trigger"),
                make_node("edit", "generate-image", inputImageVariable="ghost"),
            ],
            [make_edge("trigger", "edit")],
        )

        await engine.run()

        assert engine.graph.get("edit").data.status == NodeStatus.ERROR

    @pytest.mark.asyncio
    async def test_execution_summary(self):
        engine = make_engine([make_node("trigger", "trigger", outputVariableName="t")], [])
        await engine.run()

        summary = engine.get_execution_summary()

        assert summary["status"] == "completed"
        assert summary["nodes"][0]["data"]["status"] == "success"
        assert "t" in summary["variables"]
        assert summary["history"][0]["result"] == "success"
        assert summary["history"][0]["duration_ms"] >= 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
