"""
Unit tests for the orchestrator loop.

The model backend is a scripted DummyModelClient; capabilities are real
registry entries with in-memory handlers.
"""
import asyncio
import json

import httpx
import pytest
from structlog.testing import capture_logs

from dependify.core.config import Settings
from dependify.services.ai.capabilities import register_builtin_capabilities
from dependify.services.ai.errors import ModelBackendError, OrchestrationCancelledError
from dependify.services.ai.llm_client import ModelClient
from dependify.services.ai.markets import MarketCode
from dependify.services.ai.orchestration import (
    NO_COMMENTARY_RESPONSE,
    STEP_LIMIT_RESPONSE,
    SYSTEM_PROMPT,
    Orchestrator,
    create_orchestrator,
)
from dependify.services.ai.schema import (
    ClassifiedIntent,
    ConversationMessage,
    IntentCategory,
    ModelTier,
)

from stubs import CAPABLE_MODEL, CHEAP_MODEL, DummyModelClient, make_skill, make_tool, text_turn, tool_turn


class DummyClassifier:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.messages = []

    async def classify(self, message):
        self.messages.append(message)
        if self.error is not None:
            raise self.error
        return self.result


def tool_results(transcript_entry):
    assert transcript_entry["role"] == "user"
    return transcript_entry["content"]


@pytest.mark.asyncio
async def test_blog_post_end_to_end_in_nigeria(registry, ng_context):
    """A blog request in NG invokes the blog skill and returns its text."""
    blog_payload = {
        "title": "Solar Panels for Lagos Homes",
        "body": "## Why solar\n...",
        "metaDescription": "A guide",
        "suggestedTags": ["solar"],
    }
    client = DummyModelClient(
        turns=[
            tool_turn(
                ("toolu_1", "content__blog__generate", {"keyword": "solar panels", "topic": "Solar for homes"}),
                text="I'll write that post now.",
            ),
            text_turn("Here is your blog post: Solar Panels for Lagos Homes."),
        ],
        texts=[json.dumps(blog_payload)],
    )
    register_builtin_capabilities(registry, client)
    orchestrator = Orchestrator(registry, client)

    result = await orchestrator.process("generate a blog post about solar panels", ng_context)

    assert result.tools_used == ["content.blog.generate"]
    assert result.response == "Here is your blog post: Solar Panels for Lagos Homes."
    assert result.rounds == 2
    assert result.input_tokens == 30
    assert result.output_tokens == 15
    assert result.tokens_used == 45
    assert result.tier == ModelTier.CAPABLE
    assert not result.stopped_early

    # The skill ran on the capable tier with the market from the tenant
    assert client.text_calls[0]["tier"] == ModelTier.CAPABLE
    assert "Market/region: NG" in client.text_calls[0]["prompt"]

    # NG tenants are offered the tax tool and every skill
    _, options = client.calls[0]
    offered = [entry["name"] for entry in options.callable_schema]
    assert offered[0] == "finance__tax__calculate"
    assert "content__blog__generate" in offered
    assert options.system_prompt == SYSTEM_PROMPT
    assert options.tier == ModelTier.CAPABLE


@pytest.mark.asyncio
async def test_transcript_grows_by_turn_and_results(registry, ng_context):
    registry.register(make_tool("email.send"))
    first = tool_turn(("toolu_1", "email__send", {"value": "hi"}))
    client = DummyModelClient(turns=[first, text_turn("Sent.")])

    await Orchestrator(registry, client).process("email the team", ng_context)

    round_one, _ = client.calls[0]
    round_two, _ = client.calls[1]
    assert round_one == [{"role": "user", "content": "email the team"}]
    assert round_two[:1] == round_one
    assert round_two[1] == first.to_transcript()
    [block] = tool_results(round_two[2])
    assert block["type"] == "tool_result"
    assert block["tool_use_id"] == "toolu_1"
    assert json.loads(block["content"]) == {"echo": {"value": "hi"}, "market": "NG"}
    assert len(round_two) == 3


@pytest.mark.asyncio
async def test_history_precedes_message(registry, ng_context):
    client = DummyModelClient(turns=[text_turn("Welcome back.")])
    history = [
        ConversationMessage(role="user", content="hi"),
        {"role": "assistant", "content": "hello, how can I help?"},
    ]

    await Orchestrator(registry, client).process("remind me what we discussed", ng_context, history)

    transcript, _ = client.calls[0]
    assert transcript == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello, how can I help?"},
        {"role": "user", "content": "remind me what we discussed"},
    ]


@pytest.mark.asyncio
async def test_capability_error_does_not_abort(registry, ng_context):
    async def failing(input, context):
        raise RuntimeError("Paystack secret key not configured")

    registry.register(make_tool("payment.paystack.charge", handler=failing, markets=[MarketCode.NG]))
    client = DummyModelClient(
        turns=[
            tool_turn(("toolu_1", "payment__paystack__charge", {"value": "5000"})),
            text_turn("Payments are not set up yet; add your Paystack key in settings."),
        ]
    )

    result = await Orchestrator(registry, client).process("charge the customer", ng_context)

    assert result.tools_used == ["payment.paystack.charge"]
    assert "Paystack" in result.response
    transcript, _ = client.calls[1]
    [block] = tool_results(transcript[-1])
    assert json.loads(block["content"]) == {"error": "Paystack secret key not configured"}


@pytest.mark.asyncio
async def test_unserializable_capability_output_does_not_abort(registry, ng_context):
    async def tuple_keys(input, context):
        return {1.5: "x", (1, 2): "tuple key"}

    registry.register(make_tool("inventory.stock.check", handler=tuple_keys))
    client = DummyModelClient(
        turns=[
            tool_turn(("toolu_1", "inventory__stock__check", {})),
            text_turn("I could not read the stock levels."),
        ]
    )

    result = await Orchestrator(registry, client).process("how much stock is left?", ng_context)

    assert result.response == "I could not read the stock levels."
    assert result.tools_used == ["inventory.stock.check"]
    transcript, _ = client.calls[1]
    [block] = tool_results(transcript[-1])
    assert block["is_error"] is True
    assert "not JSON serializable" in json.loads(block["content"])["error"]


@pytest.mark.asyncio
async def test_state_transitions_are_logged(registry, ng_context):
    registry.register(make_tool("crm.contact.create"))
    client = DummyModelClient(
        turns=[
            tool_turn(("toolu_1", "crm__contact__create", {"value": "Ada"})),
            text_turn("Contact created."),
        ]
    )

    with capture_logs() as logs:
        await Orchestrator(registry, client).process("add Ada", ng_context)

    states = [
        (entry["state"], entry["round"])
        for entry in logs
        if entry["event"] == "orchestrator_state_entered"
    ]
    assert states == [
        ("classify", 0),
        ("filter_capabilities", 0),
        ("model_turn", 1),
        ("tool_dispatch", 1),
        ("model_turn", 2),
        ("finalize", 2),
    ]

@pytest.mark.asyncio
async def test_unknown_capability_is_reported_to_model(registry, ng_context):
    client = DummyModelClient(
        turns=[
            tool_turn(("toolu_1", "crm__contact__delete", {})),
            text_turn("I can't delete contacts."),
        ]
    )

    result = await Orchestrator(registry, client).process("delete Ada", ng_context)

    assert result.tools_used == ["crm.contact.delete"]
    transcript, _ = client.calls[1]
    [block] = tool_results(transcript[-1])
    assert json.loads(block["content"]) == {"error": "Capability 'crm.contact.delete' not found in registry"}


@pytest.mark.asyncio
async def test_tools_used_records_every_attempt_in_order(registry, ng_context):
    registry.register(make_tool("crm.contact.create"))
    registry.register_skill(make_skill("crm.contact.score"))
    client = DummyModelClient(
        turns=[
            tool_turn(
                ("toolu_1", "crm__contact__create", {}),
                ("toolu_2", "crm__missing", {}),
                ("toolu_3", "crm__contact__create", {}),
            ),
            tool_turn(("toolu_4", "crm__contact__score", {})),
            text_turn("Created and scored."),
        ]
    )

    result = await Orchestrator(registry, client).process("add and score Ada", ng_context)

    assert result.tools_used == [
        "crm.contact.create",
        "crm.missing",
        "crm.contact.create",
        "crm.contact.score",
    ]
    transcript, _ = client.calls[1]
    assert [b["tool_use_id"] for b in tool_results(transcript[-1])] == ["toolu_1", "toolu_2", "toolu_3"]


@pytest.mark.asyncio
async def test_market_gating_in_schema_and_dispatch(registry, us_context):
    called = []

    async def paystack(input, context):
        called.append(input)
        return {"ok": True}

    registry.register(make_tool("payment.paystack.charge", handler=paystack, markets=[MarketCode.NG]))
    registry.register_skill(make_skill("content.blog.generate"))
    client = DummyModelClient(
        turns=[
            tool_turn(("toolu_1", "payment__paystack__charge", {})),
            text_turn("Paystack is not available for your business."),
        ]
    )

    result = await Orchestrator(registry, client).process("charge via paystack", us_context)

    _, options = client.calls[0]
    assert [entry["name"] for entry in options.callable_schema] == ["content__blog__generate"]
    assert called == []
    assert result.tools_used == ["payment.paystack.charge"]
    transcript, _ = client.calls[1]
    [block] = tool_results(transcript[-1])
    assert "not available in market US" in json.loads(block["content"])["error"]


@pytest.mark.asyncio
async def test_no_capabilities_sends_no_schema(registry, ng_context):
    client = DummyModelClient(turns=[text_turn("Hi!")])

    await Orchestrator(registry, client).process("hello", ng_context)

    _, options = client.calls[0]
    assert options.callable_schema is None


@pytest.mark.asyncio
async def test_final_turn_without_text_uses_fixed_response(registry, ng_context):
    client = DummyModelClient(turns=[text_turn(None)])

    result = await Orchestrator(registry, client).process("do it", ng_context)

    assert result.response == NO_COMMENTARY_RESPONSE


@pytest.mark.asyncio
async def test_tool_use_stop_without_requests_finalizes(registry, ng_context):
    client = DummyModelClient(turns=[text_turn("Nothing to call.", stop_reason="tool_use")])

    result = await Orchestrator(registry, client).process("do it", ng_context)

    assert result.response == "Nothing to call."
    assert result.rounds == 1
    assert result.tools_used == []


@pytest.mark.asyncio
async def test_result_reports_final_turn_model(registry, ng_context):
    """After a fallback the result names the tier that actually answered."""
    client = DummyModelClient(turns=[text_turn("Done.", model=CHEAP_MODEL, tier=ModelTier.CHEAP)])

    result = await Orchestrator(registry, client).process("do it", ng_context)

    assert result.model == CHEAP_MODEL
    assert result.tier == ModelTier.CHEAP


@pytest.mark.asyncio
async def test_round_cap_stops_without_dispatch(registry, ng_context):
    calls = []

    async def handler(input, context):
        calls.append(input)
        return "ok"

    registry.register(make_tool("loop.step", handler=handler))
    client = DummyModelClient(
        turns=[
            tool_turn(("toolu_1", "loop__step", {"n": 1})),
            tool_turn(("toolu_2", "loop__step", {"n": 2}), text="Still working on step two."),
        ]
    )

    result = await Orchestrator(registry, client, max_rounds=2).process("loop forever", ng_context)

    assert result.stopped_early
    assert result.rounds == 2
    assert len(client.calls) == 2
    assert calls == [{"n": 1}]
    assert result.tools_used == ["loop.step"]
    assert result.response == "Still working on step two."
    assert result.tokens_used == 60


@pytest.mark.asyncio
async def test_round_cap_without_text_uses_step_limit_message(registry, ng_context):
    registry.register(make_tool("loop.step"))
    client = DummyModelClient(turns=[tool_turn(("toolu_1", "loop__step", {}))])

    result = await Orchestrator(registry, client, max_rounds=1).process("loop", ng_context)

    assert result.stopped_early
    assert result.response == STEP_LIMIT_RESPONSE
    assert result.tools_used == []


def test_max_rounds_must_be_positive(registry):
    with pytest.raises(ValueError):
        Orchestrator(registry, DummyModelClient(), max_rounds=0)


@pytest.mark.asyncio
async def test_model_backend_error_propagates(registry, ng_context):
    client = DummyModelClient(turns=[ModelBackendError("both tiers down", tier="cheap", status_code=529)])

    with pytest.raises(ModelBackendError):
        await Orchestrator(registry, client).process("hello", ng_context)


@pytest.mark.asyncio
async def test_classifier_result_is_attached(registry, ng_context):
    intent = ClassifiedIntent(category=IntentCategory.CRM, action="score_lead", confidence=0.8)
    classifier = DummyClassifier(result=intent)
    client = DummyModelClient(turns=[text_turn("Scored.")])

    result = await Orchestrator(registry, client, classifier=classifier).process("score Ada", ng_context)

    assert result.intent == intent
    assert classifier.messages == ["score Ada"]


@pytest.mark.asyncio
async def test_classifier_failure_does_not_block(registry, ng_context):
    classifier = DummyClassifier(error=RuntimeError("classifier exploded"))
    client = DummyModelClient(turns=[text_turn("Hello!")])

    result = await Orchestrator(registry, client, classifier=classifier).process("hi", ng_context)

    assert result.response == "Hello!"
    assert result.intent == ClassifiedIntent.default()


@pytest.mark.asyncio
async def test_deadline_raises_cancelled_error(registry, ng_context):
    class SlowModelClient(DummyModelClient):
        async def call(self, transcript, options=None):
            await asyncio.sleep(10)

    with pytest.raises(OrchestrationCancelledError):
        await Orchestrator(registry, SlowModelClient()).process("hi", ng_context, timeout_seconds=0.05)


@pytest.mark.asyncio
async def test_deadline_aborts_inflight_capability(registry, ng_context):
    finished = []

    async def slow(input, context):
        await asyncio.sleep(10)
        finished.append(True)

    registry.register(make_tool("slow.report", handler=slow))
    client = DummyModelClient(turns=[tool_turn(("toolu_1", "slow__report", {}))])
    orchestrator = Orchestrator(registry, client, timeout_seconds=0.05)

    with pytest.raises(OrchestrationCancelledError):
        await orchestrator.process("build the report", ng_context)

    assert finished == []


@pytest.mark.asyncio
async def test_task_cancellation_propagates(registry, ng_context):
    started = asyncio.Event()

    class BlockingModelClient(DummyModelClient):
        async def call(self, transcript, options=None):
            started.set()
            await asyncio.sleep(10)

    task = asyncio.create_task(Orchestrator(registry, BlockingModelClient()).process("hi", ng_context))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_concurrent_requests_do_not_share_state(registry, ng_context, us_context):
    registry.register(make_tool("email.send"))

    class RoutingModelClient(DummyModelClient):
        async def call(self, transcript, options=None):
            if len(transcript) == 1:
                await asyncio.sleep(0)
                return tool_turn(("toolu_1", "email__send", {"value": transcript[0]["content"]}))
            return text_turn(f"done: {transcript[0]['content']}")

    orchestrator = Orchestrator(registry, RoutingModelClient())

    first, second = await asyncio.gather(
        orchestrator.process("alpha", ng_context),
        orchestrator.process("beta", us_context),
    )

    assert first.response == "done: alpha"
    assert second.response == "done: beta"
    assert first.tools_used == second.tools_used == ["email.send"]


def test_create_orchestrator_wires_builtins():
    client = DummyModelClient()
    orchestrator = create_orchestrator(
        Settings(max_rounds=3, max_tokens=1000, request_timeout_seconds=12.5),
        model_client=client,
    )

    assert orchestrator.max_rounds == 3
    assert orchestrator.max_tokens == 1000
    assert orchestrator.timeout_seconds == 12.5
    assert orchestrator.model_client is client
    assert orchestrator.registry.get_tool("finance.tax.calculate") is not None
    assert orchestrator.registry.skill_count == 5
    assert orchestrator.classifier is not None


def test_create_orchestrator_uses_given_registry(registry):
    orchestrator = create_orchestrator(Settings(), registry=registry, model_client=DummyModelClient())

    assert orchestrator.registry is registry
    assert registry.tool_count == 0


@pytest.mark.asyncio
async def test_rate_limited_primary_falls_back_end_to_end(registry, ng_context):
    """Through the real client: one 429 on the capable tier, one cheap-tier call, a result."""
    models_called = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        models_called.append(body["model"])
        if body["model"] == CAPABLE_MODEL:
            return httpx.Response(429, json={"type": "error", "error": {"type": "rate_limit_error"}})
        return httpx.Response(200, json={
            "model": CHEAP_MODEL,
            "content": [{"type": "text", "text": "Here is what I found."}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 40, "output_tokens": 12},
        })

    client = ModelClient(
        api_base="https://llm.test/v1",
        api_key="test-key",
        models={ModelTier.CAPABLE: CAPABLE_MODEL, ModelTier.CHEAP: CHEAP_MODEL},
        transport=httpx.MockTransport(handler),
    )

    result = await Orchestrator(registry, client).process("how are sales this week?", ng_context)

    assert models_called == [CAPABLE_MODEL, CHEAP_MODEL]
    assert result.response == "Here is what I found."
    assert result.tier == ModelTier.CHEAP
    assert result.model == CHEAP_MODEL
    assert result.tokens_used == 52
