"""Tests for the built-in node executors, run in isolation with a mock provider."""

import pytest

from flowgraph.errors import MissingCapabilityError
from flowgraph.executors import ExecutionContext, builtin_executors
from flowgraph.executors.generation import (
    AudioTranscriptionExecutor,
    ImageGenerationExecutor,
    ReactComponentExecutor,
    TextGenerationExecutor,
    ThreejsSceneExecutor,
)
from flowgraph.executors.inputs import (
    NO_CONVERSATION,
    AudioInputExecutor,
    RealtimeConversationExecutor,
    TextInputExecutor,
)
from flowgraph.executors.logic import (
    AILogicExecutor,
    StringCombineExecutor,
    SwitchExecutor,
    ThreejsOptionsExecutor,
    is_pulse_fired,
    parse_generated_logic,
)
from flowgraph.executors.output import PreviewOutputExecutor
from flowgraph.graph.inputs import resolve_inputs
from flowgraph.graph.node import NodeSpec, NodeType
from flowgraph.llm.mock import MockProviderClient
from flowgraph.llm.provider import ProviderError, ProviderErrorKind, ProviderTask
from flowgraph.runtime.cancellation import CancellationToken


def context(node_type, inputs=None, provider=None, **data):
    node = NodeSpec(id="n1", type=node_type, data=data)
    return ExecutionContext(
        node=node,
        inputs=inputs or {},
        cancel_token=CancellationToken(),
        provider=provider,
        run_id="test",
    )


def test_every_node_type_has_a_builtin_executor():
    types = {str(executor.type) for executor in builtin_executors()}
    assert types == {t.value for t in NodeType}


class TestInputs:
    @pytest.mark.asyncio
    async def test_text_input(self):
        result = await TextInputExecutor().execute(context("text-input", input_value="hi"))
        assert result.output == "hi"

    @pytest.mark.asyncio
    async def test_audio_input_requires_recording(self):
        executor = AudioInputExecutor()

        missing = await executor.execute(context("audio-input"))
        recorded = await executor.execute(
            context("audio-input", audio_buffer="UklGRg==", audio_mime_type="audio/wav")
        )

        assert missing.error == "No audio recorded"
        assert recorded.output["type"] == "buffer"
        assert recorded.output["mime_type"] == "audio/wav"
        assert recorded.pulse

    @pytest.mark.asyncio
    async def test_realtime_transcript(self):
        executor = RealtimeConversationExecutor()

        empty = await executor.execute(context("realtime-conversation"))
        talked = await executor.execute(
            context(
                "realtime-conversation",
                transcript=[
                    {"role": "user", "text": "Hi"},
                    {"role": "assistant", "text": "Hello!"},
                ],
            )
        )

        assert empty.output == NO_CONVERSATION
        assert talked.output == "User: Hi\nAI: Hello!"


class TestGeneration:
    @pytest.mark.asyncio
    async def test_text_generation_uses_node_model(self):
        provider = MockProviderClient({"text-generation": "Answer"})
        ctx = context(
            "text-generation",
            inputs={"prompt": "Question", "system": "Be brief"},
            provider=provider,
            model="claude-haiku-4-5",
        )

        result = await TextGenerationExecutor("openai", "gpt-5.2").execute(ctx)

        assert result.output == "Answer"
        assert result.pulse
        request = provider.calls[0]
        assert request.task == ProviderTask.TEXT_GENERATION
        assert request.provider == "openai"
        assert request.model == "claude-haiku-4-5"
        assert request.system == "Be brief"

    @pytest.mark.asyncio
    async def test_text_generation_without_prompt(self):
        result = await TextGenerationExecutor().execute(
            context("text-generation", provider=MockProviderClient())
        )
        assert result.error == "No prompt provided"

    @pytest.mark.asyncio
    async def test_provider_error_becomes_node_error(self):
        provider = MockProviderClient(
            {"text-generation": ProviderError(ProviderErrorKind.RATE_LIMIT, "slow down")}
        )

        result = await TextGenerationExecutor().execute(
            context("text-generation", inputs={"prompt": "x"}, provider=provider)
        )

        assert result.error == "rate_limit: slow down"

    @pytest.mark.asyncio
    async def test_missing_provider_raises(self):
        with pytest.raises(MissingCapabilityError):
            await TextGenerationExecutor().execute(
                context("text-generation", inputs={"prompt": "x"})
            )

    @pytest.mark.asyncio
    async def test_image_generation_wraps_url(self):
        provider = MockProviderClient({"image-generation": "https://img/1.png"})

        result = await ImageGenerationExecutor().execute(
            context(
                "image-generation",
                inputs={"prompt": "a cat"},
                provider=provider,
                prompt="watercolour",
                aspect_ratio="16:9",
            )
        )

        assert result.output == {"type": "image", "value": "https://img/1.png"}
        assert provider.calls[0].prompt == "watercolour\n\na cat"
        assert provider.calls[0].options == {"aspect_ratio": "16:9"}

    @pytest.mark.asyncio
    async def test_react_component_strips_fences(self):
        provider = MockProviderClient({"react-component": "```jsx\nexport default () => <b/>\n```"})

        result = await ReactComponentExecutor().execute(
            context("react-component", inputs={"prompt": "bold"}, provider=provider)
        )

        assert result.output == {"type": "react", "code": "export default () => <b/>"}

    @pytest.mark.asyncio
    async def test_threejs_scene_passes_scene_and_options(self):
        provider = MockProviderClient(
            {"threejs-scene": "```tsx\nexport default function Scene() {}\n```"}
        )
        inputs = {
            "prompt": "a spinning cube",
            "system": "Keep it small",
            "scene": '{"color": "red"}',
            "options": "CAMERA: orbit",
        }

        result = await ThreejsSceneExecutor().execute(
            context("threejs-scene", inputs=inputs, provider=provider)
        )

        assert result.output == {"type": "threejs", "code": "export default function Scene() {}"}
        assert result.pulse
        request = provider.calls[0]
        assert request.task == ProviderTask.THREEJS_SCENE
        assert request.prompt == (
            'a spinning cube\n\nsceneInput:\n{"color": "red"}\n\nScene options:\nCAMERA: orbit'
        )
        assert request.system.endswith("\n\nKeep it small")

    @pytest.mark.asyncio
    async def test_threejs_scene_requires_description(self):
        provider = MockProviderClient({"threejs-scene": "unused"})

        result = await ThreejsSceneExecutor().execute(
            context("threejs-scene", inputs={"prompt": "  "}, provider=provider)
        )

        assert result.error == "Scene description is required"
        assert provider.calls == []

    def test_threejs_scene_streams_and_pulses(self):
        executor = ThreejsSceneExecutor()
        assert executor.has_pulse_output
        assert executor.should_track_downstream

    @pytest.mark.asyncio
    async def test_transcription_requires_buffer(self):
        provider = MockProviderClient({"audio-transcription": "hello there"})
        executor = AudioTranscriptionExecutor()

        bad = await executor.execute(
            context("audio-transcription", inputs={"audio": "not json"}, provider=provider)
        )
        good = await executor.execute(
            context(
                "audio-transcription",
                inputs={"audio": {"type": "buffer", "buffer": "AAAA"}},
                provider=provider,
            )
        )

        assert bad.error == "Invalid audio input"
        assert good.output == "hello there"


class TestLogic:
    @pytest.mark.asyncio
    async def test_ai_logic_generates_and_evaluates(self):
        provider = MockProviderClient(
            {"ai-logic": "EXPLANATION: Joins inputs.\nCODE: input1.upper() + '-' + input2"}
        )

        result = await AILogicExecutor().execute(
            context(
                "ai-logic",
                inputs={"transform": "join them", "input1": "a", "input2": "b"},
                provider=provider,
            )
        )

        assert result.output == "A-b"
        assert result.side_effects["generated_code"] == "input1.upper() + '-' + input2"
        assert result.side_effects["generated_for"] == "join them"
        assert result.side_effects["code_explanation"] == "Joins inputs."

    @pytest.mark.asyncio
    async def test_ai_logic_reuses_code_for_same_transform(self):
        provider = MockProviderClient()

        result = await AILogicExecutor().execute(
            context(
                "ai-logic",
                inputs={"transform": "double", "input1": "ab"},
                provider=provider,
                generated_code="input1 * 2",
                generated_for="double",
            )
        )

        assert result.output == "abab"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_ai_logic_rejects_unsafe_code(self):
        result = await AILogicExecutor().execute(
            context(
                "ai-logic",
                inputs={"transform": "x"},
                generated_code="__import__('os')",
                generated_for="x",
            )
        )

        assert result.error.startswith("Generated code rejected")

    def test_parse_generated_logic(self):
        code, explanation = parse_generated_logic("EXPLANATION: Adds.\nCODE: ```python\n1 + 1\n```")
        assert code == "1 + 1"
        assert explanation == "Adds."

    @pytest.mark.parametrize(
        "inputs, initial, expected",
        [
            ({"flip": {"fired": True}}, False, True),
            ({"flip": {"fired": True}}, True, False),
            ({"turnOn": {"fired": True}, "turnOff": {"fired": True}}, False, False),
            ({"turnOn": '{"fired": true}'}, False, True),
            ({}, True, True),
        ],
    )
    @pytest.mark.asyncio
    async def test_switch_priorities(self, inputs, initial, expected):
        result = await SwitchExecutor().execute(context("switch", inputs=inputs, is_on=initial))

        assert result.output is expected
        assert result.side_effects == {"is_on": expected}

    def test_is_pulse_fired(self):
        assert is_pulse_fired(True)
        assert is_pulse_fired({"fired": True, "timestamp": "now"})
        assert not is_pulse_fired({"fired": False})
        assert not is_pulse_fired("garbage")
        assert not is_pulse_fired(None)

    @pytest.mark.asyncio
    async def test_string_combine(self):
        result = await StringCombineExecutor().execute(
            context(
                "string-combine",
                inputs={"input1": "a", "input2": "", "input3": True, "input4": "d"},
                separator=", ",
            )
        )

        assert result.output == "a, true, d"

    @pytest.mark.asyncio
    async def test_threejs_options_combines_sections(self):
        result = await ThreejsOptionsExecutor().execute(
            context(
                "threejs-options",
                inputs={"camera": "orbit around origin", "light": "", "mouse": "drag to rotate"},
            )
        )

        assert result.output == "CAMERA: orbit around origin\nMOUSE: drag to rotate"
        assert result.pulse

    @pytest.mark.asyncio
    async def test_threejs_options_falls_back_to_inline_text(self):
        node = NodeSpec(
            id="opts",
            type="threejs-options",
            data={"camera_text": "top down", "light_text": "soft ambient"},
        )
        inputs = resolve_inputs(node, [])

        result = await ThreejsOptionsExecutor().execute(
            context("threejs-options", inputs=inputs)
        )

        assert result.output == "CAMERA: top down\nLIGHT: soft ambient"


class TestPreview:
    @pytest.mark.asyncio
    async def test_image_wins_over_text(self):
        image = {"type": "image", "value": "https://img/1.png"}

        result = await PreviewOutputExecutor().execute(
            context("preview-output", inputs={"input": "text", "image": image})
        )

        assert result.output == image
        assert result.port_outputs == {"input": "text", "image": image}

    @pytest.mark.asyncio
    async def test_string_is_last_resort(self):
        result = await PreviewOutputExecutor().execute(
            context("preview-output", inputs={"string": "only"})
        )

        assert result.output == "only"
