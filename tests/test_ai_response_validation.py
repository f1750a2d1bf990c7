from feedback_assistant.services.ai_prompt_schemas import AIClassificationOutput
from feedback_assistant.services.ai_response_validation import parse_json_object, validate_model


def test_parse_json_object_handles_code_fence():
    payload = parse_json_object('```json\n{"query_type":"feedback","confidence":0.8}\n```')
    assert payload == {"query_type": "feedback", "confidence": 0.8}


def test_parse_json_object_finds_object_in_chatter():
    payload = parse_json_object('Sure! Here you go: {"query_type": "analytics"} Hope that helps.')
    assert payload == {"query_type": "analytics"}


def test_parse_json_object_rejects_non_objects():
    assert parse_json_object("[1, 2, 3]") is None
    assert parse_json_object("no json here") is None


def test_classification_normalizes_model_output():
    model = validate_model(
        AIClassificationOutput,
        {
            "query_type": " Actions ",
            "requires_action": True,
            "action_type": "create_ticket",
            "parameters": "not-a-dict",
            "confidence": "1.7",
        },
    )
    assert model is not None
    assert model.query_type == "actions"
    assert model.parameters == {}
    assert model.confidence == 1.0


def test_unknown_query_type_falls_back_to_general():
    model = validate_model(AIClassificationOutput, {"query_type": "weather", "confidence": None})
    assert model.query_type == "general"
    assert model.confidence == 0.0


def test_validate_model_none_passthrough():
    assert validate_model(AIClassificationOutput, None) is None
