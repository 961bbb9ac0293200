import pytest

from gateflow.specialists import SPECIALISTS, SpecialistAgent, ToolPolicyError, get_specialist
from gateflow.tools.registry import WORKER_ROLES, tool_names_for_role


def test_every_role_has_a_specialist() -> None:
    assert set(SPECIALISTS) == set(WORKER_ROLES)
    for role in WORKER_ROLES:
        agent = get_specialist(role)
        assert agent.role == role
        assert agent.system_prompt
        assert agent.tool_names == tool_names_for_role(role)


def test_unknown_role_raises() -> None:
    with pytest.raises(ValueError, match="Unknown worker role"):
        get_specialist("astronaut")


def test_allowed_tools_are_checked_against_role() -> None:
    agent = get_specialist("architect", allowed_tools=["read_file", " register_spec ", ""])
    assert agent.tool_names == ["read_file", "register_spec"]

    with pytest.raises(ToolPolicyError, match="save_design_concept"):
        get_specialist("architect", allowed_tools=["save_design_concept"])
    with pytest.raises(ToolPolicyError, match="launch_rocket"):
        get_specialist("qa_engineer", allowed_tools=["launch_rocket"])


def test_designer_requires_three_concepts() -> None:
    designer = get_specialist("ux_ui_designer")

    assert designer.requires_artifacts is True
    assert designer.artifact_shortfall(3) is None
    assert designer.artifact_shortfall(1) == "Expected 3 design concepts, only 1 were saved."
    assert get_specialist("architect").artifact_shortfall(0) is None


def test_progress_messages_fall_back_to_role_name() -> None:
    assert get_specialist("architect").progress_message("finalizing").startswith("Finalizing")
    assert (
        get_specialist("product_manager").progress_message("start")
        == "PRODUCT MANAGER is working..."
    )


def test_clean_output_strips_reasoning_and_tool_markup() -> None:
    raw = (
        "<thinking>plan the doc</thinking>\n"
        "# Architecture\n"
        "\n[Calling register_spec...]\n"
        "[register_spec completed]\n"
        "<function_calls><invoke name=\"x\">...</invoke></function_calls>\n"
        "\n\n\nServices: api, web"
    )

    assert SpecialistAgent.clean_output(raw) == "# Architecture\n\nServices: api, web"
