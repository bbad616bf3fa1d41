"""Tests for stage transitions, back-navigation and terminal protection."""
from wizardflow.core.controller import StageController
from wizardflow.core.workflow import STAGE_ORDER, WizardStage, previous_stage
from wizardflow.schemas.wizard import WizardState


def test_transition_records_history():
    controller = StageController()

    controller.transition(WizardStage.TEMPLATE_SELECT)
    controller.transition(WizardStage.CONTENT_QUALITY)

    assert controller.stage == WizardStage.CONTENT_QUALITY
    assert controller.state.stage_history == [WizardStage.PACKAGE_SELECT, WizardStage.TEMPLATE_SELECT]


def test_transition_to_current_stage_is_noop():
    controller = StageController()
    seen = []
    controller.subscribe(lambda old, new: seen.append(new.stage))

    controller.transition(WizardStage.PACKAGE_SELECT)

    assert seen == []
    assert controller.state.stage_history == []


def test_back_pops_history():
    controller = StageController()
    controller.transition(WizardStage.TEMPLATE_SELECT)
    controller.transition(WizardStage.SECURITY)

    assert controller.back() == WizardStage.TEMPLATE_SELECT
    assert controller.state.stage_history == [WizardStage.PACKAGE_SELECT]


def test_back_without_history_uses_canonical_order():
    controller = StageController(WizardState(stage=WizardStage.TECHNICAL_SEO, selected_package="starter"))

    assert controller.back() == WizardStage.KEYWORDS_SEMANTIC_SEO
    assert controller.back() == WizardStage.CONTENT_QUALITY


def test_back_at_first_stage_returns_none():
    controller = StageController()

    assert controller.back() is None
    assert controller.stage == WizardStage.PACKAGE_SELECT


def test_previous_stage_covers_order():
    assert previous_stage(STAGE_ORDER[0]) is None
    for earlier, later in zip(STAGE_ORDER, STAGE_ORDER[1:]):
        assert previous_stage(later) == earlier
    assert previous_stage(WizardStage.COMPLETED) is None


def test_update_applies_against_latest_state():
    controller = StageController()
    controller.patch(selected_package="starter")

    controller.update(lambda s: s.model_copy(update={"redesign_count": s.redesign_count + 1}))
    controller.update(lambda s: s.model_copy(update={"redesign_count": s.redesign_count + 1}))

    assert controller.state.redesign_count == 2
    assert controller.state.selected_package == "starter"


def test_listeners_receive_old_and_new():
    controller = StageController()
    seen = []
    unsubscribe = controller.subscribe(lambda old, new: seen.append((old.stage, new.stage)))

    controller.transition(WizardStage.TEMPLATE_SELECT)
    unsubscribe()
    controller.transition(WizardStage.CONTENT_QUALITY)

    assert seen == [(WizardStage.PACKAGE_SELECT, WizardStage.TEMPLATE_SELECT)]


def test_final_stage_refuses_reset_and_replace():
    final = WizardState(stage=WizardStage.FINAL, selected_package="pro", generated_artifact={"files": {}})
    controller = StageController(final)

    assert not controller.reset()
    assert not controller.replace(WizardState())
    assert controller.state is final


def test_final_stage_can_only_move_to_completed():
    final = WizardState(stage=WizardStage.FINAL, selected_package="pro", generated_artifact={"files": {}})
    controller = StageController(final)
    seen = []
    controller.subscribe(lambda old, new: seen.append(new.stage))

    assert controller.transition(WizardStage.TEMPLATE_SELECT) == WizardStage.FINAL
    assert controller.back() is None
    controller.patch(stage=WizardStage.BUILD)
    assert controller.state is final
    assert seen == []

    assert controller.transition(WizardStage.COMPLETED) == WizardStage.COMPLETED
    assert seen == [WizardStage.COMPLETED]
