"""클래스 레벨 변경 / 드롭 검증 / 워크플로우 계약 테스트"""

import pytest

from src.core.sheet.advancement import (
    LevelChange,
    NullAdvancementWorkflow,
    WorkflowCancelled,
    class_identifier,
    plan_item_drop,
    plan_level_change,
    resolve_level_change,
)
from src.core.sheet.models import Character, ItemKind, RuleViolation
from src.core.sheet.rules import DEFAULT_RULES


class RecordingWorkflow:
    """선택 단계 / 확인 응답을 지정할 수 있는 테스트용 워크플로우"""

    def __init__(self, steps=(), confirm=False, complete=True, cancel=False):
        self.steps = list(steps)
        self.confirm = confirm
        self.complete = complete
        self.cancel = cancel
        self.ran = []

    def steps_for(self, character, change):
        return self.steps

    def confirm_level_down(self, character, change):
        if self.cancel:
            raise WorkflowCancelled()
        return self.confirm

    def run(self, character, change, steps):
        self.ran.append((change, steps))
        return self.complete


@pytest.fixture()
def fighter_build(make_item):
    fighter = make_item(ItemKind.CLASS, "Fighter", {"identifier": "fighter", "levels": 15}, item_id="F")
    return Character("c1", "Hero", items=[fighter])


class TestPlanLevelChange:
    def test_valid_change(self, fighter_build):
        change = plan_level_change(fighter_build, "F", 2)
        assert change == LevelChange("c1", "F", 15, 2)
        assert change.new_level == 17
        assert not change.is_level_down

    @pytest.mark.parametrize(
        "class_id, delta, code",
        [
            ("F", 0, "zero_delta"),
            ("missing", 1, "unknown_class"),
            ("F", -15, "min_level"),
            ("F", 6, "max_level_exceeded"),
        ],
    )
    def test_rejections(self, fighter_build, class_id, delta, code):
        with pytest.raises(RuleViolation) as exc:
            plan_level_change(fighter_build, class_id, delta)
        assert exc.value.code == code

    def test_configured_max_level(self, fighter_build):
        with pytest.raises(RuleViolation):
            plan_level_change(fighter_build, "F", 1, DEFAULT_RULES.with_max_level(15))


class TestPlanItemDrop:
    def test_class_levels_clamped_to_budget(self, fighter_build, make_item):
        wizard = make_item(ItemKind.CLASS, "Wizard", {"identifier": "wizard", "levels": 10})
        planned = plan_item_drop(fighter_build, wizard)
        assert planned.system["levels"] == 5
        assert wizard.system["levels"] == 10

    def test_class_drop_at_max_rejected(self, make_item):
        full = make_item(ItemKind.CLASS, "Fighter", {"identifier": "fighter", "levels": 20})
        character = Character("c1", "Hero", items=[full])
        wizard = make_item(ItemKind.CLASS, "Wizard", {"identifier": "wizard"})
        with pytest.raises(RuleViolation) as exc:
            plan_item_drop(character, wizard)
        assert exc.value.code == "max_level_exceeded"

    def test_existing_class_becomes_level_change(self, fighter_build, make_item):
        again = make_item(ItemKind.CLASS, "Fighter", {"identifier": "fighter", "levels": 2})
        planned = plan_item_drop(fighter_build, again)
        assert planned == LevelChange("c1", "F", 15, 2)

    def test_subclass_duplicate_identifier(self, fighter_build, make_item):
        fighter_build.items.append(
            make_item(ItemKind.SUBCLASS, "Champion", {"identifier": "champion", "classIdentifier": "fighter"})
        )
        again = make_item(ItemKind.SUBCLASS, "Champion", {"identifier": "champion", "classIdentifier": "fighter"})
        with pytest.raises(RuleViolation) as exc:
            plan_item_drop(fighter_build, again)
        assert exc.value.code == "duplicate_subclass"

    def test_class_already_has_subclass(self, fighter_build, make_item):
        fighter_build.items.append(
            make_item(ItemKind.SUBCLASS, "Champion", {"classIdentifier": "fighter"})
        )
        other = make_item(ItemKind.SUBCLASS, "Battle Master", {"classIdentifier": "fighter"})
        with pytest.raises(RuleViolation) as exc:
            plan_item_drop(fighter_build, other)
        assert exc.value.code == "class_has_subclass"

    def test_subclass_for_absent_class_allowed(self, fighter_build, make_item):
        thief = make_item(ItemKind.SUBCLASS, "Thief", {"classIdentifier": "rogue"})
        assert plan_item_drop(fighter_build, thief) is thief

    def test_other_kinds_pass_through(self, fighter_build, make_item):
        dagger = make_item(ItemKind.WEAPON, "Dagger")
        assert plan_item_drop(fighter_build, dagger) is dagger


class TestResolveLevelChange:
    def test_no_steps_applies(self, fighter_build):
        change = LevelChange("c1", "F", 15, 1)
        assert resolve_level_change(fighter_build, change, NullAdvancementWorkflow())

    def test_level_up_runs_workflow(self, fighter_build):
        workflow = RecordingWorkflow(steps=["asi"])
        change = LevelChange("c1", "F", 15, 1)
        assert resolve_level_change(fighter_build, change, workflow)
        assert workflow.ran == [(change, ["asi"])]

    def test_level_up_cancelled_in_workflow(self, fighter_build):
        workflow = RecordingWorkflow(steps=["asi"], complete=False)
        assert not resolve_level_change(fighter_build, LevelChange("c1", "F", 15, 1), workflow)

    def test_level_down_confirmed_removal(self, fighter_build):
        workflow = RecordingWorkflow(steps=["asi"], confirm=True)
        assert resolve_level_change(fighter_build, LevelChange("c1", "F", 15, -1), workflow)
        assert len(workflow.ran) == 1

    def test_level_down_plain_update(self, fighter_build):
        workflow = RecordingWorkflow(steps=["asi"], confirm=False)
        assert resolve_level_change(fighter_build, LevelChange("c1", "F", 15, -1), workflow)
        assert workflow.ran == []

    def test_level_down_cancelled_is_noop(self, fighter_build):
        workflow = RecordingWorkflow(steps=["asi"], cancel=True)
        assert not resolve_level_change(fighter_build, LevelChange("c1", "F", 15, -1), workflow)
        assert workflow.ran == []
        assert fighter_build.items[0].system["levels"] == 15

    def test_advancements_disabled_skips_workflow(self, fighter_build):
        workflow = RecordingWorkflow(steps=["asi"], complete=False)
        change = LevelChange("c1", "F", 15, 1)
        assert resolve_level_change(fighter_build, change, workflow, advancements_enabled=False)
        assert workflow.ran == []


def test_class_identifier(make_item):
    assert class_identifier(make_item(ItemKind.CLASS, "Blood Hunter")) == "blood-hunter"
    assert class_identifier(make_item(ItemKind.CLASS, "X", {"identifier": "custom"})) == "custom"
