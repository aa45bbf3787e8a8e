"""SheetService 통합 테스트 (인메모리 SQLite + EventBus)"""

import pytest
from sqlalchemy import create_engine, event as sa_event
from sqlalchemy.orm import sessionmaker

from src.core.event_bus import EventBus
from src.core.event_types import EventTypes
from src.core.sheet.advancement import WorkflowCancelled
from src.core.sheet.models import DisplaySettings, ItemKind
from src.db.models import Base, CharacterModel, ItemModel
from src.services.sheet_service import SheetService


@pytest.fixture()
def setup():
    """인메모리 DB + EventBus + SheetService"""
    engine = create_engine("sqlite:///:memory:")

    @sa_event.listens_for(engine, "connect")
    def _set_fk(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine)
    db = session_factory()
    bus = EventBus()
    service = SheetService(db, bus)
    return service, db, bus


@pytest.fixture()
def events(setup):
    """발행된 이벤트 수집"""
    _, _, bus = setup
    received = []
    for name, value in vars(EventTypes).items():
        if name.isupper():
            bus.subscribe(value, received.append)
    return received


@pytest.fixture()
def hero(setup):
    service, _, _ = setup
    return service.create_character(
        "Hero",
        abilities={"str": 14, "dex": 12},
        weapon_proficiencies=["sim"],
        currency={"cp": 250},
    )


class CancellingWorkflow:
    def steps_for(self, character, change):
        return ["hit-points"]

    def confirm_level_down(self, character, change):
        raise WorkflowCancelled()

    def run(self, character, change, steps):
        return False


class TestCharacter:
    def test_create_and_get(self, setup, hero):
        service, db, _ = setup
        loaded = service.get_character(hero.character_id)
        assert loaded.name == "Hero"
        assert loaded.weapon_proficiencies == {"sim"}
        assert db.get(CharacterModel, hero.character_id) is not None

    def test_get_missing(self, setup):
        service, _, _ = setup
        assert service.get_character("nope") is None

    def test_created_event(self, setup, events):
        service, _, _ = setup
        character = service.create_character("Other")
        assert events[-1].event_type == EventTypes.CHARACTER_CREATED
        assert events[-1].data == {"character_id": character.character_id}

    def test_display_defaults(self, setup):
        _, db, bus = setup
        service = SheetService(db, bus, display_defaults=DisplaySettings(metric_weight_units=True))
        character = service.create_character("Metric")
        assert character.display.metric_weight_units
        assert service.get_sheet(character.character_id).weight_unit == "kg"

    def test_update_display(self, setup, hero):
        service, _, _ = setup
        updated = service.update_display(hero.character_id, disable_experience=True)
        assert updated.display.disable_experience
        with pytest.raises(ValueError):
            service.update_display(hero.character_id, sparkles=True)


class TestItems:
    def test_create_item_migrates(self, setup, hero, events):
        service, db, _ = setup
        item = service.create_item(
            hero.character_id, "Dagger", "weapon", {"properties": {"fin": True, "old": "legacy"}}
        )
        assert item.system["properties"] == {"fin": True}
        assert db.get(ItemModel, item.item_id).system["properties"] == {"fin": True}
        assert events[-1].event_type == EventTypes.ITEM_CREATED
        assert events[-1].data["item_id"] == item.item_id

    def test_create_item_unknown_character(self, setup):
        service, _, _ = setup
        with pytest.raises(ValueError):
            service.create_item("nope", "Dagger", "weapon")

    def test_items_keep_creation_order(self, setup, hero):
        service, _, _ = setup
        first = service.create_item(hero.character_id, "A", "loot")
        second = service.create_item(hero.character_id, "B", "loot")
        loaded = service.get_character(hero.character_id)
        assert [i.item_id for i in loaded.items] == [first.item_id, second.item_id]

    def test_update_item(self, setup, hero):
        service, _, _ = setup
        item = service.create_item(hero.character_id, "Rope", "loot")
        outcome = service.update_item(hero.character_id, item.item_id, {"quantity": 5, "weight": -1})
        assert outcome.applied
        assert [d.path for d in outcome.diagnostics] == ["weight"]
        stored = service.get_item(item.item_id)
        assert stored.system["quantity"] == 5
        assert stored.system["weight"] == 0

    def test_update_locked_field_rejected(self, setup, hero):
        service, _, _ = setup
        wand = service.create_item(
            hero.character_id, "Wand", "consumable", {"uses": {"value": 3, "max": 7, "per": "charges"}}
        )
        service.add_resource(hero.character_id, label="Charges", linked_item_id=wand.item_id)

        outcome = service.update_item(hero.character_id, wand.item_id, {"uses.value": 1})
        assert not outcome.applied
        assert outcome.code == "locked_field"
        assert service.get_item(wand.item_id).system["uses"]["value"] == 3

        outcome = service.update_item(hero.character_id, wand.item_id, {"uses": {}})
        assert outcome.code == "locked_field"

        outcome = service.update_item(hero.character_id, wand.item_id, {"equipped": True})
        assert outcome.applied

    def test_class_levels_not_writable(self, setup, hero):
        service, _, _ = setup
        cls = service.create_item(hero.character_id, "Fighter", "class", {"levels": 3})
        outcome = service.update_item(hero.character_id, cls.item_id, {"levels": 9})
        assert outcome.code == "levels_via_level_change"

    def test_subclass_moved_to_claimed_class_rejected(self, setup, hero):
        service, _, _ = setup
        service.create_item(hero.character_id, "Fighter", "class")
        service.create_item(hero.character_id, "Champion", "subclass", {"classIdentifier": "fighter"})
        thief = service.create_item(hero.character_id, "Thief", "subclass", {"classIdentifier": "rogue"})

        outcome = service.update_item(hero.character_id, thief.item_id, {"classIdentifier": "fighter"})
        assert not outcome.applied
        assert outcome.code == "class_has_subclass"
        assert service.get_item(thief.item_id).system["classIdentifier"] == "rogue"

    def test_subclass_duplicate_identifier_rejected(self, setup, hero):
        service, _, _ = setup
        service.create_item(hero.character_id, "Champion", "subclass", {"classIdentifier": "fighter"})
        thief = service.create_item(hero.character_id, "Thief", "subclass", {"classIdentifier": "rogue"})

        outcome = service.update_item(hero.character_id, thief.item_id, {"identifier": "champion"})
        assert outcome.code == "duplicate_subclass"
        assert service.get_item(thief.item_id).system["identifier"] == ""

    def test_subclass_moved_to_free_class(self, setup, hero):
        service, _, _ = setup
        service.create_item(hero.character_id, "Rogue", "class")
        champion = service.create_item(
            hero.character_id, "Champion", "subclass", {"identifier": "champion", "classIdentifier": "fighter"}
        )
        outcome = service.update_item(
            hero.character_id, champion.item_id, {"classIdentifier": "rogue", "identifier": "champion"}
        )
        assert outcome.applied
        assert service.get_item(champion.item_id).system["classIdentifier"] == "rogue"

    def test_update_unknown_item(self, setup, hero):
        service, _, _ = setup
        with pytest.raises(ValueError):
            service.update_item(hero.character_id, "missing", {"quantity": 1})

    def test_delete_item(self, setup, hero, events):
        service, _, _ = setup
        item = service.create_item(hero.character_id, "Rope", "loot")
        service.delete_item(hero.character_id, item.item_id)
        assert service.get_item(item.item_id) is None
        assert events[-1].event_type == EventTypes.ITEM_DELETED


class TestToggle:
    def test_toggle_equipped(self, setup, hero, events):
        service, _, _ = setup
        sword = service.create_item(hero.character_id, "Sword", "weapon")
        assert service.toggle_item(hero.character_id, sword.item_id).applied
        assert service.get_item(sword.item_id).system["equipped"] is True
        assert events[-1].data["field"] == "equipped"
        service.toggle_item(hero.character_id, sword.item_id)
        assert service.get_item(sword.item_id).system["equipped"] is False

    def test_toggle_spell_preparation(self, setup, hero):
        service, _, _ = setup
        spell = service.create_item(hero.character_id, "Sleep", "spell", {"level": 1})
        service.toggle_item(hero.character_id, spell.item_id)
        assert service.get_item(spell.item_id).system["preparation"]["prepared"] is True
        assert service.get_sheet(hero.character_id).prepared_spells == 1

    def test_always_prepared_spell_not_toggleable(self, setup, hero):
        service, _, _ = setup
        spell = service.create_item(
            hero.character_id, "Bless", "spell", {"preparation": {"mode": "always"}}
        )
        outcome = service.toggle_item(hero.character_id, spell.item_id)
        assert outcome.code == "not_toggleable"

    def test_loot_not_toggleable(self, setup, hero):
        service, _, _ = setup
        gem = service.create_item(hero.character_id, "Gem", "loot")
        assert not service.toggle_item(hero.character_id, gem.item_id).applied


class TestDrop:
    def test_drop_class_creates_item(self, setup, hero):
        service, _, _ = setup
        outcome = service.drop_item(hero.character_id, "Fighter", "class", {"levels": 3})
        assert outcome.applied
        assert service.get_item(outcome.item_id).system["levels"] == 3

    def test_drop_existing_class_levels_up(self, setup, hero, events):
        service, _, _ = setup
        cls = service.create_item(hero.character_id, "Fighter", "class", {"levels": 3})
        outcome = service.drop_item(hero.character_id, "Fighter", "class", {"levels": 2})
        assert outcome.applied
        assert outcome.item_id is None
        assert service.get_item(cls.item_id).system["levels"] == 5
        assert events[-1].event_type == EventTypes.CLASS_LEVEL_CHANGED

    def test_drop_class_clamped(self, setup, hero):
        service, _, _ = setup
        service.create_item(hero.character_id, "Fighter", "class", {"levels": 18})
        outcome = service.drop_item(hero.character_id, "Wizard", "class", {"levels": 5})
        assert service.get_item(outcome.item_id).system["levels"] == 2

    def test_drop_rejected_leaves_state(self, setup, hero):
        service, _, _ = setup
        service.create_item(hero.character_id, "Fighter", "class", {"levels": 20})
        outcome = service.drop_item(hero.character_id, "Wizard", "class")
        assert not outcome.applied
        assert outcome.code == "max_level_exceeded"
        assert len(service.get_character(hero.character_id).items) == 1

    def test_drop_second_subclass_rejected(self, setup, hero):
        service, _, _ = setup
        service.create_item(hero.character_id, "Fighter", "class")
        assert service.drop_item(hero.character_id, "Champion", "subclass", {"classIdentifier": "fighter"}).applied
        outcome = service.drop_item(
            hero.character_id, "Battle Master", "subclass", {"classIdentifier": "fighter"}
        )
        assert outcome.code == "class_has_subclass"


class TestClassLevel:
    def test_level_up(self, setup, hero, events):
        service, _, _ = setup
        cls = service.create_item(hero.character_id, "Fighter", "class", {"levels": 3})
        outcome = service.change_class_level(hero.character_id, cls.item_id, 2)
        assert outcome.applied
        assert service.get_character(hero.character_id).level == 5
        assert events[-1].data == {
            "character_id": hero.character_id,
            "item_id": cls.item_id,
            "delta": 2,
        }

    def test_over_max_rejected(self, setup, hero):
        service, _, _ = setup
        cls = service.create_item(hero.character_id, "Fighter", "class", {"levels": 19})
        outcome = service.change_class_level(hero.character_id, cls.item_id, 2)
        assert outcome.code == "max_level_exceeded"
        assert service.get_item(cls.item_id).system["levels"] == 19

    def test_cancelled_level_down_is_noop(self, setup, hero, events):
        service, _, _ = setup
        cls = service.create_item(hero.character_id, "Fighter", "class", {"levels": 3})
        count = len(events)
        outcome = service.change_class_level(
            hero.character_id, cls.item_id, -1, workflow=CancellingWorkflow()
        )
        assert not outcome.applied
        assert outcome.code == "cancelled"
        assert service.get_item(cls.item_id).system["levels"] == 3
        assert len(events) == count

    def test_advancements_disabled_bypasses_workflow(self, setup, hero):
        service, _, _ = setup
        service.update_display(hero.character_id, disable_advancements=True)
        cls = service.create_item(hero.character_id, "Fighter", "class", {"levels": 3})
        outcome = service.change_class_level(
            hero.character_id, cls.item_id, -1, workflow=CancellingWorkflow()
        )
        assert outcome.applied
        assert service.get_item(cls.item_id).system["levels"] == 2


class TestResources:
    def test_add_and_remove(self, setup, hero, events):
        service, _, _ = setup
        resource = service.add_resource(hero.character_id, label="Luck", max=3)
        assert events[-1].event_type == EventTypes.RESOURCE_ADDED
        assert resource.resource_id in service.get_character(hero.character_id).resources

        assert service.remove_resource(hero.character_id, resource.resource_id).applied
        assert resource.resource_id not in service.get_character(hero.character_id).resources
        assert events[-1].event_type == EventTypes.RESOURCE_REMOVED

    def test_builtin_removal_rejected(self, setup, hero):
        service, _, _ = setup
        outcome = service.remove_resource(hero.character_id, "primary")
        assert not outcome.applied
        assert outcome.code == "builtin_resource"

    def test_link_to_missing_item(self, setup, hero):
        service, _, _ = setup
        with pytest.raises(ValueError):
            service.add_resource(hero.character_id, linked_item_id="missing")

    def test_update_builtin_resource(self, setup, hero):
        service, _, _ = setup
        outcome = service.update_resource(hero.character_id, "primary", {"label": "Ki", "max": 4})
        assert outcome.applied
        primary = service.get_character(hero.character_id).resources["primary"]
        assert (primary.label, primary.max) == ("Ki", 4)

    def test_linked_resource_locks_and_writes_through(self, setup, hero):
        service, _, _ = setup
        wand = service.create_item(
            hero.character_id, "Wand", "consumable", {"uses": {"value": 3, "max": 7, "per": "charges"}}
        )
        resource = service.add_resource(hero.character_id, linked_item_id=wand.item_id)

        outcome = service.update_resource(hero.character_id, resource.resource_id, {"max": 10})
        assert outcome.code == "locked_field"

        outcome = service.update_resource(hero.character_id, resource.resource_id, {"value": 1})
        assert outcome.applied
        assert service.get_item(wand.item_id).system["uses"]["value"] == 1

        sheet = service.get_sheet(hero.character_id)
        view = next(r for r in sheet.resources if r.resource_id == resource.resource_id)
        assert view.value == 1 and view.max == 7

    def test_linked_quantity_resource(self, setup, hero):
        service, _, _ = setup
        arrows = service.create_item(hero.character_id, "Arrows", "loot", {"quantity": 20})
        resource = service.add_resource(hero.character_id, linked_item_id=arrows.item_id)
        service.update_resource(hero.character_id, resource.resource_id, {"value": 12})
        assert service.get_item(arrows.item_id).system["quantity"] == 12

    def test_invalid_values_rejected(self, setup, hero):
        service, _, _ = setup
        resource = service.add_resource(hero.character_id, label="Luck", max=3)
        outcome = service.update_resource(
            hero.character_id, resource.resource_id, {"max": "lots", "short_rest": "no"}
        )
        assert not outcome.applied
        assert outcome.code == "invalid_field"
        assert [d.path for d in outcome.diagnostics] == ["max", "short_rest"]

        stored = service.get_character(hero.character_id).resources[resource.resource_id]
        assert (stored.max, stored.short_rest) == (3, False)

    def test_negative_value_rejected(self, setup, hero):
        service, _, _ = setup
        outcome = service.update_resource(hero.character_id, "primary", {"value": -1})
        assert outcome.code == "invalid_field"

    def test_link_to_item_without_counter(self, setup, hero):
        service, _, _ = setup
        feat = service.create_item(hero.character_id, "Lucky", "feat")
        resource = service.add_resource(hero.character_id, value=3, max=3, linked_item_id=feat.item_id)

        outcome = service.update_resource(hero.character_id, resource.resource_id, {"value": 1})
        assert outcome.applied
        assert service.get_character(hero.character_id).resources[resource.resource_id].value == 1

        sheet = service.get_sheet(hero.character_id)
        view = next(r for r in sheet.resources if r.resource_id == resource.resource_id)
        assert view.value == 1
        assert view.linked_item_id == feat.item_id

    def test_unknown_resource_fields(self, setup, hero):
        service, _, _ = setup
        with pytest.raises(ValueError):
            service.update_resource(hero.character_id, "primary", {"colour": "red"})
        with pytest.raises(ValueError):
            service.update_resource(hero.character_id, "ghost", {"label": "x"})


class TestCurrency:
    def test_convert_confirmed(self, setup, hero, events):
        service, _, _ = setup
        seen = []
        outcome = service.convert_currency(
            hero.character_id, confirm=lambda current, proposal: seen.append(proposal) or True
        )
        assert outcome.applied
        assert seen[0]["gp"] == 2
        assert service.get_character(hero.character_id).currency["ep"] == 1
        assert events[-1].event_type == EventTypes.CURRENCY_CONVERTED

    def test_convert_declined_is_noop(self, setup, hero):
        service, _, _ = setup
        outcome = service.convert_currency(hero.character_id, confirm=lambda c, p: False)
        assert not outcome.applied
        assert service.get_character(hero.character_id).currency == {"cp": 250}


class TestSheet:
    def test_sheet_from_db(self, setup, hero):
        service, _, _ = setup
        service.create_item(hero.character_id, "Fighter", "class", {"identifier": "fighter", "levels": 5})
        service.create_item(hero.character_id, "Thief", "subclass", {"classIdentifier": "rogue"})
        service.create_item(hero.character_id, "Club", "weapon", {"weaponType": "simpleM"})

        sheet = service.get_sheet(hero.character_id, filters={"inventory": ["equipped"]})
        assert sheet.level == 5
        assert any("rogue" in w.message for w in sheet.warnings)
        assert all(not b.items for b in sheet.inventory)

        sheet = service.get_sheet(hero.character_id)
        club = sheet.inventory_bucket(ItemKind.WEAPON).items[0]
        assert sheet.item_context[club.item_id].proficiency == 1

    def test_unknown_character(self, setup):
        service, _, _ = setup
        with pytest.raises(ValueError):
            service.get_sheet("nope")
