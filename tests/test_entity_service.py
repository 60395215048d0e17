from __future__ import annotations

import unittest
from datetime import date
from unittest.mock import MagicMock, patch

from sqlalchemy import func, select

from home_inventory.errors import NotFoundError, ValidationError
from home_inventory.models import BoxItem, Item, Location
from home_inventory.services.entity_service import (
    EntityKind,
    create_entity,
    delete_entity,
    get_entity,
    list_entities,
)
from inventory_fixtures import DatabaseTestCase


class EntityServiceTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.reconcile()

    def test_create_and_list_lookup(self) -> None:
        with self.database.session() as db:
            location_id = create_entity(db, EntityKind.LOCATIONS, {'name': '  Garage '})
            rows = list_entities(db, EntityKind.LOCATIONS)

        self.assertEqual(location_id, 1)
        self.assertEqual(rows, [{'id': 1, 'name': 'Garage'}])

    def test_lookups_are_listed_by_name(self) -> None:
        with self.database.session() as db:
            for name in ('Shed', 'Attic', 'Garage'):
                create_entity(db, EntityKind.LOCATIONS, {'name': name})
            names = [row['name'] for row in list_entities(db, EntityKind.LOCATIONS)]

        self.assertEqual(names, ['Attic', 'Garage', 'Shed'])

    def test_blank_required_field_is_rejected_without_insert(self) -> None:
        with self.database.session() as db:
            with self.assertRaises(ValidationError) as ctx:
                create_entity(db, EntityKind.ITEMS, {'label': '   ', 'qty': 2})
            count = db.execute(select(func.count()).select_from(Item)).scalar_one()

        self.assertEqual(ctx.exception.code, 'label_required')
        self.assertEqual(ctx.exception.field, 'label')
        self.assertEqual(count, 0)

    def test_duplicate_lookup_name_is_rejected(self) -> None:
        with self.database.session() as db:
            create_entity(db, EntityKind.TYPES, {'name': 'PVC'})
            with self.assertRaises(ValidationError) as ctx:
                create_entity(db, EntityKind.TYPES, {'name': 'PVC'})

        self.assertEqual(ctx.exception.code, 'name_exists')

    def test_duplicate_lost_to_concurrent_create_is_rejected(self) -> None:
        with self.database.session() as db:
            create_entity(db, EntityKind.TYPES, {'name': 'PVC'})

        with self.database.session() as db:
            # The existence check misses the row another request just committed.
            unseen = MagicMock()
            unseen.scalar_one_or_none.return_value = None
            with patch.object(db, 'execute', return_value=unseen):
                with self.assertRaises(ValidationError) as ctx:
                    create_entity(db, EntityKind.TYPES, {'name': 'PVC'})

        with self.database.session() as db:
            names = [row['name'] for row in list_entities(db, EntityKind.TYPES)]

        self.assertEqual(ctx.exception.code, 'name_exists')
        self.assertEqual(names, ['PVC'])

    def test_optional_fields_are_normalized(self) -> None:
        with self.database.session() as db:
            item_id = create_entity(
                db,
                EntityKind.ITEMS,
                {
                    'label': 'Drill',
                    'qty': '',
                    'warranty_months': '24',
                    'purchase_date': '2024-03-01',
                    'store': '  ',
                    'box_no': ' B-12 ',
                },
            )
            item = get_entity(db, EntityKind.ITEMS, item_id)

        self.assertIsNone(item['qty'])
        self.assertEqual(item['warranty_months'], 24)
        self.assertEqual(item['purchase_date'], date(2024, 3, 1))
        self.assertIsNone(item['store'])
        self.assertEqual(item['box_no'], 'B-12')
        self.assertIsNotNone(item['created_at'])

    def test_malformed_optional_fields_are_rejected(self) -> None:
        with self.database.session() as db:
            with self.assertRaises(ValidationError) as qty_ctx:
                create_entity(db, EntityKind.ITEMS, {'label': 'Drill', 'qty': 'many'})
            with self.assertRaises(ValidationError) as date_ctx:
                create_entity(db, EntityKind.ITEMS, {'label': 'Drill', 'purchase_date': '01/03/2024'})
            with self.assertRaises(ValidationError) as ref_ctx:
                create_entity(db, EntityKind.ITEMS, {'label': 'Drill', 'location_id': 99})

        self.assertEqual(qty_ctx.exception.code, 'qty_invalid')
        self.assertEqual(date_ctx.exception.code, 'purchase_date_invalid')
        self.assertEqual(ref_ctx.exception.code, 'location_id_invalid')

    def test_items_carry_lookup_names_newest_first(self) -> None:
        with self.database.session() as db:
            type_id = create_entity(db, EntityKind.TYPES, {'name': 'Drills'})
            location_id = create_entity(db, EntityKind.LOCATIONS, {'name': 'Shed'})
            create_entity(db, EntityKind.ITEMS, {'label': 'Old saw'})
            create_entity(db, EntityKind.ITEMS, {'label': 'Drill', 'type_id': type_id, 'location_id': location_id})
            rows = list_entities(db, EntityKind.ITEMS)

        self.assertEqual([row['label'] for row in rows], ['Drill', 'Old saw'])
        self.assertEqual(rows[0]['type_name'], 'Drills')
        self.assertEqual(rows[0]['location_name'], 'Shed')
        self.assertIsNone(rows[0]['size_name'])
        self.assertIsNone(rows[1]['location_name'])

    def test_deleting_lookup_clears_references(self) -> None:
        with self.database.session() as db:
            location_id = create_entity(db, EntityKind.LOCATIONS, {'name': 'Garage'})
            item_id = create_entity(db, EntityKind.ITEMS, {'label': 'Drill', 'location_id': location_id})
            box_id = create_entity(db, EntityKind.BOXES, {'label': 'Tools', 'location_id': str(location_id)})

            result = delete_entity(db, EntityKind.LOCATIONS, location_id)

            item = get_entity(db, EntityKind.ITEMS, item_id)
            box = get_entity(db, EntityKind.BOXES, box_id)
            remaining = db.execute(select(func.count()).select_from(Location)).scalar_one()

        self.assertTrue(result.deleted)
        self.assertIsNone(item['location_id'])
        self.assertIsNone(box['location_id'])
        self.assertEqual(remaining, 0)

    def test_boxes_count_contents_and_cascade_on_delete(self) -> None:
        with self.database.session() as db:
            box_id = create_entity(db, EntityKind.BOXES, {'label': 'Cables'})
            create_entity(db, EntityKind.BOX_ITEMS, {'name': 'HDMI', 'qty': 3}, parent_id=box_id)
            create_entity(db, EntityKind.BOX_ITEMS, {'name': 'USB-C'}, parent_id=box_id)

            boxes = list_entities(db, EntityKind.BOXES)
            contents = list_entities(db, EntityKind.BOX_ITEMS, parent_id=box_id)

            delete_entity(db, EntityKind.BOXES, box_id)
            orphans = db.execute(select(func.count()).select_from(BoxItem)).scalar_one()

        self.assertEqual(boxes[0]['item_count'], 2)
        self.assertEqual([row['name'] for row in contents], ['USB-C', 'HDMI'])
        self.assertEqual(orphans, 0)

    def test_child_requires_existing_parent(self) -> None:
        with self.database.session() as db:
            with self.assertRaises(NotFoundError) as ctx:
                create_entity(db, EntityKind.BOX_ITEMS, {'name': 'HDMI'}, parent_id=42)

        self.assertEqual(ctx.exception.resource, 'box')

    def test_delete_missing_id_is_a_no_op(self) -> None:
        with self.database.session() as db:
            result = delete_entity(db, EntityKind.BOXES, 404)
            item_result = delete_entity(db, EntityKind.ITEMS, 404, attachments=self.attachments)

        self.assertFalse(result.deleted)
        self.assertFalse(item_result.deleted)
        self.assertEqual(result.advisories, [])

    def test_item_delete_requires_attachment_store(self) -> None:
        with self.database.session() as db:
            item_id = create_entity(db, EntityKind.ITEMS, {'label': 'Drill'})
            with self.assertRaises(ValueError):
                delete_entity(db, EntityKind.ITEMS, item_id)

    def test_get_missing_entity(self) -> None:
        with self.database.session() as db:
            with self.assertRaises(NotFoundError):
                get_entity(db, EntityKind.ITEMS, 5)


if __name__ == '__main__':
    unittest.main()
