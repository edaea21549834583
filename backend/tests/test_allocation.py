import unittest

from pydantic import ValidationError

from allocation import allocate, claimed_lines, selections_from_payload, toggle_selection, update_split
from receipt_fixtures import sample_receipt_data
from receipt_integrity import validate_receipt
from receipt_models import Selection


def select(item_id: str, split_count: int = 1, is_selected: bool = True) -> Selection:
    return Selection(item_id=item_id, is_selected=is_selected, split_count=split_count)


class AllocateTests(unittest.TestCase):
    def setUp(self) -> None:
        self.receipt = validate_receipt(sample_receipt_data())

    def test_split_item_share(self) -> None:
        result = allocate(self.receipt, {"a": select("a", 2), "b": select("b", is_selected=False)})
        self.assertAlmostEqual(result.subtotal, 10.0)
        self.assertAlmostEqual(result.ratio, 1 / 3)
        self.assertAlmostEqual(result.tax, 1.0)
        self.assertAlmostEqual(result.tip, 2.0)
        self.assertAlmostEqual(result.total, 13.0)

    def test_no_selection_is_zero(self) -> None:
        for selections in [{}, {"a": select("a", is_selected=False), "b": select("b", 4, is_selected=False)}]:
            result = allocate(self.receipt, selections)
            self.assertEqual(
                (result.subtotal, result.tax, result.tip, result.total, result.ratio), (0.0, 0.0, 0.0, 0.0, 0.0)
            )

    def test_everything_claimed_pays_whole_bill(self) -> None:
        result = allocate(self.receipt, {"a": select("a"), "b": select("b")})
        self.assertAlmostEqual(result.ratio, 1.0)
        self.assertAlmostEqual(result.total, 39.0)

    def test_zero_subtotal_falls_back_to_item_sum(self) -> None:
        raw = sample_receipt_data()
        raw["subtotal"] = 0
        raw["items"] = [{"id": "x", "price": 5}, {"id": "y", "price": 10}]
        receipt = validate_receipt(raw)
        result = allocate(receipt, {"x": select("x"), "y": select("y")})
        self.assertAlmostEqual(result.ratio, 1.0)
        self.assertAlmostEqual(result.subtotal, 15.0)
        self.assertAlmostEqual(result.tax, 3.0)
        self.assertAlmostEqual(result.tip, 6.0)

    def test_missing_subtotal_falls_back_to_item_sum(self) -> None:
        raw = sample_receipt_data()
        del raw["subtotal"]
        receipt = validate_receipt(raw)
        result = allocate(receipt, {"b": select("b")})
        self.assertAlmostEqual(result.ratio, 10 / 30)

    def test_unpriced_receipt_has_zero_ratio(self) -> None:
        receipt = validate_receipt({"restaurantName": "Free", "items": [{"id": "x"}], "tax": 2, "tip": 1})
        result = allocate(receipt, {"x": select("x")})
        self.assertEqual(result.ratio, 0.0)
        self.assertEqual(result.total, 0.0)

    def test_stale_selection_contributes_nothing(self) -> None:
        result = allocate(self.receipt, {"gone": select("gone"), "a": select("a")})
        self.assertAlmostEqual(result.subtotal, 20.0)

    def test_split_count_larger_than_party_is_trusted(self) -> None:
        result = allocate(self.receipt, {"a": select("a", 40)})
        self.assertAlmostEqual(result.subtotal, 0.5)


class SelectionTests(unittest.TestCase):
    def test_split_count_clamped(self) -> None:
        self.assertEqual(Selection(item_id="a", split_count=0).split_count, 1)
        self.assertEqual(Selection(item_id="a", split_count=-3).split_count, 1)
        self.assertEqual(Selection(item_id="a", split_count="abc").split_count, 1)
        self.assertEqual(Selection(itemId="a", splitCount="3").split_count, 3)

    def test_toggle_preserves_split(self) -> None:
        selections = toggle_selection({}, "a")
        self.assertTrue(selections["a"].is_selected)
        self.assertEqual(selections["a"].split_count, 1)
        selections = update_split(selections, "a", 3)
        selections = toggle_selection(selections, "a")
        self.assertFalse(selections["a"].is_selected)
        self.assertEqual(selections["a"].split_count, 3)

    def test_update_split_selects_new_item(self) -> None:
        original = {}
        selections = update_split(original, "b", 0)
        self.assertEqual(original, {})
        self.assertTrue(selections["b"].is_selected)
        self.assertEqual(selections["b"].split_count, 1)

    def test_update_split_coerces_count(self) -> None:
        selections = toggle_selection(toggle_selection({}, "a"), "a")
        selections = update_split(selections, "a", 2.5)
        self.assertEqual(selections["a"].split_count, 2)
        self.assertIsInstance(selections["a"].split_count, int)
        self.assertFalse(selections["a"].is_selected)
        self.assertEqual(update_split({}, "b", -4)["b"].split_count, 1)

    def test_claimed_lines_follow_receipt_order(self) -> None:
        receipt = validate_receipt(sample_receipt_data())
        selections = {"b": select("b", 2), "a": select("a"), "gone": select("gone")}
        lines = claimed_lines(receipt, selections)
        self.assertEqual([line.item_id for line in lines], ["a", "b"])
        self.assertAlmostEqual(lines[1].share, 5.0)

    def test_selections_from_payload(self) -> None:
        from_list = selections_from_payload([{"itemId": "a", "isSelected": True, "splitCount": 2}, "junk"])
        from_map = selections_from_payload({"a": {"isSelected": True, "splitCount": 2}})
        self.assertEqual(from_list, from_map)
        self.assertEqual(selections_from_payload(None), {})

    def test_selections_from_payload_requires_item_id(self) -> None:
        with self.assertRaises(ValidationError):
            selections_from_payload([{"isSelected": True}])


if __name__ == "__main__":
    unittest.main()
