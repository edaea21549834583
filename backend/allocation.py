from typing import Dict, List, Mapping

from receipt_models import Allocation, AllocationLine, Receipt, Selection


def claimed_subtotal(receipt: Receipt, selections: Mapping[str, Selection]) -> float:
    total = 0.0
    for selection in selections.values():
        if not selection.is_selected:
            continue
        item = receipt.find_item(selection.item_id)
        if item is None:
            # Stale selection from an older item list.
            continue
        total += item.price / selection.split_count
    return total


def allocate(receipt: Receipt, selections: Mapping[str, Selection]) -> Allocation:
    """Proportional share of one party.

    Tax and tip are spread by the party's share of the subtotal rather than
    itemized per line. Falls back to the item sum when the receipt subtotal
    is missing or zero.
    """
    subtotal = claimed_subtotal(receipt, selections)
    receipt_subtotal = receipt.subtotal if receipt.subtotal > 0 else receipt.items_sum()
    ratio = subtotal / receipt_subtotal if receipt_subtotal > 0 else 0.0
    tax = receipt.tax * ratio
    tip = receipt.tip * ratio
    return Allocation(subtotal=subtotal, tax=tax, tip=tip, total=subtotal + tax + tip, ratio=ratio)


def claimed_lines(receipt: Receipt, selections: Mapping[str, Selection]) -> List[AllocationLine]:
    lines: List[AllocationLine] = []
    for item in receipt.items:
        selection = selections.get(item.id)
        if selection is None or not selection.is_selected:
            continue
        lines.append(
            AllocationLine(
                item_id=item.id,
                description=item.description,
                price=item.price,
                split_count=selection.split_count,
                share=item.price / selection.split_count,
            )
        )
    return lines


def toggle_selection(selections: Mapping[str, Selection], item_id: str) -> Dict[str, Selection]:
    existing = selections.get(item_id)
    updated = dict(selections)
    updated[item_id] = Selection(
        item_id=item_id,
        is_selected=not (existing is not None and existing.is_selected),
        split_count=existing.split_count if existing is not None else 1,
    )
    return updated


def update_split(selections: Mapping[str, Selection], item_id: str, count: int) -> Dict[str, Selection]:
    existing = selections.get(item_id)
    updated = dict(selections)
    updated[item_id] = Selection(
        item_id=item_id,
        is_selected=existing.is_selected if existing is not None else True,
        split_count=count,
    )
    return updated


def selections_from_payload(raw: object) -> Dict[str, Selection]:
    """Build the selection mapping from a list or an itemId-keyed object."""
    if isinstance(raw, Mapping):
        entries = []
        for key, value in raw.items():
            if isinstance(value, Mapping):
                entries.append({"itemId": key, **value})
    elif isinstance(raw, list):
        entries = [value for value in raw if isinstance(value, Mapping)]
    else:
        return {}
    selections: Dict[str, Selection] = {}
    for entry in entries:
        selection = Selection.model_validate(entry)
        selections[selection.item_id] = selection
    return selections
