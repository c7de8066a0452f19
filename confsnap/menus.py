from __future__ import annotations

import math
from typing import Any

from confsnap.collation import collation_key, id_sort_value
from confsnap.identifiers import EntityId, normalize_id, normalize_number, uniq_and_filter_ids
from confsnap.observability import get_logger
from confsnap.schemas import RawMenu

PRIMARY_MENU_TITLE = "home"

logger = get_logger(__name__)


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def site_menu_item_sort_key(item: dict[str, Any]) -> tuple[Any, ...]:
    return (item["sort"], collation_key(item["title"]), id_sort_value(item["id"]))


def first_item_sort(menu: RawMenu) -> float:
    orders = [normalize_number(item.sort_order) for item in menu.items or [] if item is not None]
    return min((order for order in orders if order is not None), default=math.inf)


def pick_primary_menu(menus: list[RawMenu]) -> RawMenu | None:
    """A menu titled "home" wins; otherwise the one whose items start earliest."""
    if not menus:
        return None
    for menu in menus:
        if _clean(menu.title_text).lower() == PRIMARY_MENU_TITLE:
            return menu
    return min(menus, key=lambda menu: (first_item_sort(menu), id_sort_value(menu.id)))


def build_site_menu_items(menu: RawMenu) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for item in menu.items or []:
        if item is None:
            continue
        item_id = normalize_id(item.id)
        title = _clean(item.title_text)
        function = _clean(item.function)
        sort = normalize_number(item.sort_order)
        if item_id is None or not title or not function or sort is None:
            continue

        derived: dict[str, Any] = {"id": item_id, "title": title, "sort": sort, "fn": function}
        document_id = normalize_id(item.document_id)
        if document_id is not None:
            derived["documentId"] = document_id
        menu_id = normalize_id(item.menu_id)
        if menu_id is not None:
            derived["menuId"] = menu_id
        tag_ids = uniq_and_filter_ids(item.applied_tag_ids)
        if tag_ids:
            derived["tagIds"] = tag_ids
        icon = _clean(item.google_materialsymbol) or _clean(item.apple_sfsymbol)
        if icon:
            derived["icon"] = icon
        if item.prohibit_tag_filter == "Y":
            derived["prohibitTagFilter"] = True
        items.append(derived)
    return sorted(items, key=site_menu_item_sort_key)


def build_site_menu(menus: list[RawMenu]) -> dict[str, Any]:
    if not menus:
        logger.warning("menus missing or empty; site menu will be empty")
        return {"version": 1, "primary": []}

    primary_menu = pick_primary_menu(menus)
    primary = build_site_menu_items(primary_menu) if primary_menu is not None else []

    sections: list[dict[str, Any]] = []
    for menu in menus:
        if menu is primary_menu:
            continue
        menu_id: EntityId | None = normalize_id(menu.id)
        if menu_id is None:
            continue
        items = build_site_menu_items(menu)
        if not items:
            continue
        sections.append({"id": menu_id, "title": _clean(menu.title_text), "items": items})

    result: dict[str, Any] = {"version": 1, "primary": primary}
    if sections:
        result["sections"] = sections
    return result
