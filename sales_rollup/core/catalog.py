import logging
import threading
from typing import Dict, Hashable, List, Optional

from sales_rollup.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

class Catalog:
    """In-memory category and item definitions.

    Every item is bound to exactly one category. Reads are lock-free; writes
    replace whole dictionaries so concurrent readers always see a consistent
    mapping.
    """

    def __init__(self):
        self._categories: Dict[Hashable, str] = {}
        self._items: Dict[Hashable, Dict] = {}
        self._write_lock = threading.Lock()

    def add_category(self, category_id: Hashable, name: str) -> None:
        with self._write_lock:
            if category_id in self._categories:
                raise ValidationError(
                    f"Category {category_id} already exists",
                    details={'category_id': category_id}
                )
            self._check_unique_name(self._categories.values(), name, 'category')
            categories = dict(self._categories)
            categories[category_id] = name
            self._categories = categories

    def add_item(self, item_id: Hashable, name: str, category_id: Hashable) -> None:
        with self._write_lock:
            if item_id in self._items:
                raise ValidationError(
                    f"Item {item_id} already exists",
                    details={'item_id': item_id}
                )
            if category_id not in self._categories:
                raise NotFoundError(
                    f"Category {category_id} not found",
                    details={'category_id': category_id, 'item_id': item_id}
                )
            self._check_unique_name((i['name'] for i in self._items.values()), name, 'item')
            items = dict(self._items)
            items[item_id] = {'name': name, 'category_id': category_id}
            self._items = items

    def rename_category(self, category_id: Hashable, name: str) -> None:
        with self._write_lock:
            if category_id not in self._categories:
                raise NotFoundError(f"Category {category_id} not found", details={'category_id': category_id})
            others = (n for cid, n in self._categories.items() if cid != category_id)
            self._check_unique_name(others, name, 'category')
            categories = dict(self._categories)
            categories[category_id] = name
            self._categories = categories

    def rename_item(self, item_id: Hashable, name: str) -> None:
        with self._write_lock:
            if item_id not in self._items:
                raise NotFoundError(f"Item {item_id} not found", details={'item_id': item_id})
            others = (i['name'] for iid, i in self._items.items() if iid != item_id)
            self._check_unique_name(others, name, 'item')
            items = dict(self._items)
            items[item_id] = {'name': name, 'category_id': items[item_id]['category_id']}
            self._items = items

    def remove_category(self, category_id: Hashable) -> List[Hashable]:
        """Remove a category and every item bound to it.

        Returns:
            Ids of the removed items
        """
        with self._write_lock:
            if category_id not in self._categories:
                raise NotFoundError(f"Category {category_id} not found", details={'category_id': category_id})
            categories = dict(self._categories)
            del categories[category_id]
            removed = [iid for iid, i in self._items.items() if i['category_id'] == category_id]
            items = {iid: i for iid, i in self._items.items() if i['category_id'] != category_id}
            self._categories = categories
            self._items = items

        if removed:
            logger.info(f"Removed category {category_id} and {len(removed)} items")
        return removed

    def resolve_category(self, item_id: Hashable) -> Hashable:
        """Get the category an item belongs to.

        Raises:
            NotFoundError: if the item is unknown
        """
        item = self._items.get(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found", details={'item_id': item_id})
        return item['category_id']

    def category_exists(self, category_id: Hashable) -> bool:
        return category_id in self._categories

    def category_name(self, category_id: Hashable) -> Optional[str]:
        return self._categories.get(category_id)

    def item_name(self, item_id: Hashable) -> Optional[str]:
        item = self._items.get(item_id)
        return item['name'] if item else None

    @staticmethod
    def _check_unique_name(existing, name: str, kind: str) -> None:
        if not name:
            raise ValidationError(f"A {kind} name is required")
        if name in set(existing):
            raise ValidationError(f"A {kind} named '{name}' already exists", details={'name': name})
