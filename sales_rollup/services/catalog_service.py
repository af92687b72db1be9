# sales_rollup/services/catalog_service.py
import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from sales_rollup.core.catalog import Catalog
from sales_rollup.exceptions import NotFoundError, ValidationError
from sales_rollup.models import Category, Item, Store, StoreStatus

logger = logging.getLogger(__name__)

class CatalogService:
    """Database-backed catalog and store master data.

    Exposes the same read contract as the in-memory Catalog
    (resolve_category, category_exists) so the reconciler accepts either.
    """

    def __init__(self, session: Session):
        """Initialize the catalog service.

        Args:
            session: Database session
        """
        self.session = session

    def get_category(self, category_id: str) -> Optional[Category]:
        return self.session.query(Category).filter(Category.id == category_id).first()

    def get_item(self, item_id: str) -> Optional[Item]:
        return self.session.query(Item).filter(Item.id == item_id).first()

    def get_store(self, store_id: str) -> Optional[Store]:
        return self.session.query(Store).filter(Store.id == store_id).first()

    def _require(self, obj, kind: str, obj_id: str):
        if obj is None:
            raise NotFoundError(f"{kind.capitalize()} {obj_id} not found", details={f'{kind}_id': obj_id})
        return obj

    def _check_name(self, model, name: str, exclude_id: Optional[str] = None) -> None:
        if not name:
            raise ValidationError(f"{model.__name__} name is required")
        query = self.session.query(model).filter(model.name == name)
        if exclude_id is not None:
            query = query.filter(model.id != exclude_id)
        if query.first():
            raise ValidationError(f"{model.__name__} '{name}' already exists", details={'name': name})

    def create_category(self, name: str, category_id: Optional[str] = None) -> Category:
        self._check_name(Category, name)
        category = Category(name=name)
        if category_id is not None:
            category.id = category_id
        self.session.add(category)
        self.session.flush()
        logger.info(f"Created category {category.id} ({name})")
        return category

    def rename_category(self, category_id: str, name: str) -> Category:
        category = self._require(self.get_category(category_id), 'category', category_id)
        self._check_name(Category, name, exclude_id=category_id)
        category.name = name
        self.session.flush()
        return category

    def delete_category(self, category_id: str) -> int:
        """Delete a category together with its items.

        Returns:
            Number of items removed
        """
        category = self._require(self.get_category(category_id), 'category', category_id)
        item_count = len(category.items)
        self.session.delete(category)
        self.session.flush()
        logger.info(f"Deleted category {category_id} and {item_count} items")
        return item_count

    def create_item(self, name: str, category_id: str, item_id: Optional[str] = None) -> Item:
        self._require(self.get_category(category_id), 'category', category_id)
        self._check_name(Item, name)
        item = Item(name=name, category_id=category_id)
        if item_id is not None:
            item.id = item_id
        self.session.add(item)
        self.session.flush()
        return item

    def rename_item(self, item_id: str, name: str) -> Item:
        item = self._require(self.get_item(item_id), 'item', item_id)
        self._check_name(Item, name, exclude_id=item_id)
        item.name = name
        self.session.flush()
        return item

    def move_item(self, item_id: str, category_id: str) -> Item:
        """Rebind an item to another category.

        Reports already applied keep the category they were reconciled into;
        see RollupService.detect_mapping_drift.
        """
        item = self._require(self.get_item(item_id), 'item', item_id)
        self._require(self.get_category(category_id), 'category', category_id)
        logger.warning(f"Moving item {item_id} from category {item.category_id} to {category_id}")
        item.category_id = category_id
        self.session.flush()
        return item

    def create_store(self, name: str, address: Optional[str] = None, store_id: Optional[str] = None) -> Store:
        self._check_name(Store, name)
        store = Store(name=name, address=address, status=StoreStatus.ACTIVE)
        if store_id is not None:
            store.id = store_id
        self.session.add(store)
        self.session.flush()
        return store

    def set_store_status(self, store_id: str, status) -> Store:
        store = self._require(self.get_store(store_id), 'store', store_id)
        store.status = status if isinstance(status, StoreStatus) else StoreStatus.from_string(status)
        self.session.flush()
        return store

    def resolve_category(self, item_id: str) -> str:
        """Get the category id an item belongs to.

        Raises:
            NotFoundError: if the item is unknown
        """
        row = self.session.query(Item.category_id).filter(Item.id == item_id).first()
        if row is None:
            raise NotFoundError(f"Item {item_id} not found", details={'item_id': item_id})
        return row.category_id

    def category_exists(self, category_id: str) -> bool:
        return self.session.query(Category.id).filter(Category.id == category_id).first() is not None

    def category_names(self) -> Dict[str, str]:
        return {row.id: row.name for row in self.session.query(Category.id, Category.name).all()}

    def item_names(self) -> Dict[str, str]:
        return {row.id: row.name for row in self.session.query(Item.id, Item.name).all()}

    def store_names(self) -> Dict[str, str]:
        return {row.id: row.name for row in self.session.query(Store.id, Store.name).all()}

    def load_catalog(self) -> Catalog:
        """Copy every category and item into an in-memory Catalog.

        Batch work resolves against this copy so worker threads never share
        the database session.
        """
        catalog = Catalog()
        categories: List[Category] = self.session.query(Category).all()
        for category in categories:
            catalog.add_category(category.id, category.name)
        for item in self.session.query(Item).all():
            catalog.add_item(item.id, item.name, item.category_id)

        logger.info(f"Loaded catalog with {len(categories)} categories")
        return catalog
