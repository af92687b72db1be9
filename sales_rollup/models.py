# sales_rollup/models.py
from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Text, Enum, ForeignKey, Index,
    CheckConstraint, UniqueConstraint, text
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
import enum
import uuid

from sales_rollup.core.types import Granularity

Base = declarative_base()

def new_id() -> str:
    return str(uuid.uuid4())

class StoreStatus(enum.Enum):
    """Lifecycle status of a store.

    Values:
        ACTIVE ('active'): Store is trading and expected to report weekly
        INACTIVE ('inactive'): Store is closed; its history is kept
    """
    ACTIVE = 'active'
    INACTIVE = 'inactive'

    def __str__(self):
        return self.value

    @classmethod
    def from_string(cls, value: str) -> 'StoreStatus':
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Invalid store status: {value}. Valid values are: active, inactive")

class ContributionDimension(enum.Enum):
    CATEGORY = 'category'
    STORE = 'store'
    ITEM = 'item'

class Store(Base):
    __tablename__ = 'store'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(50), nullable=False, unique=True)
    address = Column(Text)
    status = Column(Enum(StoreStatus), nullable=False, default=StoreStatus.ACTIVE)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    reports = relationship("SalesReport", back_populates="store", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Store(id='{self.id}', name='{self.name}', status={self.status})>"

class WeekMetadata(Base):
    __tablename__ = 'week_metadata'

    id = Column(String(36), primary_key=True, default=new_id)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    __table_args__ = (
        CheckConstraint('end_date > start_date', name='week_dates_valid'),
    )

    def __repr__(self):
        return f"<WeekMetadata(id='{self.id}', {self.start_date} - {self.end_date})>"

class Category(Base):
    __tablename__ = 'category'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False, unique=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    items = relationship("Item", back_populates="category", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Category(id='{self.id}', name='{self.name}')>"

class Item(Base):
    __tablename__ = 'item'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False, unique=True)
    category_id = Column(String(36), ForeignKey('category.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    category = relationship("Category", back_populates="items")

    __table_args__ = (
        Index('idx_item_category_id', 'category_id'),
    )

    def __repr__(self):
        return f"<Item(id='{self.id}', name='{self.name}', category_id='{self.category_id}')>"

ACTIVE_REPORT_CLAUSE = 'applied_at IS NOT NULL AND superseded_by_id IS NULL AND retracted_at IS NULL'

class SalesReport(Base):
    """Container for one store's submission for one week.

    A report is applied to the rollups at most once. Corrections are new
    reports; the one they replace keeps its lines and points at its successor
    through superseded_by_id. A retracted report keeps applied_at and is never
    applied again.
    """
    __tablename__ = 'sales_report'

    id = Column(String(36), primary_key=True, default=new_id)
    store_id = Column(String(36), ForeignKey('store.id', ondelete='CASCADE'), nullable=False)
    week_id = Column(String(36), ForeignKey('week_metadata.id', ondelete='RESTRICT'), nullable=False)
    granularity = Column(Enum(Granularity), nullable=True)
    applied_at = Column(DateTime, nullable=True)
    retracted_at = Column(DateTime, nullable=True)
    superseded_by_id = Column(String(36), ForeignKey('sales_report.id'), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    store = relationship("Store", back_populates="reports")
    week = relationship("WeekMetadata")
    category_lines = relationship("SalesReportByCategory", back_populates="sales_report",
                                  cascade="all, delete-orphan")
    item_lines = relationship("SalesReportByItem", back_populates="sales_report",
                              cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_sales_report_week_id_store_id', 'week_id', 'store_id'),
        # At most one report feeds the aggregates per (store, week)
        Index(
            'uq_sales_report_active_store_week', 'store_id', 'week_id',
            unique=True,
            sqlite_where=text(ACTIVE_REPORT_CLAUSE),
            postgresql_where=text(ACTIVE_REPORT_CLAUSE)
        ).ddl_if(dialect=('sqlite', 'postgresql')),
    )

    @property
    def is_applied(self) -> bool:
        return (self.applied_at is not None and self.superseded_by_id is None
                and self.retracted_at is None)

    def __repr__(self):
        return f"<SalesReport(id='{self.id}', store_id='{self.store_id}', week_id='{self.week_id}')>"

class SalesReportByCategory(Base):
    __tablename__ = 'sales_report_by_category'

    id = Column(String(36), primary_key=True, default=new_id)
    sales_report_id = Column(String(36), ForeignKey('sales_report.id', ondelete='CASCADE'), nullable=False)
    category_id = Column(String(36), ForeignKey('category.id', ondelete='RESTRICT'), nullable=False)
    number_of_sales = Column(Integer, nullable=False, default=0)

    sales_report = relationship("SalesReport", back_populates="category_lines")

    __table_args__ = (
        CheckConstraint('number_of_sales >= 0', name='category_sales_non_negative'),
        Index('idx_sales_report_by_category_sales_report_id', 'sales_report_id'),
    )

class SalesReportByItem(Base):
    __tablename__ = 'sales_report_by_item'

    id = Column(String(36), primary_key=True, default=new_id)
    sales_report_id = Column(String(36), ForeignKey('sales_report.id', ondelete='CASCADE'), nullable=False)
    item_id = Column(String(36), ForeignKey('item.id', ondelete='RESTRICT'), nullable=False)
    number_of_sales = Column(Integer, nullable=False, default=0)

    sales_report = relationship("SalesReport", back_populates="item_lines")

    __table_args__ = (
        CheckConstraint('number_of_sales >= 0', name='item_sales_non_negative'),
        Index('idx_sales_report_by_item_sales_report_id', 'sales_report_id'),
    )

class CategoryWeekTotal(Base):
    """Units sold per category per week, both report granularities combined."""
    __tablename__ = 'category_week_total'

    category_id = Column(String(36), primary_key=True)
    week_id = Column(String(36), primary_key=True)
    total_sales = Column(Integer, nullable=False, default=0)
    report_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index('idx_category_week_total_week_id', 'week_id'),
    )

class StoreWeekTotal(Base):
    """Units sold per store per week from raw line counts."""
    __tablename__ = 'store_week_total'

    store_id = Column(String(36), primary_key=True)
    week_id = Column(String(36), primary_key=True)
    total_sales = Column(Integer, nullable=False, default=0)
    report_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index('idx_store_week_total_week_id', 'week_id'),
    )

class ItemWeekTotal(Base):
    """Units sold per item per week, from item-level reports only."""
    __tablename__ = 'item_week_total'

    item_id = Column(String(36), primary_key=True)
    week_id = Column(String(36), primary_key=True)
    total_sales = Column(Integer, nullable=False, default=0)
    report_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index('idx_item_week_total_week_id', 'week_id'),
    )

class ReportContribution(Base):
    """Append-only ledger of what each applied report added to each aggregate."""
    __tablename__ = 'report_contribution'

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(String(36), ForeignKey('sales_report.id', ondelete='CASCADE'), nullable=False)
    dimension = Column(Enum(ContributionDimension), nullable=False)
    dimension_id = Column(String(36), nullable=False)
    week_id = Column(String(36), nullable=False)
    sales = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint('report_id', 'dimension', 'dimension_id', name='uq_report_contribution'),
        Index('idx_report_contribution_report_id', 'report_id'),
    )

AGGREGATE_TABLES = {
    ContributionDimension.CATEGORY: (CategoryWeekTotal, 'category_id'),
    ContributionDimension.STORE: (StoreWeekTotal, 'store_id'),
    ContributionDimension.ITEM: (ItemWeekTotal, 'item_id'),
}
