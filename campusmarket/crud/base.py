"""
Generic CRUD base with the common operations.
"""
from typing import Generic, TypeVar, Type, Optional, Any, Dict
from sqlalchemy.orm import Session, Query
from pydantic import BaseModel
from campusmarket.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)


class CRUDBase(Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    """
    Base class for CRUD operations.

    Entity-specific classes add their own queries and state transitions
    on top of these helpers.
    """

    def __init__(self, model: Type[ModelType]):
        """
        Args:
            model: SQLAlchemy ORM model
        """
        self.model = model

    def _base_query(self, db: Session) -> Query:
        return db.query(self.model)

    def get(self, db: Session, id: Any) -> Optional[ModelType]:
        """
        Fetch one row by id.

        Args:
            db: Database session
            id: Primary key

        Returns:
            The row or None
        """
        return self._base_query(db).filter(self.model.id == id).first()

    def paginate(self, query: Query, *, page: int, limit: int):
        """
        Apply page/limit to a query.

        Returns:
            Tuple (rows, total)
        """
        total = query.order_by(None).count()
        rows = query.offset((page - 1) * limit).limit(limit).all()
        return rows, total

    def create(self, db: Session, *, obj_in: CreateSchemaType | Dict[str, Any]) -> ModelType:
        """
        Create a row from a schema or a dict.

        Args:
            db: Database session
            obj_in: Input data

        Returns:
            Created row
        """
        obj_in_data = obj_in if isinstance(obj_in, dict) else obj_in.model_dump()
        db_obj = self.model(**obj_in_data)
        db.add(db_obj)
        db.commit()
        db.refresh(db_obj)
        return db_obj

