"""
Relational shoe catalogue read by the structured query translator.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import sqlalchemy as sa
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from config import DB_CONFIG

logger = logging.getLogger(__name__)

Base = declarative_base()


class Shoe(Base):
    __tablename__ = "shoes"

    id = sa.Column(sa.Integer, primary_key=True)
    brand = sa.Column(sa.String(100), nullable=False)
    model = sa.Column(sa.String(255), nullable=False)
    forefoot_stack_height_mm = sa.Column(sa.Float)
    heel_stack_height_mm = sa.Column(sa.Float)
    drop_mm = sa.Column(sa.Float)
    fit = sa.Column(sa.String(100))
    wide_option = sa.Column(sa.Boolean, default=False)
    intended_use = sa.Column(sa.String(255))
    description = sa.Column(sa.Text)

    genders = relationship("ShoeGender", back_populates="shoe", cascade="all, delete-orphan")
    reviews = relationship("ShoeReview", back_populates="shoe", cascade="all, delete-orphan")

    @hybrid_property
    def computed_drop_mm(self):
        """Heel minus forefoot stack height; None when either is unknown."""
        if self.heel_stack_height_mm is None or self.forefoot_stack_height_mm is None:
            return None
        return self.heel_stack_height_mm - self.forefoot_stack_height_mm

    @computed_drop_mm.expression
    def computed_drop_mm(cls):
        return cls.heel_stack_height_mm - cls.forefoot_stack_height_mm

    def __repr__(self):
        return f"<Shoe {self.id} {self.brand} {self.model}>"


class ShoeGender(Base):
    """A gender-specific version of a shoe with its own price and weight."""
    __tablename__ = "shoe_genders"

    id = sa.Column(sa.Integer, primary_key=True)
    shoe_id = sa.Column(sa.Integer, sa.ForeignKey("shoes.id"), nullable=False, index=True)
    gender = sa.Column(sa.String(50), nullable=False)
    price = sa.Column(sa.Float)
    price_rrp = sa.Column(sa.Float)
    weight_grams = sa.Column(sa.Float)
    image_id = sa.Column(sa.Integer)

    shoe = relationship("Shoe", back_populates="genders")


class ShoeReview(Base):
    __tablename__ = "shoe_reviews"

    id = sa.Column(sa.Integer, primary_key=True)
    shoe_id = sa.Column(sa.Integer, sa.ForeignKey("shoes.id"), nullable=False, index=True)
    fit = sa.Column(sa.Text)
    feel = sa.Column(sa.Text)
    durability = sa.Column(sa.Text)
    source_url = sa.Column(sa.String(1024))

    shoe = relationship("Shoe", back_populates="reviews")


class ShoeDatabase:
    """
    Explicitly constructed handle on the shoe catalogue.

    Owns the engine; callers borrow sessions through ``session()`` and
    release the handle with ``dispose()`` or a ``with`` block.
    """

    def __init__(self, url: Optional[str] = None, create_tables: bool = False, **engine_kwargs):
        """
        Initialize the database handle.

        Args:
            url: SQLAlchemy URL, defaults to DB_CONFIG["connection_string"]
            create_tables: Create missing tables on startup
            **engine_kwargs: Passed to sqlalchemy.create_engine
        """
        self.url = url or DB_CONFIG["connection_string"]
        if self.url in ("sqlite://", "sqlite:///:memory:"):
            # Keep a single connection so the in-memory database survives between sessions
            engine_kwargs.setdefault("poolclass", StaticPool)
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})

        self.engine = sa.create_engine(self.url, **engine_kwargs)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        if create_tables:
            Base.metadata.create_all(self.engine)
        logger.info(f"Shoe database initialized: {self.engine.url.render_as_string(hide_password=True)}")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session, committing on success and rolling back on error."""
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self):
        self.engine.dispose()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dispose()


def shoe_to_dict(shoe: Shoe) -> Dict[str, Any]:
    """Detach a shoe and its versions and reviews into plain data for graph state."""
    return {
        "id": shoe.id,
        "brand": shoe.brand,
        "model": shoe.model,
        "forefoot_stack_height_mm": shoe.forefoot_stack_height_mm,
        "heel_stack_height_mm": shoe.heel_stack_height_mm,
        "drop_mm": shoe.drop_mm if shoe.drop_mm is not None else shoe.computed_drop_mm,
        "fit": shoe.fit,
        "wide_option": bool(shoe.wide_option),
        "intended_use": shoe.intended_use,
        "description": shoe.description,
        "genders": [
            {
                "gender": version.gender,
                "price": version.price,
                "price_rrp": version.price_rrp,
                "weight_grams": version.weight_grams,
            }
            for version in shoe.genders
        ],
        "reviews": [
            {
                "fit": review.fit,
                "feel": review.feel,
                "durability": review.durability,
                "source_url": review.source_url,
            }
            for review in shoe.reviews
        ],
    }
