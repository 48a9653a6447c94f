"""SQLite database schema, connection management, and query helpers.

Uses SQLAlchemy 2.0 ORM with DeclarativeBase for the three-table schema:
  - FitRuns: one row per fit (catalog, degree, counts, best cost)
  - FittedParameters: fitted and derived parameters with their uncertainties
  - ObjectResults: per-object reduced parallaxes and relative discrepancies
"""

import argparse
from datetime import datetime, timezone
from typing import Optional

import numpy as np
import pandas as pd
from sqlalchemy import (
    Float,
    Integer,
    String,
    DateTime,
    Boolean,
    ForeignKey,
    create_engine,
    select,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    sessionmaker,
)

from galrot.utils import get_db_path, setup_logger

logger = setup_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _nullable(value) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    return None if np.isnan(value) else value


# ---------------------------------------------------------------------------
# ORM Models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


class FitRun(Base):
    __tablename__ = "fit_runs"

    run_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    catalog: Mapped[str] = mapped_column(String)
    degree: Mapped[int] = mapped_column(Integer, default=1)
    l_stroke: Mapped[int] = mapped_column(Integer, default=1)
    n_objects: Mapped[int] = mapped_column(Integer)
    n_used: Mapped[int] = mapped_column(Integer)
    n_iterations: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    best_cost: Mapped[float] = mapped_column(Float)
    converged: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    parameters: Mapped[list["FittedParameter"]] = relationship(
        back_populates="run", cascade="all, delete-orphan"
    )
    objects: Mapped[list["ObjectResult"]] = relationship(
        back_populates="run", cascade="all, delete-orphan"
    )


class FittedParameter(Base):
    __tablename__ = "fitted_parameters"

    parameter_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("fit_runs.run_id"))
    name: Mapped[str] = mapped_column(String)
    value: Mapped[float] = mapped_column(Float)
    error_plus: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    error_minus: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sigma: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    run: Mapped["FitRun"] = relationship(back_populates="parameters")


class ObjectResult(Base):
    __tablename__ = "object_results"

    result_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("fit_runs.run_id"))
    object_index: Mapped[int] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String)
    source: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    outlier: Mapped[bool] = mapped_column(Boolean, default=False)
    par: Mapped[float] = mapped_column(Float)
    par_r: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    d_v_r: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    d_mu_l_cos_b: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    d_mu_b: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    d_par: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    run: Mapped["FitRun"] = relationship(back_populates="objects")


# ---------------------------------------------------------------------------
# Engine / Session helpers
# ---------------------------------------------------------------------------

def get_engine(db_path: str | None = None):
    """Create a SQLAlchemy engine for the results database."""
    path = db_path or str(get_db_path())
    engine = create_engine(f"sqlite:///{path}", echo=False)
    return engine


def init_db(db_path: str | None = None):
    """Create all tables if they don't exist. Safe to call repeatedly."""
    engine = get_engine(db_path)
    Base.metadata.create_all(engine)
    logger.info("Database initialized at %s", db_path or get_db_path())
    return engine


def get_session(engine=None) -> Session:
    """Create and return a new SQLAlchemy Session."""
    if engine is None:
        engine = get_engine()
    factory = sessionmaker(bind=engine)
    return factory()


# ---------------------------------------------------------------------------
# Insert / Query helpers
# ---------------------------------------------------------------------------

def insert_fit_result(
    session: Session,
    catalog: str,
    summary: pd.DataFrame,
    objects: pd.DataFrame,
    run_info: dict,
) -> FitRun:
    """Store one fit with its parameters and per-object results.

    Args:
        session: Active SQLAlchemy session.
        catalog: Name of the catalog file.
        summary: ``FitResult.to_summary_dataframe()``.
        objects: ``FitResult.to_objects_dataframe()``.
        run_info: ``FitResult.to_dict()``.

    Returns:
        The stored FitRun.
    """
    run = FitRun(catalog=catalog, **run_info)
    for _, row in summary.iterrows():
        run.parameters.append(
            FittedParameter(
                name=str(row["parameter"]),
                value=float(row["value"]),
                error_plus=_nullable(row.get("ep")),
                error_minus=_nullable(row.get("em")),
                sigma=_nullable(row.get("sigma")),
            )
        )
    for _, row in objects.iterrows():
        run.objects.append(
            ObjectResult(
                object_index=int(row["i"]),
                name=str(row["name"]),
                source=str(row["source"]),
                outlier=bool(row["outlier"]),
                par=float(row["par"]),
                par_r=_nullable(row.get("par_r")),
                d_v_r=_nullable(row.get("d_v_r")),
                d_mu_l_cos_b=_nullable(row.get("d_mu_l_cos_b")),
                d_mu_b=_nullable(row.get("d_mu_b")),
                d_par=_nullable(row.get("d_par")),
            )
        )
    session.add(run)
    session.commit()
    logger.info(
        "Stored fit of %s: %d parameters, %d objects (cost=%.6f)",
        catalog, len(run.parameters), len(run.objects), run.best_cost,
    )
    return run


def query_parameters_as_dataframe(session: Session, run_id: int) -> pd.DataFrame:
    """Retrieve the parameters of one fit as a Pandas DataFrame."""
    parameters = session.scalars(
        select(FittedParameter)
        .where(FittedParameter.run_id == run_id)
        .order_by(FittedParameter.parameter_id)
    ).all()
    if not parameters:
        logger.warning("No parameters found for run: %d", run_id)
        return pd.DataFrame()

    data = [
        {
            "parameter": p.name,
            "value": p.value,
            "ep": p.error_plus,
            "em": p.error_minus,
            "sigma": p.sigma,
        }
        for p in parameters
    ]
    return pd.DataFrame(data)


def query_latest_run(session: Session, catalog: Optional[str] = None) -> Optional[FitRun]:
    """Most recent fit, optionally restricted to one catalog."""
    stmt = select(FitRun).order_by(FitRun.run_id.desc()).limit(1)
    if catalog is not None:
        stmt = stmt.where(FitRun.catalog == catalog)
    return session.scalars(stmt).first()


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Fit results database management")
    parser.add_argument(
        "--init", action="store_true", help="Initialize database schema"
    )
    parser.add_argument("--db", type=str, default=None, help="Path to SQLite database")
    args = parser.parse_args()
    if args.init:
        init_db(args.db)
