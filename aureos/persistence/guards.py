from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession


@dataclass(frozen=True)
class ProjectPredicateError(RuntimeError):
    # Surface missing project predicates before an unscoped query can run.
    message: str


def require_project_id(project_id: str | None) -> None:
    # Enforce non-empty project identifiers on every project-scoped query.
    if not project_id:
        raise ProjectPredicateError("Project predicate required but project_id is missing")


def project_predicate(model, project_id: str) -> object:
    # Build project predicates through a single helper to guarantee guard coverage.
    require_project_id(project_id)
    return model.project_id == project_id


async def compare_and_swap(
    session: AsyncSession,
    model,
    *criteria: Any,
    values: dict[str, Any],
) -> bool:
    """Apply ``values`` only to the row matching every criterion.

    Runs as a single ``UPDATE ... WHERE`` so the check and the write cannot be
    interleaved by a concurrent request. Returns True only when exactly one row
    changed; callers treat False as "someone else got there first".
    """
    if not criteria:
        raise ValueError("compare_and_swap requires at least one criterion")
    result = await session.execute(
        update(model)
        .where(*criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1
