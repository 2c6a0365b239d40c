"""
Dashboard Aggregate Service
===========================

Derived (aggregate) namespaces computed from the task and employee
collections and cached through CacheService:

    dashboard:stats              overall task counters
    dashboard:stats:personal     counters for one assignee, keyed by userId
    dashboard:team-performance   per-assignee counts, top 20 by total

These namespaces are registered as derived namespaces of the task/employee
OptimizedDataService instances (see taskboard_cache.app), so any task or
employee write drops them.

Task reads are capped at DASHBOARD_TASK_LIMIT records per query. Gateway
errors propagate; nothing is cached for a failed aggregate.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel

from taskboard_cache.application.services.cache_service import CacheService
from taskboard_cache.application.services.optimized_data_service import (
    FilterParam,
    OptimizedDataService,
    QueryOptions,
)
from taskboard_cache.core.config.constants import (
    DASHBOARD_TASK_LIMIT,
    DASHBOARD_TEAM_TOP_N,
    NAMESPACE_DASHBOARD_PERSONAL_STATS,
    NAMESPACE_DASHBOARD_STATS,
    NAMESPACE_DASHBOARD_TEAM_PERFORMANCE,
    CacheTier,
    Stage,
)
from taskboard_cache.core.interfaces.data_source import Record
from taskboard_cache.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)

EMPLOYEE_LIMIT = 100

STATUS_COMPLETED = "completed"
STATUS_IN_PROGRESS = "in-progress"
STATUS_TODO = ("pending", "todo")


class DashboardStats(BaseModel):
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    todo_tasks: int = 0
    overdue_tasks: int = 0


class TeamMemberPerformance(BaseModel):
    user_id: str
    name: str | None = None
    email: str | None = None
    tasks_completed: int = 0
    tasks_in_progress: int = 0
    tasks_todo: int = 0
    total_tasks: int = 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_due_date(value: Any) -> datetime | None:
    """
    Normalize a stored due date (datetime, ISO string or epoch ms) to an
    aware UTC datetime. Unparseable values count as "no due date".
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _due_date(task: Record) -> Any:
    return task.get("dueDate", task.get("due_date"))


def _assignees(task: Record) -> list[str]:
    assigned = task.get("assignedTo", task.get("assigned_to"))
    if isinstance(assigned, str):
        return [assigned]
    if isinstance(assigned, (list, tuple)):
        return [user_id for user_id in assigned if isinstance(user_id, str)]
    return []


def compute_stats(tasks: list[Record], now: datetime) -> DashboardStats:
    """Bucket tasks by status and count overdue ones."""
    stats = DashboardStats(total_tasks=len(tasks))
    for task in tasks:
        status = task.get("status")
        if status == STATUS_COMPLETED:
            stats.completed_tasks += 1
            continue
        if status == STATUS_IN_PROGRESS:
            stats.in_progress_tasks += 1
        elif status in STATUS_TODO:
            stats.todo_tasks += 1

        due = parse_due_date(_due_date(task))
        if due is not None and due < now:
            stats.overdue_tasks += 1
    return stats


def compute_team_performance(
    employees: list[Record],
    tasks: list[Record],
    top_n: int = DASHBOARD_TEAM_TOP_N,
) -> list[TeamMemberPerformance]:
    """Per-employee counters, members without tasks dropped, busiest first."""
    performance: dict[str, TeamMemberPerformance] = {}
    for employee in employees:
        employee_id = employee.get("id")
        if employee_id:
            performance[employee_id] = TeamMemberPerformance(
                user_id=employee_id,
                name=employee.get("name"),
                email=employee.get("email"),
            )

    for task in tasks:
        status = task.get("status")
        for user_id in _assignees(task):
            member = performance.get(user_id)
            if member is None:
                continue
            member.total_tasks += 1
            if status == STATUS_COMPLETED:
                member.tasks_completed += 1
            elif status == STATUS_IN_PROGRESS:
                member.tasks_in_progress += 1
            elif status in STATUS_TODO:
                member.tasks_todo += 1

    ranked = sorted(
        (member for member in performance.values() if member.total_tasks > 0),
        key=lambda member: member.total_tasks,
        reverse=True,
    )
    return ranked[:top_n]


class DashboardService:
    """
    Cached dashboard aggregates.

    USAGE:
    ------
    dashboard = DashboardService(cache_service, tasks_service, employees_service)
    stats = await dashboard.get_overall_stats()
    mine = await dashboard.get_personalized_stats("user-42")
    """

    def __init__(
        self,
        cache_service: CacheService,
        tasks: OptimizedDataService,
        employees: OptimizedDataService | None = None,
        ttl_ms: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.cache_service = cache_service
        self._tasks = tasks
        self._employees = employees
        self._ttl_ms = ttl_ms
        self._clock = clock or _utc_now

    async def get_overall_stats(self, force_refresh: bool = False) -> DashboardStats:
        async def compute() -> dict[str, Any]:
            tasks = await self._tasks.get_all(QueryOptions(page_size=DASHBOARD_TASK_LIMIT))
            stats = compute_stats(tasks, self._clock())
            log_stage(logger, Stage.DASHBOARD, "Overall stats computed",
                      task_count=len(tasks))
            return stats.model_dump()

        data = await self.cache_service.get_or_fetch(
            NAMESPACE_DASHBOARD_STATS,
            None,
            compute,
            ttl_ms=self._ttl_ms,
            tier=CacheTier.MEMORY,
            force_refresh=force_refresh,
        )
        return DashboardStats.model_validate(data)

    async def get_personalized_stats(self, user_id: str, force_refresh: bool = False) -> DashboardStats:
        async def compute() -> dict[str, Any]:
            query = QueryOptions(
                filters=[FilterParam(field="assignedTo", operator="array-contains", value=user_id)],
                page_size=DASHBOARD_TASK_LIMIT,
            )
            tasks = await self._tasks.get_all(query)
            stats = compute_stats(tasks, self._clock())
            log_stage(logger, Stage.DASHBOARD, "Personal stats computed",
                      user_id=user_id, task_count=len(tasks))
            return stats.model_dump()

        data = await self.cache_service.get_or_fetch(
            NAMESPACE_DASHBOARD_PERSONAL_STATS,
            {"userId": user_id},
            compute,
            ttl_ms=self._ttl_ms,
            tier=CacheTier.MEMORY,
            force_refresh=force_refresh,
        )
        return DashboardStats.model_validate(data)

    async def get_team_performance(self, force_refresh: bool = False) -> list[TeamMemberPerformance]:
        """Requires an employees service; without one the ranking is empty."""
        async def compute() -> list[dict[str, Any]]:
            if self._employees is None:
                return []
            employees = await self._employees.get_all(QueryOptions(
                filters=[FilterParam(field="status", value="active")],
                page_size=EMPLOYEE_LIMIT,
            ))
            tasks = await self._tasks.get_all(QueryOptions(page_size=DASHBOARD_TASK_LIMIT))
            ranking = compute_team_performance(employees, tasks)
            log_stage(logger, Stage.DASHBOARD, "Team performance computed",
                      employee_count=len(employees), ranked=len(ranking))
            return [member.model_dump() for member in ranking]

        data = await self.cache_service.get_or_fetch(
            NAMESPACE_DASHBOARD_TEAM_PERFORMANCE,
            None,
            compute,
            ttl_ms=self._ttl_ms,
            tier=CacheTier.STRUCTURED,
            force_refresh=force_refresh,
        )
        return [TeamMemberPerformance.model_validate(item) for item in data]

    async def invalidate_cache(self, user_id: str | None = None) -> None:
        """One user's personal stats, or every dashboard aggregate."""
        if user_id:
            await self.cache_service.invalidate(NAMESPACE_DASHBOARD_PERSONAL_STATS, {"userId": user_id})
            return
        await self.cache_service.invalidate_pattern(NAMESPACE_DASHBOARD_STATS)
        await self.cache_service.invalidate_pattern(NAMESPACE_DASHBOARD_TEAM_PERFORMANCE)
