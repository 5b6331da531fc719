"""
Топологическая сортировка задач (алгоритм Кана).
"""
import heapq
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sitescheduler.data.models import Dependency
from sitescheduler.errors import CycleDetected

logger = logging.getLogger(__name__)


def topological_sort(
    task_ids: Sequence[str],
    dependencies: Iterable[Dependency],
    priority: Optional[Callable[[str], Any]] = None,
    allow_fallback: bool = False
) -> Tuple[List[str], bool]:
    """
    Упорядочивает задачи так, чтобы предшественник шел раньше последователя.

    Готовые задачи извлекаются из очереди по ключу приоритета, если он задан,
    иначе в порядке входных данных, поэтому результат детерминирован.

    Args:
        task_ids: Упорядочиваемые задачи
        dependencies: Связи между задачами
        priority: Ключ сортировки готовых задач (меньший раньше)
        allow_fallback: Добавить задачи цикла в конец вместо исключения

    Returns:
        Порядок задач и признак того, что понадобился обход цикла

    Raises:
        CycleDetected: Если задачи нельзя упорядочить, а обход цикла запрещен
    """
    position = {task_id: index for index, task_id in enumerate(task_ids)}
    in_degree: Dict[str, int] = {task_id: 0 for task_id in task_ids}
    successors: Dict[str, List[str]] = {task_id: [] for task_id in task_ids}
    for dependency in dependencies:
        if dependency.sourceTaskId not in position or dependency.targetTaskId not in position:
            continue
        successors[dependency.sourceTaskId].append(dependency.targetTaskId)
        in_degree[dependency.targetTaskId] += 1

    def entry(task_id: str):
        key = priority(task_id) if priority is not None else ()
        return (key, position[task_id], task_id)

    ready = [entry(task_id) for task_id in task_ids if in_degree[task_id] == 0]
    heapq.heapify(ready)

    order = []
    while ready:
        _, _, task_id = heapq.heappop(ready)
        order.append(task_id)
        for successor in successors[task_id]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(ready, entry(successor))

    if len(order) == len(task_ids):
        return order, False

    emitted = set(order)
    remaining = [task_id for task_id in task_ids if task_id not in emitted]
    if not allow_fallback:
        raise CycleDetected(
            remaining,
            f"Цикл зависимостей среди задач: {', '.join(remaining)}"
        )
    logger.warning(
        f"Циклические зависимости у {len(remaining)} задач, они добавлены в порядке входных данных"
    )
    return order + remaining, True
