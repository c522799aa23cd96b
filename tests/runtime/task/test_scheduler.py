import asyncio

import pytest
from hypothesis import given
from hypothesis import strategies as st

from spool.runtime.task import Scheduler
from spool.runtime.task import Task
from spool.runtime.task import TaskState


def _recording(started: list, label):
    async def work(task):
        started.append(label)
        await task.sleep(0.01)
        return label

    return work


class TestScheduler:
    """Tests for Scheduler."""

    def test_init_is_empty(self, scheduler):
        """Test a new scheduler has nothing pending or running."""
        assert len(scheduler) == 0
        assert scheduler.pending == []
        assert scheduler.running == []

    def test_len_holds_queue_lock(self, scheduler, mocker):
        """Test len() reads the queue under the scheduler's lock."""
        scheduler.add_task(Task(lambda task: None))
        lock = mocker.MagicMock()
        scheduler._lock = lock

        assert len(scheduler) == 1
        lock.__enter__.assert_called_once()
        lock.__exit__.assert_called_once()

    def test_schedulers_are_independent(self):
        """Test schedulers share no state.

        Given:
            Two schedulers
        When:
            A task is added to one of them
        Then:
            Only that scheduler holds it
        """
        # Arrange
        first, second = Scheduler(), Scheduler()
        task = Task(lambda task: None)

        # Act
        first.add_task(task)

        # Assert
        assert task in first
        assert task not in second
        assert len(second) == 0

    @pytest.mark.asyncio
    async def test_run_tasks_in_priority_order(self, scheduler):
        """Test tasks start by descending priority, stable on ties.

        Given:
            Tasks added with priorities [3, 1, 3, 2] in that order
        When:
            run_tasks() is called
        Then:
            They start in priority order [3, 3, 2, 1], with the two
            priority-3 tasks in their original relative order
        """
        # Arrange
        started = []
        for label, priority in (("a", 3), ("b", 1), ("c", 3), ("d", 2)):
            scheduler.add_task(Task(_recording(started, label)), priority)

        # Act
        scheduler.run_tasks()
        await asyncio.sleep(0.05)

        # Assert
        assert started == ["a", "c", "d", "b"]
        assert len(scheduler) == 0

    @pytest.mark.asyncio
    async def test_run_tasks_starts_before_next_dequeue(self, scheduler, mocker):
        """Test every dequeued task is started before the next dequeue.

        Given:
            Two pending tasks
        When:
            run_tasks() is called
        Then:
            start() is called on each task, in dequeue order, and both are
            RUNNING when run_tasks() returns
        """
        # Arrange
        low = Task(lambda task: "low")
        high = Task(lambda task: "high")
        scheduler.add_task(low, 1)
        scheduler.add_task(high, 2)
        order = []

        def recording(task, label):
            start = task.start

            def wrapper():
                order.append(label)
                start()

            return wrapper

        mocker.patch.object(low, "start", side_effect=recording(low, "low"))
        mocker.patch.object(high, "start", side_effect=recording(high, "high"))

        # Act
        scheduler.run_tasks()

        # Assert
        assert order == ["high", "low"]
        assert high.state is TaskState.RUNNING
        assert low.state is TaskState.RUNNING
        assert await asyncio.gather(high, low) == ["high", "low"]

    @given(priorities=st.lists(st.integers(min_value=-5, max_value=5), max_size=20))
    def test_pending_order_is_stable(self, priorities):
        """Test pending order is non-increasing priority, stable on ties.

        Given:
            Any sequence of priorities
        When:
            Tasks are added in that order
        Then:
            pending lists them by descending priority, preserving insertion
            order among equal priorities
        """
        # Arrange
        scheduler = Scheduler()
        tasks = [Task(lambda task: None) for _ in priorities]

        # Act
        for task, priority in zip(tasks, priorities):
            scheduler.add_task(task, priority)

        # Assert
        expected = [
            task
            for _, _, task in sorted(
                zip(priorities, range(len(tasks)), tasks),
                key=lambda entry: (-entry[0], entry[1]),
            )
        ]
        assert scheduler.pending == expected

    def test_add_task_records_priority(self, scheduler):
        """Test add_task() stores the priority on the task."""
        task = Task(lambda task: None)

        scheduler.add_task(task, 4)

        assert task.priority == 4
        assert task.scheduler is scheduler

    def test_add_task_twice(self, scheduler):
        """Test a task cannot be pending twice.

        Given:
            A task pending on a scheduler
        When:
            It is added again, to the same or another scheduler
        Then:
            ValueError is raised
        """
        # Arrange
        task = Task(lambda task: None)
        scheduler.add_task(task)

        # Act & Assert
        with pytest.raises(ValueError):
            scheduler.add_task(task)
        with pytest.raises(ValueError):
            Scheduler().add_task(task)
        assert len(scheduler) == 1

    def test_add_settled_task(self, scheduler):
        """Test a settled task cannot be enqueued."""
        task = Task(lambda task: None)
        task.cancel()

        with pytest.raises(asyncio.InvalidStateError):
            scheduler.add_task(task)

    def test_run_tasks_without_running_loop(self, scheduler):
        """Test run_tasks() keeps its queue when no loop is running.

        Given:
            A pending task and no running event loop
        When:
            run_tasks() is called
        Then:
            RuntimeError is raised and the task stays pending
        """
        # Arrange
        task = Task(lambda task: None)
        scheduler.add_task(task)

        # Act & Assert
        with pytest.raises(RuntimeError):
            scheduler.run_tasks()
        assert scheduler.pending == [task]
        assert task.state is TaskState.CREATED

    def test_remove(self, scheduler):
        """Test remove() drops a pending task without cancelling it."""
        task = Task(lambda task: None)
        scheduler.add_task(task)

        assert scheduler.remove(task) is True
        assert scheduler.remove(task) is False
        assert task not in scheduler
        assert task.state is TaskState.CREATED

    def test_readding_task_registers_one_listener(self, scheduler):
        """Test removing and re-adding a task does not stack listeners.

        Given:
            A task that is added, removed and added again
        When:
            Its "finally" listeners are inspected
        Then:
            The scheduler has registered exactly one
        """
        # Arrange
        task = Task(lambda task: None)

        # Act
        scheduler.add_task(task)
        scheduler.remove(task)
        scheduler.add_task(task, 3)

        # Assert
        assert len(task.listeners("finally")) == 1
        assert scheduler.pending == [task]

    @pytest.mark.asyncio
    async def test_start_tasks_starts_only_given_tasks(self, scheduler):
        """Test start_tasks() leaves other pending work queued.

        Given:
            Three pending tasks of different priorities
        When:
            start_tasks() is called with two of them
        Then:
            Those two start in priority order and the third stays pending
        """
        # Arrange
        started = []
        low = Task(_recording(started, "low"))
        high = Task(_recording(started, "high"))
        other = Task(_recording(started, "other"))
        scheduler.add_task(low, 1)
        scheduler.add_task(other, 9)
        scheduler.add_task(high, 5)

        # Act
        scheduler.start_tasks([low, high])
        await asyncio.gather(low, high)

        # Assert
        assert started == ["high", "low"]
        assert scheduler.pending == [other]
        assert other.state is TaskState.CREATED
        assert scheduler.running == []

    def test_cancelled_task_leaves_queue(self, scheduler):
        """Test cancelling a pending task removes it from the queue."""
        kept = Task(lambda task: None)
        dropped = Task(lambda task: None)
        scheduler.add_task(kept)
        scheduler.add_task(dropped, 5)

        dropped.cancel()

        assert scheduler.pending == [kept]
        assert dropped.scheduler is None

    @pytest.mark.asyncio
    async def test_running_tasks_are_tracked_until_settled(self, scheduler):
        """Test started tasks are tracked only while unsettled.

        Given:
            A pending task
        When:
            run_tasks() starts it and it later settles
        Then:
            It is listed as running until it settles
        """
        # Arrange
        task = Task(_recording([], "x"))
        scheduler.add_task(task)

        # Act
        scheduler.run_tasks()
        running = scheduler.running
        await task

        # Assert
        assert running == [task]
        assert scheduler.running == []

    @pytest.mark.asyncio
    async def test_task_awaited_directly_while_pending(self, scheduler):
        """Test a pending task awaited directly leaves the queue.

        Given:
            A pending task
        When:
            It is awaited directly instead of through run_tasks()
        Then:
            It runs once and is no longer pending
        """
        # Arrange
        calls = []
        task = Task(lambda task: calls.append(task) or "done")
        scheduler.add_task(task)

        # Act
        result = await task
        scheduler.run_tasks()

        # Assert
        assert result == "done"
        assert calls == [task]
        assert len(scheduler) == 0


class TestSchedulerCancelAllOtherTasks:
    """Tests for Scheduler.cancel_all_other_tasks()."""

    def test_cancels_pending_tasks(self, scheduler):
        """Test every pending task but the given one is cancelled.

        Given:
            Three pending tasks
        When:
            cancel_all_other_tasks() is called with one of them
        Then:
            The other two are CANCELLED and the spared one is untouched
        """
        # Arrange
        tasks = [Task(lambda task: None) for _ in range(3)]
        for task in tasks:
            scheduler.add_task(task)

        # Act
        scheduler.cancel_all_other_tasks(tasks[1])

        # Assert
        assert [task.state for task in tasks] == [
            TaskState.CANCELLED,
            TaskState.CREATED,
            TaskState.CANCELLED,
        ]
        assert scheduler.pending == [tasks[1]]

    @pytest.mark.asyncio
    async def test_cancels_running_tasks(self, scheduler, blocking):
        """Test running tasks started by the scheduler are cancelled too.

        Given:
            Two tasks started by run_tasks() and a third still pending
        When:
            cancel_all_other_tasks() is called with one running task
        Then:
            The other running task and the pending task are CANCELLED
        """
        # Arrange
        winner, loser = blocking(), blocking()
        scheduler.add_task(winner)
        scheduler.add_task(loser)
        scheduler.run_tasks()
        pending = Task(lambda task: None)
        scheduler.add_task(pending)

        # Act
        scheduler.cancel_all_other_tasks(winner)

        # Assert
        assert winner.state is TaskState.RUNNING
        assert loser.state is TaskState.CANCELLED
        assert pending.state is TaskState.CANCELLED
        assert scheduler.running == [winner]
        winner.cancel()
        assert scheduler.running == []

    def test_cancel_all_other_tasks_with_unknown_task(self, scheduler):
        """Test an unknown task spares nothing."""
        tasks = [Task(lambda task: None) for _ in range(2)]
        for task in tasks:
            scheduler.add_task(task)

        scheduler.cancel_all_other_tasks(Task(lambda task: None))

        assert all(task.cancelled() for task in tasks)
        assert len(scheduler) == 0
