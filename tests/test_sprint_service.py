"""
Tests for SprintService

Tests:
- Sprint creation defaults
- Story membership and committed points
- Start / complete / cancel transitions
- Generic update status rules
- Deletion
- Progress calculation, including the story/task blend
- Closed sprints reject membership changes
- Project velocity on completion
"""
from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from app.models.project import Project
from app.models.sprint import SprintStatus, StoryStatus
from app.models.task import TaskStatus
from app.services.project_service import ProjectService, StoryUpdate
from app.services.sprint_service import SprintService, SprintUpdate
from app.services.task_service import TaskService, TaskUpdate


def _future(days=14):
    return datetime.now(timezone.utc) + timedelta(days=days)


async def _mark_done(session, story):
    await ProjectService(session).update_story(story.id, StoryUpdate(status=StoryStatus.DONE))


async def _start(session, sprint):
    return await SprintService(session).start_sprint(sprint.id, "Ship checkout", _future())


async def _finish_task(session, task):
    service = TaskService(session)
    await service.update_task(task.id, TaskUpdate(status=TaskStatus.TO_DO))
    await service.update_task(task.id, TaskUpdate(status=TaskStatus.DONE))


# =============================================================================
# Creation and reads
# =============================================================================

@pytest.mark.asyncio
async def test_create_sprint_defaults(session, board_setup, make_sprint):
    """New sprints start in Planning, unlocked, with zero points"""
    _, board = board_setup

    sprint = await make_sprint(board.id)

    assert sprint.status == SprintStatus.PLANNING.value
    assert sprint.is_locked is False
    assert sprint.committed_points == 0
    assert sprint.total_points == 0
    assert sprint.completed_points == 0
    assert sprint.board_id == board.id


@pytest.mark.asyncio
async def test_create_sprint_rejects_end_before_start(session, board_setup, make_sprint):
    _, board = board_setup
    start = datetime.now(timezone.utc)

    with pytest.raises(ValidationError):
        await make_sprint(board.id, start_date=start, end_date=start - timedelta(days=1))


@pytest.mark.asyncio
async def test_create_sprint_unknown_board(session, make_sprint):
    with pytest.raises(NotFoundError):
        await make_sprint(999)


@pytest.mark.asyncio
async def test_list_board_sprints_filters_by_status(session, board_setup, make_sprint):
    _, board = board_setup
    planning = await make_sprint(board.id, name="Sprint 1")
    active = await make_sprint(board.id, name="Sprint 2")
    await _start(session, active)

    service = SprintService(session)
    all_sprints = await service.list_board_sprints(board.id)
    active_only = await service.list_board_sprints(board.id, SprintStatus.ACTIVE)

    assert {s.id for s in all_sprints} == {planning.id, active.id}
    assert [s.id for s in active_only] == [active.id]


@pytest.mark.asyncio
async def test_list_project_sprints_spans_boards(session, board_setup, make_board, make_sprint):
    project, board = board_setup
    other_board = await make_board(project.id, name="Platform")
    first = await make_sprint(board.id)
    second = await make_sprint(other_board.id)

    sprints = await SprintService(session).list_project_sprints(project.id)

    assert {s.id for s in sprints} == {first.id, second.id}


@pytest.mark.asyncio
async def test_board_backlog_excludes_sprint_stories(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    sprint = await make_sprint(board.id)
    planned = await make_story(project.id, title="Planned")
    waiting = await make_story(project.id, title="Waiting")
    await SprintService(session).add_stories_to_sprint(sprint.id, [planned.id])

    backlog = await SprintService(session).get_board_backlog(board.id)

    assert [s.id for s in backlog] == [waiting.id]


# =============================================================================
# Membership
# =============================================================================

@pytest.mark.asyncio
async def test_add_and_remove_stories_keep_committed_points(session, board_setup, make_story, make_sprint):
    """committed_points equals the points of linked stories and total mirrors it"""
    project, board = board_setup
    sprint = await make_sprint(board.id)
    a = await make_story(project.id, points=3, title="Story A")
    b = await make_story(project.id, points=5, title="Story B")
    c = await make_story(project.id, points=8, title="Story C")
    service = SprintService(session)

    sprint = await service.add_stories_to_sprint(sprint.id, [a.id, b.id, c.id])
    assert sprint.committed_points == 16
    assert sprint.total_points == 16

    await service.remove_stories_from_sprint(sprint.id, [b.id])
    sprint = await service.get_sprint(sprint.id)
    await session.refresh(sprint)
    linked = await service.get_sprint_stories(sprint.id)

    assert {s.id for s in linked} == {a.id, c.id}
    assert sprint.committed_points == sum(s.points for s in linked) == 11
    assert sprint.total_points == sprint.committed_points


@pytest.mark.asyncio
async def test_add_stories_twice_counts_once(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    sprint = await make_sprint(board.id)
    story = await make_story(project.id, points=5)
    service = SprintService(session)

    await service.add_stories_to_sprint(sprint.id, [story.id])
    sprint = await service.add_stories_to_sprint(sprint.id, [story.id])

    assert sprint.committed_points == 5


@pytest.mark.asyncio
async def test_remove_ignores_stories_of_other_sprints(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    first = await make_sprint(board.id, name="Sprint 1")
    second = await make_sprint(board.id, name="Sprint 2")
    story = await make_story(project.id, points=5)
    service = SprintService(session)
    await service.add_stories_to_sprint(second.id, [story.id])

    await service.remove_stories_from_sprint(first.id, [story.id])

    await session.refresh(story)
    await session.refresh(first)
    assert story.sprint_id == second.id
    assert first.committed_points == 0


@pytest.mark.asyncio
async def test_add_stories_to_locked_sprint_fails(session, board_setup, make_story, make_sprint):
    """Locked sprints reject additions even for stories that are not ready"""
    project, board = board_setup
    sprint = await make_sprint(board.id)
    await _start(session, sprint)
    ready = await make_story(project.id, is_ready=True, title="Ready")
    not_ready = await make_story(project.id, is_ready=False, title="Draft")
    sprint_id, ready_id, not_ready_id = sprint.id, ready.id, not_ready.id
    service = SprintService(session)

    with pytest.raises(InvalidStateError):
        await service.add_stories_to_sprint(sprint_id, [ready_id])
    with pytest.raises(InvalidStateError):
        await service.add_stories_to_sprint(sprint_id, [not_ready_id])


@pytest.mark.asyncio
async def test_remove_stories_from_locked_sprint_fails(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    sprint = await make_sprint(board.id)
    story = await make_story(project.id)
    service = SprintService(session)
    await service.add_stories_to_sprint(sprint.id, [story.id])
    await _start(session, sprint)

    with pytest.raises(InvalidStateError):
        await service.remove_stories_from_sprint(sprint.id, [story.id])


@pytest.mark.asyncio
async def test_add_not_ready_story_fails_without_reassigning(session, board_setup, make_story, make_sprint):
    """A single not-ready story fails the whole call and is named in the error"""
    project, board = board_setup
    sprint = await make_sprint(board.id)
    ready = await make_story(project.id, is_ready=True, title="Ready")
    draft = await make_story(project.id, is_ready=False, title="Draft")
    draft_id = draft.id

    with pytest.raises(ValidationError) as exc_info:
        await SprintService(session).add_stories_to_sprint(sprint.id, [ready.id, draft_id])

    assert exc_info.value.details["not_ready_stories"] == [draft_id]
    assert str(draft_id) in exc_info.value.message

    await session.refresh(ready)
    await session.refresh(draft)
    await session.refresh(sprint)
    assert ready.sprint_id is None
    assert draft.sprint_id is None
    assert sprint.committed_points == 0


@pytest.mark.asyncio
async def test_add_stories_requires_ids(session, board_setup, make_sprint):
    _, board = board_setup
    sprint = await make_sprint(board.id)

    with pytest.raises(ValidationError):
        await SprintService(session).add_stories_to_sprint(sprint.id, [])


@pytest.mark.asyncio
async def test_add_unknown_story_fails(session, board_setup, make_sprint):
    _, board = board_setup
    sprint = await make_sprint(board.id)

    with pytest.raises(NotFoundError):
        await SprintService(session).add_stories_to_sprint(sprint.id, [404])


@pytest.mark.asyncio
async def test_add_story_from_other_project_fails(session, board_setup, make_project, make_story, make_sprint):
    _, board = board_setup
    other = await make_project(name="Other project")
    story = await make_story(other.id)
    sprint = await make_sprint(board.id)

    with pytest.raises(ValidationError):
        await SprintService(session).add_stories_to_sprint(sprint.id, [story.id])


@pytest.mark.asyncio
async def test_add_story_already_in_other_sprint_fails(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    first = await make_sprint(board.id, name="Sprint 1")
    second = await make_sprint(board.id, name="Sprint 2")
    story = await make_story(project.id)
    service = SprintService(session)
    await service.add_stories_to_sprint(first.id, [story.id])

    with pytest.raises(ValidationError):
        await service.add_stories_to_sprint(second.id, [story.id])


# =============================================================================
# Start
# =============================================================================

@pytest.mark.asyncio
async def test_start_sprint_locks_and_commits_points(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    sprint = await make_sprint(board.id)
    a = await make_story(project.id, points=3, title="Story A")
    b = await make_story(project.id, points=5, title="Story B")
    service = SprintService(session)
    await service.add_stories_to_sprint(sprint.id, [a.id, b.id])
    end_date = _future(10)

    sprint = await service.start_sprint(sprint.id, "Ship checkout", end_date)

    assert sprint.status == SprintStatus.ACTIVE.value
    assert sprint.is_locked is True
    assert sprint.goal == "Ship checkout"
    assert sprint.committed_points == 8
    assert sprint.total_points == 8


@pytest.mark.asyncio
@pytest.mark.parametrize("goal,end_date", [(None, _future()), ("Goal", None), ("", _future())])
async def test_start_sprint_requires_goal_and_end_date(session, board_setup, make_sprint, goal, end_date):
    _, board = board_setup
    sprint = await make_sprint(board.id)

    with pytest.raises(ValidationError):
        await SprintService(session).start_sprint(sprint.id, goal, end_date)


@pytest.mark.asyncio
async def test_start_sprint_rejects_past_end_date(session, board_setup, make_sprint):
    _, board = board_setup
    sprint = await make_sprint(board.id)

    with pytest.raises(ValidationError):
        await SprintService(session).start_sprint(sprint.id, "Goal", _future(-1))


@pytest.mark.asyncio
async def test_start_sprint_not_in_planning_leaves_fields_unchanged(session, board_setup, make_sprint):
    """Starting an Active sprint fails with InvalidStateError and changes nothing"""
    _, board = board_setup
    sprint = await make_sprint(board.id)
    sprint = await _start(session, sprint)
    before = {
        "status": sprint.status,
        "goal": sprint.goal,
        "is_locked": sprint.is_locked,
        "committed_points": sprint.committed_points,
        "total_points": sprint.total_points,
    }

    with pytest.raises(InvalidStateError):
        await SprintService(session).start_sprint(sprint.id, "Another goal", _future(20))

    await session.refresh(sprint)
    after = {key: getattr(sprint, key) for key in before}
    assert after == before


@pytest.mark.asyncio
async def test_start_unknown_sprint(session):
    with pytest.raises(NotFoundError):
        await SprintService(session).start_sprint(999, "Goal", _future())


# =============================================================================
# Complete
# =============================================================================

@pytest.mark.asyncio
async def test_complete_sprint_moves_unfinished_to_backlog(session, board_setup, make_story, make_sprint):
    """Done story A stays, unfinished story B goes back to the backlog"""
    project, board = board_setup
    sprint = await make_sprint(board.id)
    a = await make_story(project.id, points=3, title="Story A")
    b = await make_story(project.id, points=5, title="Story B")
    service = SprintService(session)
    await service.add_stories_to_sprint(sprint.id, [a.id, b.id])
    await _start(session, sprint)
    await _mark_done(session, a)
    await ProjectService(session).update_story(b.id, StoryUpdate(status=StoryStatus.IN_PROGRESS))

    sprint = await service.complete_sprint(sprint.id, move_unfinished_to_backlog=True)

    await session.refresh(a)
    await session.refresh(b)
    assert sprint.status == SprintStatus.COMPLETED.value
    assert sprint.completed_points == 3
    assert sprint.is_locked is False
    assert a.sprint_id == sprint.id
    assert b.sprint_id is None


@pytest.mark.asyncio
async def test_complete_sprint_keeps_unfinished_by_default(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    sprint = await make_sprint(board.id)
    story = await make_story(project.id, points=5)
    service = SprintService(session)
    await service.add_stories_to_sprint(sprint.id, [story.id])
    await _start(session, sprint)

    sprint = await service.complete_sprint(sprint.id, retrospective_notes="Too much scope")

    await session.refresh(story)
    assert story.sprint_id == sprint.id
    assert sprint.completed_points == 0
    assert sprint.retrospective == "Too much scope"


@pytest.mark.asyncio
async def test_complete_sprint_requires_active(session, board_setup, make_sprint):
    _, board = board_setup
    sprint = await make_sprint(board.id)

    with pytest.raises(InvalidStateError):
        await SprintService(session).complete_sprint(sprint.id)


@pytest.mark.asyncio
async def test_velocity_averages_recent_completed_sprints(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    service = SprintService(session)

    done_points = []
    for number, points in enumerate((8, 5), start=1):
        sprint = await make_sprint(board.id, name=f"Sprint {number}")
        story = await make_story(project.id, points=points, title=f"Story {number}")
        await service.add_stories_to_sprint(sprint.id, [story.id])
        await _start(session, sprint)
        await _mark_done(session, story)
        await service.complete_sprint(sprint.id)
        done_points.append(points)

        project = await session.get(Project, project.id, populate_existing=True)
        if number == 1:
            assert project.velocity == 8

    # round(13 / 2) rounds half up
    assert project.velocity == 7


@pytest.mark.asyncio
async def test_velocity_keeps_other_metadata(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    project.project_metadata = {"theme": "dark"}
    await session.commit()

    sprint = await make_sprint(board.id)
    story = await make_story(project.id, points=2)
    service = SprintService(session)
    await service.add_stories_to_sprint(sprint.id, [story.id])
    await _start(session, sprint)
    await _mark_done(session, story)
    await service.complete_sprint(sprint.id)

    project = await session.get(Project, project.id, populate_existing=True)
    assert project.project_metadata["theme"] == "dark"
    assert project.project_metadata["velocity"] == 2


# =============================================================================
# Cancel
# =============================================================================

@pytest.mark.asyncio
async def test_cancel_active_sprint_detaches_all_stories(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    sprint = await make_sprint(board.id)
    a = await make_story(project.id, title="Story A")
    b = await make_story(project.id, title="Story B")
    service = SprintService(session)
    await service.add_stories_to_sprint(sprint.id, [a.id, b.id])
    await _start(session, sprint)
    await _mark_done(session, a)

    sprint = await service.cancel_sprint(sprint.id)

    await session.refresh(a)
    await session.refresh(b)
    assert sprint.status == SprintStatus.CANCELLED.value
    assert sprint.is_locked is False
    assert a.sprint_id is None
    assert b.sprint_id is None
    assert await service.get_sprint_stories(sprint.id) == []


@pytest.mark.asyncio
async def test_cancel_records_reason(session, board_setup, make_sprint):
    _, board = board_setup
    first = await make_sprint(board.id, name="Sprint 1")
    second = await make_sprint(board.id, name="Sprint 2")
    service = SprintService(session)

    first = await service.cancel_sprint(first.id, reason="Priorities changed")
    second = await service.cancel_sprint(second.id)

    assert first.meta.cancel_reason == "Priorities changed"
    assert first.meta.cancelled_at is not None
    assert second.meta.cancel_reason == "No reason provided"


@pytest.mark.asyncio
async def test_cancel_can_keep_stories(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    sprint = await make_sprint(board.id)
    story = await make_story(project.id)
    service = SprintService(session)
    await service.add_stories_to_sprint(sprint.id, [story.id])

    await service.cancel_sprint(sprint.id, move_unfinished_to_backlog=False)

    await session.refresh(story)
    assert story.sprint_id == sprint.id


@pytest.mark.asyncio
async def test_cancel_completed_sprint_fails(session, board_setup, make_sprint):
    _, board = board_setup
    sprint = await make_sprint(board.id)
    service = SprintService(session)
    await _start(session, sprint)
    await service.complete_sprint(sprint.id)

    with pytest.raises(InvalidStateError):
        await service.cancel_sprint(sprint.id)


@pytest.mark.asyncio
@pytest.mark.parametrize("outcome", ["complete", "cancel"])
async def test_closed_sprint_rejects_membership_changes(session, board_setup, make_story, make_sprint, outcome):
    """Completed and Cancelled sprints are unlocked but keep their stories and points"""
    project, board = board_setup
    sprint = await make_sprint(board.id)
    kept = await make_story(project.id, points=5, title="Kept story")
    late = await make_story(project.id, points=8, title="Late story")
    service = SprintService(session)
    await service.add_stories_to_sprint(sprint.id, [kept.id])
    await _start(session, sprint)
    if outcome == "complete":
        await service.complete_sprint(sprint.id)
    else:
        await service.cancel_sprint(sprint.id, move_unfinished_to_backlog=False)
    sprint_id, kept_id, late_id = sprint.id, kept.id, late.id

    with pytest.raises(InvalidStateError):
        await service.add_stories_to_sprint(sprint_id, [late_id])
    with pytest.raises(InvalidStateError):
        await service.remove_stories_from_sprint(sprint_id, [kept_id])

    await session.refresh(sprint)
    await session.refresh(kept)
    await session.refresh(late)
    assert sprint.is_locked is False
    assert sprint.committed_points == 5
    assert kept.sprint_id == sprint_id
    assert late.sprint_id is None


# =============================================================================
# Generic update
# =============================================================================

@pytest.mark.asyncio
async def test_update_sprint_fields(session, board_setup, make_sprint):
    _, board = board_setup
    sprint = await make_sprint(board.id)

    sprint = await SprintService(session).update_sprint(
        sprint.id, SprintUpdate(name="Renamed", goal="New goal")
    )

    assert sprint.name == "Renamed"
    assert sprint.goal == "New goal"
    assert sprint.status == SprintStatus.PLANNING.value


@pytest.mark.asyncio
async def test_update_status_to_active_locks(session, board_setup, make_sprint):
    _, board = board_setup
    sprint = await make_sprint(board.id)

    sprint = await SprintService(session).update_sprint(sprint.id, SprintUpdate(status="Active"))

    assert sprint.status == SprintStatus.ACTIVE.value
    assert sprint.is_locked is True


@pytest.mark.asyncio
async def test_update_status_to_completed_requires_active(session, board_setup, make_sprint):
    _, board = board_setup
    sprint = await make_sprint(board.id)

    with pytest.raises(InvalidStateError):
        await SprintService(session).update_sprint(sprint.id, SprintUpdate(status="Completed"))


@pytest.mark.asyncio
async def test_update_status_to_cancelled_unlocks(session, board_setup, make_sprint):
    _, board = board_setup
    sprint = await make_sprint(board.id)
    await _start(session, sprint)

    sprint = await SprintService(session).update_sprint(sprint.id, SprintUpdate(status="Cancelled"))

    assert sprint.status == SprintStatus.CANCELLED.value
    assert sprint.is_locked is False


@pytest.mark.asyncio
async def test_update_unknown_status_fails(session, board_setup, make_sprint):
    _, board = board_setup
    sprint = await make_sprint(board.id)

    with pytest.raises(ValidationError):
        await SprintService(session).update_sprint(sprint.id, SprintUpdate(status="Archived"))


@pytest.mark.asyncio
async def test_update_rejects_end_before_start(session, board_setup, make_sprint):
    _, board = board_setup
    sprint = await make_sprint(board.id)

    with pytest.raises(ValidationError):
        await SprintService(session).update_sprint(
            sprint.id, SprintUpdate(end_date=datetime(2000, 1, 1, tzinfo=timezone.utc))
        )


# =============================================================================
# Delete
# =============================================================================

@pytest.mark.asyncio
async def test_delete_planning_sprint_detaches_stories(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    sprint = await make_sprint(board.id)
    story = await make_story(project.id)
    service = SprintService(session)
    await service.add_stories_to_sprint(sprint.id, [story.id])

    await service.delete_sprint(sprint.id)

    await session.refresh(story)
    assert story.sprint_id is None
    with pytest.raises(NotFoundError):
        await service.get_sprint(sprint.id)


@pytest.mark.asyncio
async def test_delete_active_sprint_fails(session, board_setup, make_sprint):
    _, board = board_setup
    sprint = await make_sprint(board.id)
    await _start(session, sprint)

    with pytest.raises(InvalidStateError):
        await SprintService(session).delete_sprint(sprint.id)


# =============================================================================
# Progress
# =============================================================================

@pytest.mark.asyncio
async def test_progress_is_point_weighted(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    sprint = await make_sprint(board.id)
    a = await make_story(project.id, points=3, title="Story A")
    b = await make_story(project.id, points=5, title="Story B")
    service = SprintService(session)
    await service.add_stories_to_sprint(sprint.id, [a.id, b.id])
    await _start(session, sprint)
    await _mark_done(session, a)

    progress = await service.calculate_progress(sprint.id)

    # 3 / 8 = 37.5% rounds half up to 38; 38% of 8 points rounds to 3
    assert progress.progress_percentage == 38
    assert progress.story_count == 2
    assert progress.completed_story_count == 1
    assert progress.completed_points == 3


@pytest.mark.asyncio
async def test_progress_falls_back_to_story_counts(session, board_setup, make_story, make_sprint):
    project, board = board_setup
    sprint = await make_sprint(board.id)
    a = await make_story(project.id, points=0, title="Story A")
    b = await make_story(project.id, points=0, title="Story B")
    service = SprintService(session)
    await service.add_stories_to_sprint(sprint.id, [a.id, b.id])
    await _mark_done(session, a)

    progress = await service.calculate_progress(sprint.id)

    assert progress.progress_percentage == 50


@pytest.mark.asyncio
async def test_progress_blends_story_and_task_completion(session, board_setup, make_story, make_sprint, make_task):
    """Stories weigh 70% and their tasks 30% once any story has tasks"""
    project, board = board_setup
    sprint = await make_sprint(board.id)
    a = await make_story(project.id, points=3, title="Story A")
    b = await make_story(project.id, points=5, title="Story B")
    service = SprintService(session)
    await service.add_stories_to_sprint(sprint.id, [a.id, b.id])
    await _start(session, sprint)
    await _mark_done(session, a)
    finished = await make_task(story_id=b.id, title="Backend")
    await make_task(story_id=b.id, title="Frontend")
    await _finish_task(session, finished)

    progress = await service.calculate_progress(sprint.id)

    # 37.5 * 0.7 + 50 * 0.3 = 41.25
    assert progress.progress_percentage == 41
    assert progress.task_count == 2
    assert progress.completed_task_count == 1
    assert progress.completed_points == 3


@pytest.mark.asyncio
async def test_progress_with_unfinished_tasks_caps_done_stories(session, board_setup, make_story, make_sprint, make_task):
    project, board = board_setup
    sprint = await make_sprint(board.id)
    story = await make_story(project.id, points=5)
    service = SprintService(session)
    await service.add_stories_to_sprint(sprint.id, [story.id])
    await _mark_done(session, story)
    await make_task(story_id=story.id)

    progress = await service.calculate_progress(sprint.id)

    assert progress.progress_percentage == 70


@pytest.mark.asyncio
async def test_progress_of_empty_sprint(session, board_setup, make_sprint):
    _, board = board_setup
    sprint = await make_sprint(board.id)

    progress = await SprintService(session).calculate_progress(sprint.id)

    assert progress.progress_percentage == 0
    assert progress.story_count == 0
