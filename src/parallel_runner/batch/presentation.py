"""Text rendering for session status, results and listings."""

from __future__ import annotations

from datetime import datetime

from parallel_runner.batch.models import ExecutionResult, Session, SessionStatus, TaskStatus
from parallel_runner.batch.query import SessionOverview, SessionSummary, TaskOutput

RESULTS_PLACEHOLDER = "No results available yet."
_RULE = "=" * 50


def task_icon(status: TaskStatus, success: bool) -> str:
    if status is TaskStatus.COMPLETED:
        return "✅" if success else "❌"
    return "⏳"


def session_icon(status: SessionStatus) -> str:
    if status is SessionStatus.COMPLETED:
        return "✅"
    if status is SessionStatus.RUNNING:
        return "⏳"
    return "❌"


def render_status(session: Session) -> list[str]:
    lines = [
        f"Session: {session.session_id}",
        f"Status: {session.overall_status.value}",
        f"Started: {_format_time(session.start_time)}",
        f"Tasks: {session.completed}/{session.total}",
    ]
    if session.end_time is not None:
        lines.append(f"Finished: {_format_time(session.end_time)}")
        lines.append(f"Duration: {session.end_time - session.start_time}s")
    if session.overall_status is SessionStatus.COMPLETED:
        lines.append(f"Success: {session.successful}/{session.total}")
    if session.error:
        lines.append(f"Error: {session.error}")
    lines.append("")
    lines.append("Tasks:")
    for task in session.tasks:
        line = (
            f"  {task_icon(task.status, task.success)} Task {task.task_num} "
            f"(ID: {task.transaction_id}): {task.status.value}"
        )
        if task.duration is not None:
            line += f" in {task.duration}s"
        lines.append(line)
    return lines


def render_results(session: Session, outputs: list[TaskOutput]) -> list[str]:
    lines = [f"Session: {session.session_id}", _RULE]
    for output in outputs:
        task = output.task
        lines.append("")
        lines.append(f"Task {task.task_num} (ID: {task.transaction_id}):")
        lines.append("-" * 30)
        if output.text is None:
            lines.append(RESULTS_PLACEHOLDER)
        else:
            lines.append(output.text.rstrip("\n"))
    return lines


def render_session_list(summaries: list[SessionSummary]) -> list[str]:
    if not summaries:
        return ["No sessions found."]
    lines = ["All Sessions:", "=" * 60]
    for summary in summaries:
        lines.append(
            f"{session_icon(summary.status)} {summary.session_id[:8]} [{summary.status.value}]"
            + ("" if summary.readable else " (unreadable snapshot)"),
        )
        started = _format_time(summary.start_time) if summary.start_time else "Unknown"
        lines.append(f"   Started: {started}")
        progress = f"   Progress: {summary.completed}/{summary.total} tasks"
        if summary.status is SessionStatus.COMPLETED:
            progress += f" ({summary.successful} successful)"
            if summary.duration_seconds is not None:
                progress += f" - Duration: {summary.duration_seconds}s"
        lines.append(progress)
        lines.append("")
    lines.append("Use `parallel-runner status SESSION_ID` to see details")
    lines.append("Use `parallel-runner results SESSION_ID` to see output")
    return lines


def render_overview(overview: SessionOverview) -> list[str]:
    if overview.total_sessions == 0:
        return ["No sessions found."]
    lines = [
        "📊 Session Overview",
        "=" * 40,
        f"Total Sessions: {overview.total_sessions}",
        f"  ⏳ Running: {overview.running_sessions}",
        f"  ✅ Completed: {overview.completed_sessions}",
        f"  ❌ Errors: {overview.error_sessions}",
        "",
        f"Total Tasks: {overview.total_tasks}",
        f"Successful Tasks: {overview.successful_tasks}",
    ]
    if overview.success_rate is not None:
        lines.append(f"Success Rate: {overview.success_rate:.1f}%")
    lines.append("")
    lines.append("Use `parallel-runner list` to see all sessions")
    return lines


def render_summary(
    results: list[ExecutionResult],
    *,
    duration_seconds: int,
    use_worktree: bool,
) -> list[str]:
    """Execution summary for blocking runs, with merge hints for worktree branches."""

    ordered = sorted(results, key=lambda result: result.sequence_number)
    successful = [result for result in ordered if result.success]
    lines = ["", "All tasks completed.", ""]
    for index, result in enumerate(ordered, start=1):
        branch_info = f" [BRANCH: {result.branch_name}]" if result.branch_name else ""
        lines.append(
            f"[{index}/{len(ordered)}] Task {result.sequence_number} (ID: {result.job_id}): "
            f"{'SUCCESS' if result.success else 'FAILED'}{branch_info}",
        )
    lines.extend(
        [
            "",
            _RULE,
            "EXECUTION SUMMARY",
            _RULE,
            f"Total tasks: {len(ordered)}",
            f"Successful: {len(successful)}",
            f"Failed: {len(ordered) - len(successful)}",
            f"Total time: {duration_seconds}s",
            f"Overall status: {'SUCCESS' if len(successful) == len(ordered) else 'FAILED'}",
            _RULE,
        ],
    )

    branches = [result.branch_name for result in successful if result.branch_name]
    if use_worktree and branches:
        lines.extend(["", "MERGE INSTRUCTIONS", _RULE, "Branches ready for merging:", ""])
        lines.extend(f"  • {branch}" for branch in branches)
        lines.extend(["", "To merge these branches, run:"])
        lines.extend(f"  git merge {branch}" for branch in branches)
        lines.extend(["", "Or merge all successful branches at once:"])
        lines.append(f"  git merge {' '.join(branches)}")
        lines.extend(["", "After merging, clean up the branches with:"])
        lines.extend(f"  git branch -d {branch}" for branch in branches)
        lines.extend(["", _RULE])
    return lines


def _format_time(epoch_seconds: int) -> str:
    return datetime.fromtimestamp(epoch_seconds).astimezone().isoformat(timespec="seconds")
