"""CLI entrypoint for the project board."""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from .config import LOG_LEVELS, get_settings
from .errors import AuthError, BoardError
from .models import Project, ProjectStatus, User
from .service import BoardService

InputFn = Callable[[str], str]
PrintFn = Callable[[str], None]
MENU_QUIT_COMMANDS = {"q"}
MENU_BACK_COMMANDS = {"b"}
STATUS_LABELS = {
    ProjectStatus.LOCKED: "locked",
    ProjectStatus.UNLOCKED: "open",
    ProjectStatus.IN_PROGRESS: "in progress",
    ProjectStatus.COMPLETED: "done",
}


class QuitApp(Exception):
    """Signal immediate app exit from nested menu flows."""


def _service(db_path: Path | None = None) -> BoardService:
    """Create app service with the configured database path."""
    return BoardService(db_path=db_path)


async def _ask(input_fn: InputFn, prompt: str) -> str:
    """Read one line without blocking pending background writes."""
    return (await asyncio.to_thread(input_fn, prompt)).strip()


def run(argv: list[str] | None = None) -> int:
    """Run the CLI application."""
    parser = argparse.ArgumentParser(prog="projectboard", description="PM to Full Stack Builder project board")
    parser.add_argument("command", nargs="?", default="play", choices=["play"])
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path")
    parser.add_argument("--log-level", choices=LOG_LEVELS, default=None, help="Logging level")
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"Invalid configuration: {exc}")
        return 2
    logging.basicConfig(
        level=args.log_level or settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(play_shell(service=_service(args.db)))


async def play_shell(
    input_fn: InputFn = input,
    print_fn: PrintFn = print,
    *,
    service: BoardService | None = None,
) -> int:
    """Run persistent menu-driven shell."""
    service = service or _service()
    service.start()
    warnings: list[BoardError] = []
    service.engine.add_error_listener(warnings.append)
    try:
        while True:
            user = await _auth_flow(service, input_fn, print_fn)
            if user is None:
                return 0
            await service.engine.wait_until_loaded()
            signed_out = await _main_menu(service, input_fn, print_fn, warnings)
            if not signed_out:
                return 0
    except QuitApp:
        return 0
    finally:
        await service.close()


async def _auth_flow(service: BoardService, input_fn: InputFn, print_fn: PrintFn) -> User | None:
    """Log in or sign up; return the signed-in user or None to quit."""
    while True:
        print_fn("\n=== PM to Full Stack Builder ===")
        print_fn("1) Log in")
        print_fn("2) Sign up")
        print_fn("q) Quit")
        choice = (await _ask(input_fn, "Choose: ")).lower()
        if choice in MENU_QUIT_COMMANDS:
            return None
        try:
            if choice == "1":
                email = await _ask(input_fn, "Email: ")
                password = await _ask(input_fn, "Password: ")
                return await service.auth.sign_in(email, password)
            if choice == "2":
                name = await _ask(input_fn, "Name: ")
                email = await _ask(input_fn, "Email: ")
                password = await _ask(input_fn, "Password (at least 6 characters): ")
                return await service.auth.sign_up(name, email, password)
        except AuthError as exc:
            print_fn(str(exc))
            continue
        print_fn("Invalid choice.")


async def _main_menu(
    service: BoardService,
    input_fn: InputFn,
    print_fn: PrintFn,
    warnings: list[BoardError],
) -> bool:
    """Run the signed-in menu; return True on sign-out, False on quit."""
    user = service.auth.current_user
    while True:
        _print_warnings(warnings, print_fn)
        print_fn("\n=== Board ===")
        if user is not None:
            print_fn(f"Signed in as {user.name}")
        next_project = service.engine.next_unlocked_project
        if next_project is not None:
            print_fn(f"Next step: {next_project.step_index}. {next_project.title}")
        else:
            print_fn("Journey complete. You're a Full Stack Builder!")
        print_fn("1) View board")
        print_fn("2) Open project")
        print_fn("3) Dashboard")
        print_fn("4) Search projects")
        print_fn("o) Sign out")
        print_fn("q) Quit")
        choice = (await _ask(input_fn, "Choose: ")).lower()

        if choice == "1":
            _board_flow(service, print_fn)
        elif choice == "2":
            await _open_project_flow(service, input_fn, print_fn)
        elif choice == "3":
            _dashboard_flow(service, print_fn)
        elif choice == "4":
            await _search_flow(service, input_fn, print_fn)
        elif choice == "o":
            await service.auth.sign_out()
            print_fn("Signed out.")
            return True
        elif choice in MENU_QUIT_COMMANDS:
            return False
        else:
            print_fn("Invalid choice.")


def _print_warnings(warnings: list[BoardError], print_fn: PrintFn) -> None:
    """Surface background load/write failures once."""
    for warning in warnings:
        print_fn(f"Warning: {warning}")
    warnings.clear()


def _board_flow(service: BoardService, print_fn: PrintFn) -> None:
    """Print every project with its resolved status."""
    engine = service.engine
    print_fn("\n=== Projects ===")
    rows = [
        (str(project.step_index), project.level.value, STATUS_LABELS[engine.get_status(project.id)], project.title)
        for project in service.catalog
    ]
    step_width = max(len("Step"), max(len(row[0]) for row in rows))
    level_width = max(len("Level"), max(len(row[1]) for row in rows))
    status_width = max(len("Status"), max(len(row[2]) for row in rows))
    header = f"{'Step':>{step_width}} {'Level':<{level_width}} {'Status':<{status_width}} Title"
    print_fn(header)
    print_fn("-" * len(header))
    for row in rows:
        print_fn(f"{row[0]:>{step_width}} {row[1]:<{level_width}} {row[2]:<{status_width}} {row[3]}")


async def _open_project_flow(service: BoardService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Pick a project by step number and open it."""
    _board_flow(service, print_fn)
    choice = (await _ask(input_fn, "Step number (b to go back): ")).lower()
    if choice in MENU_BACK_COMMANDS:
        return
    if choice in MENU_QUIT_COMMANDS:
        raise QuitApp()
    if not choice.isdigit():
        print_fn("Invalid choice.")
        return
    project = next((item for item in service.catalog if item.step_index == int(choice)), None)
    if project is None:
        print_fn("Project not found.")
        return
    await _project_flow(service, project, input_fn, print_fn)


def _print_project(service: BoardService, project: Project, print_fn: PrintFn) -> None:
    """Print project details together with the user's notes and artifacts."""
    engine = service.engine
    status = engine.get_status(project.id)
    print_fn(f"\n=== Step {project.step_index}: {project.title} ===")
    print_fn(f"Level: {project.level.value}")
    print_fn(f"Status: {STATUS_LABELS[status]}")
    print_fn(f"Problem: {project.problem}")
    print_fn(f"Task: {project.task}")
    print_fn(f"Tools: {', '.join(project.tools) if project.tools else 'none'}")
    print_fn(f"Skills: {', '.join(project.skills) if project.skills else 'none'}")
    if project.deliverables:
        print_fn("Deliverables:")
        for item in project.deliverables:
            print_fn(f"- {item}")
    if project.try_steps:
        print_fn("Try it:")
        for idx, item in enumerate(project.try_steps, start=1):
            print_fn(f"{idx}. {item}")
    if project.resources:
        print_fn("Resources:")
        for resource in project.resources:
            print_fn(f"- {resource.label}: {resource.url}")

    entry = engine.progress.get(project.id)
    if entry is None:
        return
    if entry.started_at:
        print_fn(f"Started: {_format_local(entry.started_at)}")
    if entry.completed_at:
        print_fn(f"Completed: {_format_local(entry.completed_at)}")
    print_fn(f"Notes: {entry.notes}" if entry.notes else "Notes: (none)")
    if entry.artifacts:
        print_fn("Artifacts:")
        for idx, url in enumerate(entry.artifacts, start=1):
            print_fn(f"{idx}) {url}")
    else:
        print_fn("No artifacts yet.")


async def _project_flow(service: BoardService, project: Project, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Show one project and apply the user's actions to it."""
    engine = service.engine
    while True:
        _print_project(service, project, print_fn)
        status = engine.get_status(project.id)
        if status is ProjectStatus.LOCKED:
            print_fn(f"Locked: complete step {project.step_index - 1} to unlock this project.")
            return

        if status is ProjectStatus.UNLOCKED:
            print_fn("s) Start project")
        elif status is ProjectStatus.IN_PROGRESS:
            print_fn("c) Mark completed")
        print_fn("n) Edit notes")
        print_fn("a) Add artifact link")
        print_fn("r) Remove artifact link")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = (await _ask(input_fn, "Choose: ")).lower()

        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if choice == "s" and status is ProjectStatus.UNLOCKED:
            engine.start_project(project.id)
            print_fn("Project started.")
        elif choice == "c" and status is ProjectStatus.IN_PROGRESS:
            engine.complete_project(project.id)
            print_fn("Project completed.")
        elif choice == "n":
            notes = await _ask(input_fn, "Notes: ")
            engine.save_notes(project.id, notes)
            print_fn("Notes saved.")
        elif choice == "a":
            url = await _ask(input_fn, "Link (e.g. GitHub repo): ")
            if engine.add_artifact(project.id, url) is None:
                print_fn("Link is required.")
            else:
                print_fn("Artifact added.")
        elif choice == "r":
            position = await _ask(input_fn, "Artifact number: ")
            if not position.isdigit() or engine.remove_artifact(project.id, int(position) - 1) is None:
                print_fn("Invalid artifact number.")
            else:
                print_fn("Artifact removed.")
        else:
            print_fn("Invalid choice.")


def _dashboard_flow(service: BoardService, print_fn: PrintFn) -> None:
    """Print stats, coverage and recent activity."""
    engine = service.engine
    print_fn("\n=== Dashboard ===")
    print_fn(f"Projects completed: {engine.completed_count}")
    print_fn(f"Tools used: {len(engine.unique_tools)}")
    print_fn(f"Skills improved: {len(engine.unique_skills)}")
    print_fn(
        f"Board progress: {engine.completion_percent}% "
        f"({engine.completed_count} of {len(service.catalog)} projects completed)"
    )

    coverage = sorted(engine.skill_coverage(), key=lambda item: item.percent, reverse=True)[:10]
    if coverage:
        print_fn("\nSkills coverage:")
        skill_width = max(len(item.skill) for item in coverage)
        for item in coverage:
            print_fn(f"{item.skill:<{skill_width}} {item.done}/{item.total} {item.percent:>3}%")

    usage = engine.tool_usage()
    if usage:
        print_fn("\nTools used:")
        for tool in usage:
            print_fn(f"- {tool.tool}: {tool.count}")

    completed = engine.completed_projects()
    if completed:
        print_fn("\nCompleted projects:")
        progress = engine.progress
        for project in completed:
            when = _format_local(progress[project.id].completed_at or "")
            print_fn(f"- Step {project.step_index}: {project.title} ({when})")

    print_fn("\nRecent activity:")
    events = engine.recent_activity(20)
    if not events:
        print_fn("No activity yet.")
        return
    for event in events:
        project = engine.get_project(event.project_id)
        title = project.title if project is not None else event.project_id
        print_fn(f"{_format_local(event.timestamp)} {event.kind.value:<9} {title}")


async def _search_flow(service: BoardService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Search the catalog by title, skill or tool."""
    query = await _ask(input_fn, "Search projects: ")
    results = service.search(query)
    if not results:
        print_fn("No projects found.")
        return
    for project in results:
        status = STATUS_LABELS[service.engine.get_status(project.id)]
        print_fn(f"{project.step_index}. {project.title} [{status}]")


def _format_local(timestamp: str) -> str:
    """Convert ISO timestamp to local human-readable datetime."""
    try:
        dt = datetime.fromisoformat(timestamp)
    except ValueError:
        return timestamp
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
