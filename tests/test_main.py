from collections.abc import Callable, Iterator
from pathlib import Path

import projectboard.main as main
from projectboard.config import Settings, get_settings
from projectboard.service import BoardService

from conftest import make_project


def _service() -> BoardService:
    return BoardService(":memory:", settings=Settings(write_retry_backoff_seconds=0))


def _scripted(answers: list[str]) -> Callable[[str], str]:
    remaining: Iterator[str] = iter(answers)
    return lambda _prompt: next(remaining)


async def _play(answers: list[str]) -> tuple[int, str]:
    output: list[str] = []
    code = await main.play_shell(_scripted(answers), output.append, service=_service())
    return code, "\n".join(output)


async def test_quit_from_auth_menu() -> None:
    code, output = await _play(["q"])
    assert code == 0
    assert "1) Log in" in output


async def test_full_journey_through_first_project() -> None:
    code, output = await _play(
        [
            "2", "Ann", "ann@example.com", "secret1",
            "2", "1", "s", "a", "https://github.com/ann/brief", "c", "b",
            "3",
            "4", "figma",
            "o",
            "1", "ann@example.com", "secret1",
            "q",
        ]
    )

    assert code == 0
    assert output.count("Signed in as Ann") >= 2
    assert "Next step: 1. Write a Problem Brief" in output
    assert "Project started." in output
    assert "Artifact added." in output
    assert "1) https://github.com/ann/brief" in output
    assert "Project completed." in output
    assert "Projects completed: 1" in output
    assert "Board progress: 8% (1 of 12 projects completed)" in output
    assert "3. Sketch Low-Fidelity Wireframes [locked]" in output
    assert "Signed out." in output
    assert output.rstrip().endswith("q) Quit")
    assert output.split("Signed out.")[1].count("Next step: 2. Turn the Brief into User Stories") == 1


async def test_locked_project_cannot_be_opened() -> None:
    code, output = await _play(["2", "Ann", "ann@example.com", "secret1", "2", "5", "q"])
    assert code == 0
    assert "Locked: complete step 4 to unlock this project." in output


async def test_auth_errors_are_shown_inline() -> None:
    code, output = await _play(["1", "ann@example.com", "secret1", "2", "Ann", "ann@example.com", "123", "q"])
    assert code == 0
    assert "Invalid login credentials" in output
    assert "Password must be at least 6 characters" in output


async def test_notes_and_artifact_removal() -> None:
    code, output = await _play(
        [
            "2", "Ann", "ann@example.com", "secret1",
            "2", "1", "n", "kickoff notes", "a", "   ", "a", "https://example.com/doc",
            "r", "9", "r", "1", "q",
        ]
    )
    assert code == 0
    assert "Notes saved." in output
    assert "Notes: kickoff notes" in output
    assert "Link is required." in output
    assert "Invalid artifact number." in output
    assert "Artifact removed." in output


async def test_dashboard_lists_best_covered_skills_first() -> None:
    catalog = (
        make_project("p1", 1, skills=("Research", "Design")),
        make_project("p2", 2, skills=("Research",)),
    )
    service = BoardService(":memory:", settings=Settings(write_retry_backoff_seconds=0), catalog=catalog)
    output: list[str] = []
    answers = ["2", "Ann", "ann@example.com", "secret1", "2", "1", "s", "c", "b", "3", "q"]

    code = await main.play_shell(_scripted(answers), output.append, service=service)

    assert code == 0
    section = output[output.index("\nSkills coverage:") + 1 :]
    assert section[0].split() == ["Design", "1/1", "100%"]
    assert section[1].split() == ["Research", "1/2", "50%"]


async def test_dashboard_without_activity() -> None:
    code, output = await _play(["2", "Ann", "ann@example.com", "secret1", "3", "4", "kubernetes", "q"])
    assert code == 0
    assert "Board progress: 0% (0 of 12 projects completed)" in output
    assert "No activity yet." in output
    assert "No projects found." in output


def test_run_passes_db_path_to_service(monkeypatch) -> None:
    seen: dict[str, object] = {}

    async def fake_play_shell(*, service: BoardService) -> int:
        seen["db_path"] = service.db_path
        return 0

    monkeypatch.setattr(main, "play_shell", fake_play_shell)
    monkeypatch.setattr(main, "_service", lambda db_path=None: BoardService(db_path, settings=Settings()))

    assert main.run(["play", "--db", "custom.db", "--log-level", "ERROR"]) == 0
    assert seen["db_path"] == Path("custom.db")


def test_run_reports_invalid_configuration(monkeypatch, capsys) -> None:
    monkeypatch.setenv("PROJECTBOARD_LOG_LEVEL", "chatty")
    get_settings.cache_clear()
    try:
        assert main.run([]) == 2
    finally:
        get_settings.cache_clear()
    assert "Invalid configuration" in capsys.readouterr().out
