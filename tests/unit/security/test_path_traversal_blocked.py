from __future__ import annotations

from pathlib import Path

import pytest

from mdbrowse.security import AccessDeniedError, resolve_document_path


@pytest.mark.parametrize(
    "candidate",
    [
        "../secret.md",
        "docs/../../secret.md",
        "..\\secret.md",
        "a/b/../../../x.md",
    ],
)
def test_parent_traversal_is_blocked(tmp_path: Path, candidate: str) -> None:
    with pytest.raises(AccessDeniedError) as error:
        resolve_document_path(tmp_path, candidate)

    assert error.value.reason == "Path is outside the document root."


def test_traversal_that_stays_inside_root_is_allowed(tmp_path: Path) -> None:
    (tmp_path / "docs").mkdir()

    resolved = resolve_document_path(tmp_path, "docs/../docs/readme.md")

    assert resolved == tmp_path.resolve() / "docs" / "readme.md"


def test_empty_and_slash_candidates_resolve_to_root(tmp_path: Path) -> None:
    assert resolve_document_path(tmp_path, "") == tmp_path.resolve()
    assert resolve_document_path(tmp_path, "/") == tmp_path.resolve()


def test_nul_byte_is_refused(tmp_path: Path) -> None:
    with pytest.raises(AccessDeniedError) as error:
        resolve_document_path(tmp_path, "a\x00.md")

    assert error.value.reason == "Path contains a NUL byte."
