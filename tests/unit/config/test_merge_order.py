from __future__ import annotations

from pathlib import Path

from mdbrowse.config import CliOverrides, default_root, load_effective_config


def test_merge_order_defaults_then_root_file_then_cli(tmp_path: Path) -> None:
    (tmp_path / "mdbrowse.toml").write_text(
        "\n".join(
            [
                "[limits]",
                "max_file_bytes = 4096",
                "",
                "[search]",
                "result_cap = 25",
                "snippet_radius = 40",
                "",
                "[watch]",
                "stability_window_seconds = 0.5",
            ]
        ),
        encoding="utf-8",
    )
    overrides = CliOverrides(result_cap=10, watch_enabled=False)

    config = load_effective_config(tmp_path, overrides=overrides)

    assert config.limits.max_file_bytes == 4096
    assert config.search.result_cap == 10
    assert config.search.snippet_radius == 40
    assert config.search.read_fanout == 8
    assert config.watch.enabled is False
    assert config.watch.stability_window_seconds == 0.5


def test_defaults_without_config_file(tmp_path: Path) -> None:
    config = load_effective_config(tmp_path)

    assert config.root_dir == tmp_path.resolve()
    assert config.data_dir == tmp_path.resolve() / ".mdbrowse"
    assert config.index.document_extensions == (".md",)
    assert "node_modules" in config.index.excluded_dir_names
    assert config.search.result_cap == 200
    assert config.search.snippet_radius == 80
    assert config.watch.stability_window_seconds == 0.2


def test_extensions_are_normalized(tmp_path: Path) -> None:
    (tmp_path / "mdbrowse.toml").write_text(
        '[index]\ndocument_extensions = ["MD", ".markdown", "md"]\n', encoding="utf-8"
    )

    config = load_effective_config(tmp_path)

    assert config.index.document_extensions == (".md", ".markdown")


def test_data_dir_override_has_highest_precedence(tmp_path: Path) -> None:
    custom_data_dir = tmp_path / ".custom_data"

    config = load_effective_config(tmp_path, overrides=CliOverrides(data_dir=custom_data_dir))

    assert config.data_dir == custom_data_dir.resolve()
    assert config.to_public_dict()["data_dir"] == str(custom_data_dir.resolve())


def test_root_falls_back_from_env_var_to_home() -> None:
    assert default_root({"MDVIEWER_DIR": "/srv/docs", "HOME": "/home/u"}) == Path("/srv/docs")
    assert default_root({"MDVIEWER_DIR": "", "HOME": "/home/u"}) == Path("/home/u")
    assert default_root({"HOME": "/home/u"}) == Path("/home/u")
