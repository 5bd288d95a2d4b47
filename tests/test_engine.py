from __future__ import annotations

import base64
import json

import pytest

from addon_engine import AddonEngine
from addon_errors import AddonManagerError, PathViolation
from addon_models import InstalledAddon, PipelineState, PipelineStep
from conftest import FakeDownloader, make_entry, write_addon
from manager_settings import ManagerSettings, addons_dir_for
from update_all import UpdateAllOrchestrator


def _engine(addons_dir, catalog, downloader, notices=None):
    return AddonEngine(
        addons_dir,
        catalog=catalog,
        downloader=downloader,
        notify=(lambda message, level: notices.append((message, level))) if notices is not None else None,
        sleep=lambda _: None,
    )


def test_update_all_updates_stale_addons_and_summarizes(addons_dir):
    write_addon(addons_dir, "Foo", version="1.0.0")
    write_addon(addons_dir, "Bar", version="1.0.0")
    write_addon(addons_dir, "Baz", version="1.0.0")
    catalog = [
        make_entry(1, "Foo", ["Foo"], version="1.2.0"),
        make_entry(2, "Bar", ["Bar"], version="1.0.0"),
        make_entry(3, "Baz", ["Baz"], version="2.0.0", download_url=""),
    ]
    downloader = FakeDownloader({"Foo/Foo.toc": "## Title: Foo\n## Version: 1.2.0\n"})
    notices = []
    engine = _engine(addons_dir, catalog, downloader, notices)
    engine.scan()
    progress = []

    summary = engine.update_all(on_progress=lambda *args: progress.append(args))

    assert summary.updated == ["Foo"]
    assert summary.skipped == ["Baz"]
    assert summary.failed == {}
    assert downloader.calls == [1]
    assert notices == [("Updated 1 addon(s), 1 skipped", "info")]
    assert progress == [("Baz", 1, 2), ("Foo", 2, 2)]
    assert not engine.installed["Foo"].needs_update
    assert engine.installed["Foo"].local_version == "1.2.0"


def test_update_all_reports_failures(addons_dir):
    write_addon(addons_dir, "Foo", version="1.0.0")
    catalog = [make_entry(1, "Foo", ["Foo"], version="1.2.0")]
    notices = []
    engine = _engine(addons_dir, catalog, FakeDownloader({"Other/x.lua": "", "Another/y.lua": ""}), notices)
    engine.scan()

    summary = engine.update_all()

    assert list(summary.failed) == ["Foo"]
    assert notices[-1] == ("Updated 0 addon(s), 1 failed", "warning")


def test_install_rescans_and_notifies(addons_dir):
    entry = make_entry(1, "Foo", ["Foo"], version="1.2.0")
    notices = []
    engine = _engine(addons_dir, [entry], FakeDownloader({"Foo/Foo.toc": "## Version: 1.2.0\n"}), notices)

    state = engine.install(entry)

    assert state.succeeded
    assert engine.installed["Foo"].id == 1
    assert notices == [('"Foo" installed successfully', "info")]


def test_install_needing_confirmation_is_silent(addons_dir):
    write_addon(addons_dir, "Foo")
    write_addon(addons_dir, "Bar")
    parent = make_entry(1, "Foo", ["Foo", "Bar"])
    catalog = [parent, make_entry(2, "Bar", ["Bar"])]
    notices = []
    engine = _engine(addons_dir, catalog, FakeDownloader(), notices)
    engine.scan()

    state = engine.install(parent)

    assert state.step is PipelineStep.NEEDS_CONFIRMATION
    assert notices == []


def test_resolve_conflict_binds_the_chosen_entry(addons_dir):
    write_addon(addons_dir, "Foo")
    first = make_entry(1, "Foo", ["Foo"])
    second = make_entry(2, "Foo Reloaded", ["Foo"])
    engine = _engine(addons_dir, [first, second], FakeDownloader())
    assert [c.id for c in engine.scan().conflicts] == ["Foo"]

    addon = engine.resolve_conflict("Foo", second)

    assert addon.id == 2
    assert engine.conflicts == []
    assert (addons_dir / "Foo" / "Foo.addoninfo").read_text(encoding="utf-8").startswith("ID: 2\n")


def test_resolve_conflict_rejects_unknown_choices(addons_dir):
    write_addon(addons_dir, "Foo")
    first = make_entry(1, "Foo", ["Foo"])
    second = make_entry(2, "Foo Reloaded", ["Foo"])
    engine = _engine(addons_dir, [first, second], FakeDownloader())
    engine.scan()

    with pytest.raises(AddonManagerError):
        engine.resolve_conflict("Foo", make_entry(3, "Other", ["Foo"]))
    with pytest.raises(AddonManagerError):
        engine.resolve_conflict("Bar", first)


def test_resolve_conflict_with_reinstall(addons_dir):
    write_addon(addons_dir, "Foo", version="0.5.0")
    first = make_entry(1, "Foo", ["Foo"], version="1.0.0")
    second = make_entry(2, "Foo Reloaded", ["Foo"], version="3.0.0")
    downloader = FakeDownloader({"Foo/Foo.toc": "## Title: Foo Reloaded\n## Version: 3.0.0\n"})
    engine = _engine(addons_dir, [first, second], downloader)
    engine.scan()

    addon = engine.resolve_conflict("Foo", second, reinstall=True)

    assert downloader.calls == [2]
    assert addon.id == 2
    assert addon.local_version == "3.0.0"


def test_delete_rescans(addons_dir):
    write_addon(addons_dir, "Foo")
    engine = _engine(addons_dir, [make_entry(1, "Foo", ["Foo"])], FakeDownloader())
    engine.scan()

    report = engine.delete(engine.installed["Foo"])

    assert report.deleted == ["Foo"]
    assert engine.installed == {}


def test_export_and_import_codes(addons_dir):
    write_addon(addons_dir, "Foo")
    write_addon(addons_dir, "Bar")
    catalog = [make_entry(1, "Foo", ["Foo"]), make_entry(2, "Bar", ["Bar"]), make_entry(3, "Baz", ["Baz"])]
    engine = _engine(addons_dir, catalog, FakeDownloader({"Baz/Baz.toc": "## Title: Baz\n"}))
    engine.scan()

    code = engine.export_code()
    assert AddonEngine.decode_code(code) == [1, 2]

    summary = engine.import_code(base64.b64encode(json.dumps([3, 99]).encode()).decode())

    assert summary.updated == ["Baz"]
    assert summary.skipped == ["99"]
    assert engine.installed["Baz"].id == 3


@pytest.mark.parametrize("code", ["not base64!!", "", "eyJhIjogMX0="])
def test_invalid_import_code(code):
    with pytest.raises(AddonManagerError):
        AddonEngine.decode_code(code)


def test_switch_variation(addons_dir):
    write_addon(addons_dir, "Foo")
    root = make_entry(10, "Foo", ["Foo"], variant_ids=(11,))
    classic = make_entry(11, "Foo Classic", ["FooClassic"], variation_of=10)
    notices = []
    engine = _engine(addons_dir, [root, classic], FakeDownloader({"FooClassic/FooClassic.toc": "## Title: Foo Classic\n"}), notices)
    engine.scan()

    state = engine.switch_variation(engine.installed["Foo"], classic)

    assert state.succeeded
    assert set(engine.installed) == {"FooClassic"}
    assert notices == [("Switched to variation: Foo Classic", "info")]

    with pytest.raises(AddonManagerError):
        engine.switch_variation(engine.installed["FooClassic"], make_entry(20, "Other", ["Other"]))


def test_settings_round_trip(tmp_path, monkeypatch):
    settings = ManagerSettings(tmp_path / "config")
    assert settings.get_setting("expansion") == "wotlk"
    assert settings.set_setting("expansion", "tbc")

    reloaded = ManagerSettings(tmp_path / "config")
    assert reloaded.get_setting("expansion") == "tbc"
    assert reloaded.get_all_settings()["log_level"] == "INFO"

    monkeypatch.setenv("GITHUB_TOKEN", "from-env")
    assert reloaded.github_token() == "from-env"
    reloaded.set_setting("github_token", "from-settings")
    assert reloaded.github_token() == "from-settings"


def test_corrupt_settings_fall_back_to_defaults(tmp_path):
    (tmp_path / "addon-manager.json").write_text("{not json", encoding="utf-8")
    settings = ManagerSettings(tmp_path)
    assert settings.get_setting("game_path") == ""
    assert settings.get_all_settings()["expansion"] == "wotlk"


def test_addons_dir_for_strips_the_executable(tmp_path):
    game = tmp_path / "Game"
    expected = (game / "Interface" / "AddOns").resolve()
    assert addons_dir_for(game / "Wow.exe") == expected
    assert addons_dir_for(game) == expected


def test_addons_dir_for_rejects_a_link_out_of_the_game(tmp_path):
    game = tmp_path / "Game"
    game.mkdir()
    elsewhere = tmp_path / "Elsewhere"
    elsewhere.mkdir()
    try:
        (game / "Interface").symlink_to(elsewhere, target_is_directory=True)
    except OSError:
        pytest.skip("symlinks not available")
    with pytest.raises(PathViolation):
        addons_dir_for(game)


def test_engine_from_settings_requires_configuration(tmp_path):
    settings = ManagerSettings(tmp_path)
    with pytest.raises(AddonManagerError):
        AddonEngine.from_settings(settings)
    settings.set_setting("game_path", str(tmp_path / "Game"))
    with pytest.raises(AddonManagerError):
        AddonEngine.from_settings(settings)


def test_update_all_reinstalls_a_multi_main_addon_once():
    entry = make_entry(1, "Foo", ["Foo", "Bar"], mains=("Foo", "Bar"), version="2.0.0")
    installed = {
        folder: InstalledAddon(entry=entry, folder=folder, local_version="1.0.0", needs_update=True)
        for folder in ("Bar", "Foo")
    }
    calls = []

    def install(e):
        calls.append(e.id)
        return PipelineState(addon_id=e.id).advance(PipelineStep.DONE)

    summary = UpdateAllOrchestrator(install).run(installed)

    assert calls == [1]
    assert summary.updated == ["Foo"]
