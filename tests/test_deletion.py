from __future__ import annotations

import random
from pathlib import Path

import pytest

from addon_errors import FilesystemFailure, PathViolation
from addon_models import InstalledAddon
from conftest import make_entry, write_addon
from deletion import DeletionOrchestrator, delete_folder_with_retry, plan_deletion
from directory_scanner import DirectoryScanner


class FlakyGateway:
    """Gateway whose deletes fail a fixed number of times."""

    def __init__(self, failures):
        self.failures = failures
        self.present = True
        self.attempts = 0

    def ensure_inside(self, path, allow_root=False):
        return Path("/addons") / path

    def delete_folder_recursive(self, path):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise FilesystemFailure("locked", path)
        self.present = False

    def exists(self, path):
        return self.present


def test_delete_retries_with_backoff():
    gateway = FlakyGateway(failures=2)
    sleeps = []

    delete_folder_with_retry(gateway, "Foo", sleep=sleeps.append)

    assert gateway.attempts == 3
    assert sleeps == pytest.approx([0.2, 0.4])


def test_delete_gives_up_after_three_attempts():
    gateway = FlakyGateway(failures=10)
    sleeps = []

    with pytest.raises(FilesystemFailure):
        delete_folder_with_retry(gateway, "Foo", sleep=sleeps.append)

    assert gateway.attempts == 3
    assert len(sleeps) == 2


def test_delete_never_retries_a_path_violation(gateway):
    sleeps = []
    with pytest.raises(PathViolation):
        delete_folder_with_retry(gateway, "../../outside", sleep=sleeps.append)
    assert sleeps == []


def test_deleting_parent_keeps_the_kept_child(gateway, addons_dir):
    write_addon(addons_dir, "Foo")
    write_addon(addons_dir, "Bar")
    parent = make_entry(1, "Foo", ["Foo", "Bar"])
    child = make_entry(2, "Bar", ["Bar"])
    installed = DirectoryScanner(gateway).scan([parent, child]).installed

    report = DeletionOrchestrator(gateway, sleep=lambda _: None).delete(installed["Foo"], installed, keep_ids=[2])

    assert report.deleted == ["Foo"]
    assert report.protected == ["Bar"]
    assert report.success
    assert not (addons_dir / "Foo").exists()
    assert (addons_dir / "Bar").is_dir()


def test_deleting_parent_removes_unkept_children(gateway, addons_dir):
    write_addon(addons_dir, "Foo")
    write_addon(addons_dir, "Bar")
    parent = make_entry(1, "Foo", ["Foo", "Bar"])
    child = make_entry(2, "Bar", ["Bar"])
    installed = DirectoryScanner(gateway).scan([parent, child]).installed

    report = DeletionOrchestrator(gateway, sleep=lambda _: None).delete(installed["Foo"], installed)

    assert sorted(report.deleted) == ["Bar", "Foo"]
    assert list(addons_dir.iterdir()) == []


def test_deletion_matches_folders_by_manifest_title(gateway, addons_dir):
    write_addon(addons_dir, "Questie")
    write_addon(addons_dir, "Questie-Extras", title="Questie-Classic v9.1")
    write_addon(addons_dir, "Unrelated")
    entry = make_entry(1, "Questie", ["Questie"])
    installed = DirectoryScanner(gateway).scan([entry]).installed

    report = DeletionOrchestrator(gateway, sleep=lambda _: None).delete(installed["Questie"], installed)

    assert sorted(report.deleted) == ["Questie", "Questie-Extras"]
    assert (addons_dir / "Unrelated").is_dir()


@pytest.mark.parametrize("seed", range(25))
def test_planned_deletions_never_touch_survivor_folders(seed):
    rng = random.Random(seed)
    pool = [f"F{i}" for i in range(12)]
    installed = {}
    for addon_id in range(1, 8):
        folders = rng.sample(pool, rng.randint(1, 4))
        entry = make_entry(addon_id, f"Addon{addon_id}", folders)
        installed[entry.main_folder + f"#{addon_id}"] = InstalledAddon(entry=entry, folder=entry.main_folder)

    deletion_ids = set(rng.sample(range(1, 8), rng.randint(1, 4)))
    candidates = {
        name
        for addon in installed.values() if addon.id in deletion_ids
        for name in addon.entry.folder_names
    }

    to_delete, protected = plan_deletion(candidates, installed, deletion_ids)

    survivors = {
        name
        for addon in installed.values() if addon.id not in deletion_ids
        for name in addon.entry.folder_names
    }
    assert not set(to_delete) & survivors
    assert set(to_delete) | set(protected) == candidates
