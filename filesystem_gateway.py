"""
Filesystem Gateway
The only code that touches the AddOns directory on disk
"""

import logging
import os
import shutil
import stat
import subprocess
import zipfile
from pathlib import Path

from addon_errors import FilesystemFailure, PathViolation

log = logging.getLogger(__name__)


class FilesystemGateway:
    def __init__(self, root):
        """Initialize the gateway for one installation root.

        Args:
            root: str/Path - AddOns directory every mutation must stay inside
        """
        self.root = Path(root).resolve()

    def _run_command(self, cmd, **kwargs):
        """Run a subprocess command while avoiding a new console window on Windows."""
        if os.name == 'nt':
            kwargs.setdefault('creationflags', subprocess.CREATE_NO_WINDOW)
        return subprocess.run(cmd, **kwargs)

    def _handle_remove_readonly(self, func, path, exc):
        """Clear the read-only bit and retry; used as the rmtree error hook."""
        os.chmod(path, stat.S_IWRITE)
        func(path)

    def resolve(self, path):
        """Resolve a path given relative to the root or absolute."""
        path = Path(path)
        if not path.is_absolute():
            path = self.root / path
        return path.resolve()

    def is_inside(self, path, allow_root=False):
        resolved = self.resolve(path)
        if resolved == self.root:
            return allow_root
        return resolved.is_relative_to(self.root)

    def ensure_inside(self, path, allow_root=False):
        """Validate that a path stays inside the root.

        Args:
            path: str/Path - Path relative to the root or absolute
            allow_root: bool - Accept the root directory itself

        Returns:
            Path - The resolved path

        Raises:
            PathViolation - If the path resolves outside the root
        """
        resolved = self.resolve(path)
        if not self.is_inside(resolved, allow_root=allow_root):
            raise PathViolation(resolved, self.root)
        return resolved

    def list_dir(self, path=None):
        """List the sub-directory names of a directory, sorted."""
        target = self.resolve(path) if path is not None else self.root
        return sorted(entry.name for entry in target.iterdir() if entry.is_dir())

    def list_entries(self, path=None):
        """List every entry name (files and directories), sorted."""
        target = self.resolve(path) if path is not None else self.root
        return sorted(entry.name for entry in target.iterdir())

    def exists(self, path):
        return self.resolve(path).exists()

    def is_dir(self, path):
        return self.resolve(path).is_dir()

    def read_file(self, path):
        return self.resolve(path).read_text(encoding='utf-8', errors='replace')

    def write_file(self, path, content):
        """Create a file; an existing file is left untouched.

        Returns:
            bool - True if the file was written
        """
        target = self.ensure_inside(path)
        if target.exists():
            return False
        self._write(target, content)
        return True

    def overwrite(self, path, content):
        target = self.ensure_inside(path)
        self._write(target, content)

    def _write(self, target, content):
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding='utf-8')
        except OSError as e:
            raise FilesystemFailure(f"Could not write {target}: {e}", target) from e

    def delete_file(self, path):
        target = self.ensure_inside(path)
        try:
            if target.is_dir():
                self.delete_folder_recursive(target)
            elif target.exists():
                target.unlink()
        except OSError as e:
            raise FilesystemFailure(f"Could not delete {target}: {e}", target) from e

    def delete_folder_recursive(self, path):
        """Remove a directory tree, handling read-only and locked files.

        Raises:
            PathViolation - If the folder is the root or outside of it
            FilesystemFailure - If the folder could not be removed
        """
        target = self.ensure_inside(path)
        if not target.exists():
            return
        try:
            shutil.rmtree(target)
            return
        except OSError:
            log.debug("Plain rmtree failed for %s, retrying with read-only handler", target)
        try:
            shutil.rmtree(target, onexc=self._handle_remove_readonly)
        except OSError as e:
            if os.name != 'nt':
                raise FilesystemFailure(f"Could not delete {target}: {e}", target) from e
            # Last resort: Windows rmdir
            self._run_command(
                ['cmd', '/c', 'rmdir', '/S', '/Q', str(target)],
                capture_output=True
            )
            if target.exists():
                raise FilesystemFailure(f"Could not delete {target}: {e}", target) from e

    def extract_archive(self, archive_path, dest_dir=None):
        """Extract a zip archive, rejecting members that escape the destination.

        Args:
            archive_path: str/Path - Zip file (may live outside the root)
            dest_dir: Optional str/Path - Destination, defaults to the root

        Raises:
            PathViolation - If any member would land outside the root
            FilesystemFailure - If the archive is unreadable
        """
        dest = self.ensure_inside(dest_dir if dest_dir is not None else self.root, allow_root=True)
        try:
            with zipfile.ZipFile(archive_path, 'r') as zip_ref:
                for member in zip_ref.namelist():
                    self.ensure_inside(dest / member, allow_root=True)
                zip_ref.extractall(dest)
        except (zipfile.BadZipFile, OSError) as e:
            raise FilesystemFailure(f"Could not extract {archive_path}: {e}", archive_path) from e

    def copy_recursive(self, source, destination):
        src = self.ensure_inside(source)
        dst = self.ensure_inside(destination)
        try:
            shutil.copytree(src, dst, dirs_exist_ok=True)
        except (shutil.Error, OSError) as e:
            raise FilesystemFailure(f"Could not copy {src} to {dst}: {e}", src) from e

    def move_children(self, source, destination):
        """Move every entry of source into destination, replacing clashes.

        The emptied source directory is removed afterwards.

        Returns:
            list - Names of the moved entries
        """
        src = self.ensure_inside(source)
        dst = self.ensure_inside(destination, allow_root=True)
        if src.parent == dst:
            # A child may carry the source's own name; park the source first
            parked = dst / f".{src.name}.flatten"
            try:
                src.rename(parked)
            except OSError as e:
                raise FilesystemFailure(f"Could not rename {src}: {e}", src) from e
            src = parked
        moved = []
        for child in sorted(src.iterdir()):
            target = self.ensure_inside(dst / child.name)
            if target.exists():
                if target.is_dir() and child.is_dir():
                    self.copy_recursive(child, target)
                    self.delete_folder_recursive(child)
                    moved.append(child.name)
                    continue
                self.delete_file(target)
            try:
                shutil.move(str(child), str(target))
            except (shutil.Error, OSError) as e:
                raise FilesystemFailure(f"Could not move {child} to {target}: {e}", child) from e
            moved.append(child.name)
        self.delete_folder_recursive(src)
        return moved
