"""
Folder Structure Detector
Detects how an extracted addon archive is laid out inside the AddOns directory
"""

SCAFFOLDING_NAMES = (
    'README.md',
    'readme.md',
    'README.MD',
    'LICENSE',
    'LICENSE.md',
    '.gitignore',
    '.gitattributes',
    '.github',
)


class FolderStructureDetector:
    def __init__(self, gateway):
        """Initialize folder structure detector.

        Args:
            gateway: FilesystemGateway - Gateway rooted at the AddOns directory
        """
        self.gateway = gateway

    def new_top_level_entries(self, before, after):
        """Names present after extraction that were not there before.

        Args:
            before: iterable - Directory listing before extraction
            after: iterable - Directory listing after extraction

        Returns:
            list - Sorted new names
        """
        before = set(before)
        return sorted(name for name in after if name not in before)

    def declared_subfolders(self, folder, declared_names):
        """Catalog-declared folder names found directly inside a folder."""
        if not self.gateway.is_dir(folder):
            return []
        declared = set(declared_names)
        return [name for name in self.gateway.list_dir(folder) if name in declared]

    def has_multiple_declared_subfolders(self, folder, declared_names):
        return len(self.declared_subfolders(folder, declared_names)) >= 2

    def is_self_nested(self, folder):
        """True if a folder's only sub-directory carries its own name."""
        if not self.gateway.is_dir(folder):
            return False
        return self.gateway.list_dir(folder) == [folder.rsplit('/', 1)[-1]]

    def detect_layout(self, new_folders, entry):
        """Classify an extraction result.

        Args:
            new_folders: list - New top-level folder names
            entry: CatalogEntry - Entry being installed

        Returns:
            dict - Layout info with keys:
            - structure: str - 'multi' (flatten children into the root),
              'rename' (single undeclared folder), 'in_place'
              (single declared folder) or 'loose'
              (zero or several new folders, left as extracted)
            - folder: str - The single extracted folder, or None
        """
        if len(new_folders) != 1:
            return {'structure': 'loose', 'folder': None}

        folder = new_folders[0]
        if self.has_multiple_declared_subfolders(folder, entry.folder_names):
            return {'structure': 'multi', 'folder': folder}
        if folder in entry.folder_names:
            # A declared folder; the main one may have survived the delete
            return {'structure': 'in_place', 'folder': folder}
        return {'structure': 'rename', 'folder': folder}

    def scaffolding_present(self):
        """Repository scaffolding files sitting at the top of the AddOns directory."""
        present = set(self.gateway.list_entries())
        return [name for name in SCAFFOLDING_NAMES if name in present]
