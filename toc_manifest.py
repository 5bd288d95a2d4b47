"""
TOC Manifest
Reads and bumps the version descriptor inside an addon's .toc manifest
"""

import html
import re

from versioning import DEFAULT_VERSION

_VERSION_LINE = re.compile(r'^[ \t]*##[ \t]*Version[ \t]*:[ \t]*(.*?)[ \t]*\r?$', re.MULTILINE)
_TITLE_LINE = re.compile(r'^[ \t]*##[ \t]*Title[ \t]*:[ \t]*(.*?)[ \t]*\r?$', re.MULTILINE)

# In-game formatting escapes: colors, hyperlinks, textures, atlases
_COLOR_CODE = re.compile(r'\|c[0-9a-fA-F]{8}')
_COLOR_RESET = re.compile(r'\|r')
_UI_TAGS = re.compile(r'(\|H.*?\|h|\|T.*?\|t|\|A.*?\|a)')
_ACE_SUFFIX = re.compile(r'[-\s]+ace\d*(?=[-\s]|$)', re.IGNORECASE)
_FLAVOR_WORDS = re.compile(r'\b(classic|retail|tbc|shadowlands|2024|2023)\b', re.IGNORECASE)
_TRAILING_VERSION = re.compile(r'v?\d+(\.\d+)*$', re.IGNORECASE)


def toc_path(folder):
    """Relative path of a folder's manifest: '<folder>/<folder>.toc'."""
    return f"{folder}/{folder}.toc"


def parse_version(content):
    match = _VERSION_LINE.search(content or '')
    if match and match.group(1):
        return match.group(1)
    return None


def parse_title(content):
    match = _TITLE_LINE.search(content or '')
    if not match or not match.group(1):
        return None
    title = _COLOR_CODE.sub('', match.group(1))
    title = _COLOR_RESET.sub('', title)
    return _UI_TAGS.sub('', title).strip()


def read_version(gateway, folder):
    """Read the manifest version of a folder.

    Args:
        gateway: FilesystemGateway - Gateway rooted at the AddOns directory
        folder: str - Top-level folder name

    Returns:
        str - Declared version, DEFAULT_VERSION when the manifest or line is missing
    """
    path = toc_path(folder)
    if not gateway.exists(path):
        return DEFAULT_VERSION
    return parse_version(gateway.read_file(path)) or DEFAULT_VERSION


def read_title(gateway, folder):
    path = toc_path(folder)
    if not gateway.exists(path):
        return None
    return parse_title(gateway.read_file(path))


def update_version(gateway, folder, version):
    """Rewrite (or append) the '## Version:' line of a folder's manifest.

    Returns:
        bool - False if the manifest does not exist
    """
    path = toc_path(folder)
    if not gateway.exists(path):
        return False
    content = gateway.read_file(path)
    line = f"## Version: {version}"
    if _VERSION_LINE.search(content):
        content = _VERSION_LINE.sub(lambda _: line, content, count=1)
    else:
        if content and not content.endswith('\n'):
            content += '\n'
        content += line + '\n'
    gateway.overwrite(path, content)
    return True


def normalize_title(title):
    """Reduce an addon title to a comparable key.

    Strips escapes, flavor words, library suffixes and trailing version
    numbers so that 'Questie-Classic v9.1' and 'questie' compare equal.
    """
    if not title:
        return ''
    text = html.unescape(title).lower()
    text = _COLOR_CODE.sub('', text)
    text = _COLOR_RESET.sub('', text)
    text = _UI_TAGS.sub('', text)
    text = re.sub(r'[<>]', '', text)
    text = re.sub(r'\s+', ' ', text)
    text = _ACE_SUFFIX.sub('', text)
    text = _FLAVOR_WORDS.sub('', text)
    text = _TRAILING_VERSION.sub('', text.rstrip(' -'))
    text = text.rstrip(' -')
    text = re.sub(r'[‘’‚‛]', "'", text)
    text = re.sub(r'[“”„‟]', '"', text)
    return text.strip()
