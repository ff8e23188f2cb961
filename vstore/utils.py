"""
vstore/utils.py -- Shared file I/O helpers for the versioned entity store.

Every file the store writes (entity INI files and the revert event log)
goes through these helpers.  Entity writes use a temp file in the target
directory followed by ``os.replace()`` so that git never sees a half-written
entity file.

INI documents hold one section per entity.  Many-to-many reference lists are
flattened into indexed keys (``vp_term_taxonomy[0] = ...``) because
``configparser`` does not support repeated keys.
"""

import configparser
import io
import json
import logging
import os
import re
import tempfile

from vstore.errors import EntityFileError

logger = logging.getLogger(__name__)

_INDEXED_KEY_RE = re.compile(r"^(?P<name>.+)\[(?P<index>\d+)\]$")


# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------

def safe_read_json(path, default=None):
    """Read a JSON file, returning *default* if the file is missing or corrupt.

    Parameters
    ----------
    path : str or pathlib.Path
        Absolute path to the JSON file.
    default
        Value returned when the file cannot be read (default ``None``).
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return default


def safe_append_jsonl(path, record):
    """Append a single JSON record to a JSONL (JSON Lines) file.

    The append is a single ``write`` call followed by ``fsync`` to keep
    partial lines out of the log.
    """
    path = str(path)
    os.makedirs(os.path.dirname(path), exist_ok=True)

    line = json.dumps(record, ensure_ascii=False) + "\n"
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(line)
        fh.flush()
        os.fsync(fh.fileno())


# ---------------------------------------------------------------------------
# INI I/O
# ---------------------------------------------------------------------------

def _new_parser() -> configparser.ConfigParser:
    parser = configparser.ConfigParser(interpolation=None, delimiters=("=",))
    # Field names are case-sensitive.
    parser.optionxform = str
    return parser


def read_ini_sections(path) -> dict[str, dict]:
    """Read an INI file into ``{section: record}``.

    Indexed keys (``name[0]``, ``name[1]``) are folded back into lists,
    ordered by index.  A missing file yields an empty dict.

    Raises
    ------
    EntityFileError
        If the file exists but cannot be read or parsed.
    """
    parser = _new_parser()
    try:
        with open(path, "r", encoding="utf-8") as fh:
            parser.read_file(fh)
    except FileNotFoundError:
        return {}
    except (configparser.Error, OSError, UnicodeDecodeError) as exc:
        raise EntityFileError(path, str(exc)) from exc

    sections: dict[str, dict] = {}
    for section in parser.sections():
        sections[section] = _fold_indexed_keys(dict(parser.items(section)))
    return sections


def write_ini_sections(path, sections: dict[str, dict]) -> None:
    """Atomically write ``{section: record}`` to *path* as INI.

    ``None`` values are omitted; lists become indexed keys.
    """
    parser = _new_parser()
    for section, record in sections.items():
        parser.add_section(section)
        for key, value in _flatten_lists(record).items():
            parser.set(section, key, value)

    buffer = io.StringIO()
    parser.write(buffer)
    _atomic_write(path, buffer.getvalue())


def _flatten_lists(record: dict) -> dict[str, str]:
    flat: dict[str, str] = {}
    for key, value in record.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                flat[f"{key}[{index}]"] = str(item)
        else:
            flat[key] = str(value)
    return flat


def _fold_indexed_keys(items: dict[str, str]) -> dict:
    record: dict = {}
    indexed: dict[str, list[tuple[int, str]]] = {}
    for key, value in items.items():
        match = _INDEXED_KEY_RE.match(key)
        if match:
            indexed.setdefault(match.group("name"), []).append(
                (int(match.group("index")), value)
            )
        else:
            record[key] = value
    for name, pairs in indexed.items():
        record[name] = [value for _index, value in sorted(pairs)]
    return record


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------

def _atomic_write(path, text: str) -> None:
    path = str(path)
    parent = os.path.dirname(path)
    os.makedirs(parent, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
