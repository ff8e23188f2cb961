"""
vstore/change_set.py -- Maps modified file paths to mirror work.

Two questions are answered from the list of paths a revert touched:

    - which entity types must be resynchronized into the mirror
      (``detect_entities_to_synchronize``);
    - which posts had their files changed and need a fresh modification
      stamp (``get_affected_posts``).

Matching is purely textual; the files themselves are not read.
"""

import re

# (path substring, entity types to resynchronize)
SYNC_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("posts", ("post", "postmeta")),
    ("comments", ("comment", "post")),  # comment counts live on the post
    ("users.ini", ("user", "usermeta")),
    ("terms.ini", ("term", "term_taxonomy")),
    ("options.ini", ("option",)),
)

_POST_FILE_RE = re.compile(r"(?:^|/)posts/.*/(.*)\.ini")


def _normalize(path: str) -> str:
    return path.replace("\\", "/")


def was_modified(modified_files, path_part: str) -> bool:
    """True if any of *modified_files* contains *path_part*."""
    return any(path_part in _normalize(path) for path in modified_files)


def detect_entities_to_synchronize(modified_files) -> list[str]:
    """Return the entity types whose mirror rows may be stale.

    The result is a work list: a type can appear more than once when several
    rules add it.
    """
    modified_files = list(modified_files)
    entities: list[str] = []
    for path_part, entity_types in SYNC_RULES:
        if was_modified(modified_files, path_part):
            entities.extend(entity_types)
    return entities


def get_affected_posts(modified_files) -> list[str]:
    """Return the ids of posts whose files appear in *modified_files*."""
    posts: list[str] = []
    for path in modified_files:
        match = _POST_FILE_RE.search(_normalize(path))
        if match:
            posts.append(match.group(1))
    return posts
