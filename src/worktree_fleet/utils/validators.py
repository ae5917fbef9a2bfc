"""Input checks for branch names and task/session identifiers."""

import re

# Characters accepted in a branch name; git allows more, but these never need quoting
_BRANCH_CHARS = re.compile(r'^[A-Za-z0-9/_.-]+$')
_IDENTIFIER = re.compile(r'^[A-Za-z0-9_-]+$')

MAX_BRANCH_LENGTH = 255
MAX_IDENTIFIER_LENGTH = 128


def _ref_component_problem(component: str) -> str:
    """Why git check-ref-format would refuse one slash-separated component, or ''."""
    if not component:
        return "empty path component (consecutive or edge '/')"
    if component.startswith('.'):
        return f"component '{component}' starts with '.'"
    if component.endswith('.lock'):
        return f"component '{component}' ends with '.lock'"
    return ""


def validate_branch_name(branch_name: str) -> str:
    """
    Validate a new branch name against git's ref naming rules.

    Only a conservative character set is accepted, so names never need
    quoting on a command line. On top of that the rules of
    ``git check-ref-format --branch`` apply: no '..', no component starting
    with '.' or ending in '.lock', no trailing '.' and no leading '-'.

    Raises:
        ValueError: If the name would be refused by git or misparsed as an option
    """
    if not branch_name:
        raise ValueError("Branch name cannot be empty")
    if len(branch_name) > MAX_BRANCH_LENGTH:
        raise ValueError(f"Branch name longer than {MAX_BRANCH_LENGTH} characters")
    if not _BRANCH_CHARS.match(branch_name):
        raise ValueError(f"Invalid characters in branch name: {branch_name!r}")
    if branch_name.startswith('-'):
        raise ValueError(f"Branch name would be read as an option: {branch_name!r}")
    if '..' in branch_name or branch_name.endswith('.'):
        raise ValueError(f"Branch name has a misplaced '.': {branch_name!r}")

    for component in branch_name.split('/'):
        problem = _ref_component_problem(component)
        if problem:
            raise ValueError(f"Invalid branch name {branch_name!r}: {problem}")

    return branch_name


def validate_identifier(value: str, name: str = "identifier") -> str:
    """
    Validate a task_id or session_id used inside worktree paths.

    Letters, digits, '-' and '_' only, so an id can never traverse out of
    the worktree base directory.
    """
    if not value:
        raise ValueError(f"{name} cannot be empty")
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(f"{name} longer than {MAX_IDENTIFIER_LENGTH} characters")
    if not _IDENTIFIER.match(value):
        raise ValueError(f"Invalid {name}: {value!r}")
    return value
