from pathlib import Path

import pytest

from backup_retention import Item


@pytest.fixture
def symlinks_supported(tmp_path: Path) -> bool:
    try:
        target = tmp_path / "target"
        target.mkdir()
        link = tmp_path / "link"
        link.symlink_to(target)
        return True
    except (OSError, NotImplementedError):
        return False


class RecordingPruner:
    """Pruner collaborator that only remembers what it was asked to prune."""

    def __init__(self, fail_on: frozenset = frozenset(), result: bool = True) -> None:
        self.pruned: list[Item] = []
        self._fail_on = fail_on
        self._result = result

    def __call__(self, item: Item) -> bool:
        if item.path in self._fail_on:
            raise OSError(f"simulated error for {item.path}")
        self.pruned.append(item)
        return self._result


@pytest.fixture
def recording_pruner() -> RecordingPruner:
    return RecordingPruner()
