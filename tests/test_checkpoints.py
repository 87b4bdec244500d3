from __future__ import annotations

import json

from quillarena.storage.checkpoints import CheckpointStore, JsonCheckpointStore


def test_save_and_resume_latest(tmp_path) -> None:
    store = JsonCheckpointStore(tmp_path / "ckpt")

    first = store.save("novel-1", "chapter_done", {"completed": 1})
    second = store.save("novel-1", "chapter_done", {"completed": 2}, progress={"completed": 2, "total": 3})

    assert (first.sequence, second.sequence) == (1, 2)
    latest = store.latest("novel-1")
    assert latest.state == {"completed": 2}
    assert latest.progress == {"completed": 2, "total": 3}
    assert latest.created_at.endswith("Z")
    assert store.resume_state("novel-1") == {"completed": 2}

    on_disk = json.loads((tmp_path / "ckpt" / "novel-1" / "0002-chapter_done.json").read_text())
    assert on_disk["phase"] == "chapter_done"


def test_unknown_task_cannot_resume(tmp_path) -> None:
    store = JsonCheckpointStore(tmp_path)

    assert store.can_resume("missing") is False
    assert store.latest("missing") is None
    assert store.resume_state("missing") is None


def test_clear_removes_task_checkpoints_only(tmp_path) -> None:
    store = JsonCheckpointStore(tmp_path)
    store.save("a", "generated", {"x": 1})
    store.save("b", "generated", {"x": 2})

    store.clear("a")
    store.clear("never-saved")

    assert store.can_resume("a") is False
    assert store.can_resume("b") is True


def test_task_and_phase_names_are_sanitised(tmp_path) -> None:
    store = JsonCheckpointStore(tmp_path)

    store.save("../escape", "phase/with slash", {"ok": True})

    assert store.latest("../escape").phase == "phase/with slash"
    assert [path.name for path in tmp_path.iterdir()] == ["escape"]
    assert isinstance(store, CheckpointStore)
