"""Tests for the synopsis archive and its on-disk log."""

from datetime import datetime, timezone

from synopsis_keeper.services.conversation.summarization.archive import SynopsisArchive
from synopsis_keeper.services.conversation.summarization.state import (
    CurrentSynopsis,
    SynopsisRecord,
    SynopsisState,
)
from synopsis_keeper.services.conversation.summarization.synopsis_log import SynopsisStateLog


class TestArchive:
    def test_newest_first(self):
        archive = SynopsisArchive(limit=5)
        archive.archive("first")
        archive.archive("second")

        assert [record.content for record in archive] == ["second", "first"]

    def test_bounded_by_limit(self):
        archive = SynopsisArchive(limit=3)
        for number in range(10):
            archive.archive(f"synopsis {number}")

        assert len(archive) == 3
        assert [record.content for record in archive] == ["synopsis 9", "synopsis 8", "synopsis 7"]

    def test_blank_content_is_ignored(self):
        archive = SynopsisArchive()
        assert archive.archive("   ") is None
        assert len(archive) == 0

    def test_update_and_delete(self):
        archive = SynopsisArchive()
        record = archive.archive("draft", demand="mystery")

        updated = archive.update(record.id, "final")
        assert updated.content == "final"
        assert updated.demand == "mystery"
        assert archive.find(record.id).content == "final"

        assert archive.delete(record.id) is True
        assert archive.delete(record.id) is False
        assert archive.update("missing", "x") is None


class TestSynopsisStateLog:
    def test_missing_file_is_empty_state(self, tmp_path):
        log = SynopsisStateLog(tmp_path / "none.log")
        state = log.load_state()

        assert state.current.is_empty
        assert state.current.anchor_index == -1
        assert state.archive == []

    def test_state_survives_reload(self, tmp_path):
        path = tmp_path / "chat.log"
        updated_at = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        record = SynopsisRecord.create("Old plot\nwith two lines", demand="romance")
        SynopsisStateLog(path).write_state(
            SynopsisState(
                current=CurrentSynopsis(text='They meet at <the> "inn" \\ again', anchor_index=7, updated_at=updated_at),
                archive=[record],
                user_demand="a quiet evening",
            )
        )

        state = SynopsisStateLog(path).load_state()

        assert state.current.text == 'They meet at <the> "inn" \\ again'
        assert state.current.anchor_index == 7
        assert state.current.updated_at == updated_at
        assert state.user_demand == "a quiet evening"
        assert len(state.archive) == 1
        assert state.archive[0].id == record.id
        assert state.archive[0].content == "Old plot\nwith two lines"
        assert state.archive[0].demand == "romance"

    def test_archive_limit_applied_on_load(self, tmp_path):
        path = tmp_path / "chat.log"
        records = [SynopsisRecord.create(f"entry {number}") for number in range(5)]
        SynopsisStateLog(path, archive_limit=10).write_state(SynopsisState(archive=records))

        state = SynopsisStateLog(path, archive_limit=2).load_state()

        assert [record.content for record in state.archive] == ["entry 0", "entry 1"]

    def test_clear_removes_file(self, tmp_path):
        path = tmp_path / "chat.log"
        log = SynopsisStateLog(path)
        log.write_state(SynopsisState(current=CurrentSynopsis(text="something")))

        log.clear()

        assert not path.exists()
        assert log.load_state().current.is_empty
