"""Tests for channel and program reconciliation."""

from dataclasses import replace

from epg_sync.services.reconciler import reconcile_channels, reconcile_programs
from epg_sync.services.sync_types import ChannelPayload, SyncWindow

from conftest import HOUR_MS, make_program

WINDOW = SyncWindow(start_ms=10 * HOUR_MS, end_ms=20 * HOUR_MS)


def stored(program, program_id, channel_id=1):
    return replace(program, id=program_id, channel_id=channel_id)


def fetched(start_ms, **kwargs):
    return make_program(start_ms, channel_id=1, **kwargs)


class TestReconcilePrograms:
    """Program diffing by (channel, start time)."""

    def test_all_new_programs_are_inserted(self):
        programs = [fetched(10 * HOUR_MS), fetched(11 * HOUR_MS)]
        write_set = reconcile_programs(programs, [], WINDOW)
        assert write_set.inserts == programs
        assert not write_set.updates and not write_set.deletes

    def test_identical_data_produces_no_writes(self):
        """Re-syncing unchanged data is idempotent."""
        programs = [fetched(10 * HOUR_MS, title="A"), fetched(11 * HOUR_MS, title="B")]
        existing = [stored(p, index) for index, p in enumerate(programs, start=1)]

        write_set = reconcile_programs([replace(p) for p in programs], existing, WINDOW)

        assert write_set.is_empty
        assert write_set.unchanged == 2

    def test_changed_field_updates_and_keeps_id(self):
        existing = [stored(fetched(10 * HOUR_MS, title="Old"), 42)]
        write_set = reconcile_programs([fetched(10 * HOUR_MS, title="New")], existing, WINDOW)

        assert len(write_set.updates) == 1
        assert write_set.updates[0].id == 42
        assert write_set.updates[0].title == "New"
        assert not write_set.inserts and not write_set.deletes

    def test_end_time_and_metadata_changes_are_detected(self):
        base = fetched(10 * HOUR_MS, provider_data={"rating": "PG"})
        existing = [stored(base, 1)]

        longer = replace(base, end_time_ms=base.end_time_ms + HOUR_MS)
        assert len(reconcile_programs([longer], existing, WINDOW).updates) == 1

        rerated = replace(base, provider_data={"rating": "R"})
        assert len(reconcile_programs([rerated], existing, WINDOW).updates) == 1

        described = replace(base, description="Now with a synopsis")
        assert len(reconcile_programs([described], existing, WINDOW).updates) == 1

    def test_missing_programs_inside_window_are_deleted(self):
        existing = [stored(fetched(12 * HOUR_MS), 5)]
        write_set = reconcile_programs([], existing, WINDOW)
        assert [p.id for p in write_set.deletes] == [5]

    def test_programs_outside_window_are_untouched(self):
        existing = [
            stored(fetched(2 * HOUR_MS), 1),
            stored(fetched(9 * HOUR_MS), 2),  # ends exactly at window start
            stored(fetched(20 * HOUR_MS), 3),  # starts exactly at window end
            stored(fetched(9 * HOUR_MS + HOUR_MS // 2), 4),  # straddles window start
        ]
        write_set = reconcile_programs([], existing, WINDOW)
        assert [p.id for p in write_set.deletes] == [4]

    def test_fetched_programs_outside_window_still_match(self):
        """Tiled programs that begin before the window reconcile against stored rows."""
        early = fetched(9 * HOUR_MS + HOUR_MS // 2, title="Straddle")
        write_set = reconcile_programs([early], [stored(early, 8)], WINDOW)
        assert write_set.is_empty

    def test_duplicate_fetched_slots_keep_last(self):
        programs = [fetched(10 * HOUR_MS, title="First"), fetched(10 * HOUR_MS, title="Second")]
        write_set = reconcile_programs(programs, [], WINDOW)
        assert [p.title for p in write_set.inserts] == ["Second"]

    def test_mixed_write_set(self):
        existing = [
            stored(fetched(10 * HOUR_MS, title="Keep"), 1),
            stored(fetched(11 * HOUR_MS, title="Change me"), 2),
            stored(fetched(12 * HOUR_MS, title="Gone"), 3),
        ]
        incoming = [
            fetched(10 * HOUR_MS, title="Keep"),
            fetched(11 * HOUR_MS, title="Changed"),
            fetched(13 * HOUR_MS, title="New"),
        ]
        write_set = reconcile_programs(incoming, existing, WINDOW)

        assert [p.title for p in write_set.inserts] == ["New"]
        assert [(p.id, p.title) for p in write_set.updates] == [(2, "Changed")]
        assert [p.id for p in write_set.deletes] == [3]
        assert write_set.unchanged == 1
        assert write_set.write_count == 3


class TestReconcileChannels:
    """Channel diffing by external id."""

    def test_new_channels_are_upserted_without_ids(self):
        channels = [ChannelPayload(external_id="a", display_name="A", id=99)]
        write_set = reconcile_channels(channels, [])
        assert [c.external_id for c in write_set.upserts] == ["a"]
        assert write_set.upserts[0].id is None

    def test_unchanged_channels_keep_ids_without_write(self):
        existing = [ChannelPayload(external_id="a", display_name="A", id=3)]
        write_set = reconcile_channels([ChannelPayload(external_id="a", display_name="A")], existing)
        assert write_set.upserts == []
        assert [(c.external_id, c.id) for c in write_set.unchanged] == [("a", 3)]

    def test_changed_channel_is_updated_in_place(self):
        existing = [ChannelPayload(external_id="a", display_name="A", id=3)]
        renamed = ChannelPayload(external_id="a", display_name="A+", repeatable=True)
        write_set = reconcile_channels([renamed], existing)
        assert [(c.display_name, c.id) for c in write_set.upserts] == [("A+", 3)]

    def test_channels_missing_from_source_are_deleted(self):
        existing = [
            ChannelPayload(external_id="a", display_name="A", id=1),
            ChannelPayload(external_id="b", display_name="B", id=2),
        ]
        write_set = reconcile_channels([ChannelPayload(external_id="a", display_name="A")], existing)
        assert [c.id for c in write_set.deletes] == [2]
